from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, TypeVar, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError

from dhis2_aggregate.errors import ExportValidationError
from dhis2_aggregate.pipeline.aggregate import build_data_values
from dhis2_aggregate.pipeline.definitions import resolve_target_definitions
from dhis2_aggregate.pipeline.hierarchy import map_contact_org_units
from dhis2_aggregate.report.human import make_human_readable
from dhis2_aggregate.sources.couchdb import DocumentStore
from dhis2_aggregate.sources.models import Contact, ExportResult, TargetDocument
from dhis2_aggregate.sources.settings import SettingsProvider

logger = logging.getLogger(__name__)

DEFAULT_CONTACTS_VIEW = "medic-admin/contacts_by_orgunit"

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class ExportFilters:
    data_set: Optional[str] = None
    # epoch millis, date/datetime or ISO-8601 string
    date_from: Any = None
    org_unit: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ExportFilters":
        """Wire shape: {"dataSet": .., "date": {"from": ..}, "orgUnit": ..}."""

        dates = raw.get("date")
        return cls(
            data_set=raw.get("dataSet") or None,
            date_from=dates.get("from") if isinstance(dates, Mapping) else None,
            org_unit=raw.get("orgUnit") or None,
        )


@dataclass(frozen=True)
class ExportOptions:
    human_readable: bool = False


def parse_from_date(value: Any, tz: str = "UTC") -> datetime:
    """Interpret the requested "from" value as an aware datetime in `tz`."""

    zone = ZoneInfo(tz)

    if isinstance(value, datetime):
        return value.replace(tzinfo=zone) if value.tzinfo is None else value.astimezone(zone)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=zone)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).astimezone(zone)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.lstrip("-").isdigit():
            return parse_from_date(int(text), tz)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            pass
        else:
            return parse_from_date(parsed, tz)

    raise ExportValidationError('filter "from" is invalid')


def _parse_docs(model: Type[M], docs: Sequence[Dict[str, Any]], kind: str) -> List[M]:
    parsed: List[M] = []
    for doc in docs:
        try:
            parsed.append(model.model_validate(doc))
        except ValidationError as exc:
            logger.warning("skipping malformed %s %s: %s", kind, doc.get("_id"), exc.error_count())
    return parsed


def fetch_target_docs_at_interval(store: DocumentStore, when: datetime) -> List[TargetDocument]:
    """Target docs of the month containing `when` (ids: target~YYYY-MM~owner~user)."""

    interval = when.strftime("%Y-%m")
    docs = store.all_docs(start_key=f"target~{interval}~", end_key=f"target~{interval}~\ufff0")
    return _parse_docs(TargetDocument, docs, "target doc")


def fetch_contacts_with_org_units(
    store: DocumentStore,
    org_unit: Optional[str],
    view: str = DEFAULT_CONTACTS_VIEW,
) -> List[Contact]:
    docs = store.query(view, key=org_unit)
    seen = set()
    unique: List[Dict[str, Any]] = []
    for doc in docs:
        if doc.get("_id") in seen:
            continue
        seen.add(doc.get("_id"))
        unique.append(doc)
    return _parse_docs(Contact, unique, "contact")


def fetch_contacts_with_id(store: DocumentStore, ids: Sequence[str]) -> List[Contact]:
    return _parse_docs(Contact, store.all_docs(keys=list(ids)), "contact")


def export_aggregate(
    filters: Union[ExportFilters, Mapping[str, Any]],
    options: Optional[ExportOptions] = None,
    *,
    store: DocumentStore,
    settings_provider: SettingsProvider,
    contacts_view: str = DEFAULT_CONTACTS_VIEW,
    tz: str = "UTC",
    now: Optional[datetime] = None,
    max_workers: int = 2,
) -> ExportResult:
    """Build the DHIS2 dataValueSet for one dataset and month.

    Validation failures raise ExportValidationError (code 422) before any
    aggregation; store failures propagate unchanged. `now` pins completeDate.
    """

    if not isinstance(filters, ExportFilters):
        filters = ExportFilters.from_mapping(filters)
    options = options or ExportOptions()

    data_set = filters.data_set
    if not data_set:
        raise ExportValidationError('filter "dataSet" is required')
    if not filters.date_from:
        raise ExportValidationError('filter "from" is required')
    from_dt = parse_from_date(filters.date_from, tz)

    app_settings = settings_provider.get()
    data_set_config = app_settings.find_data_set(data_set)
    if data_set_config is None:
        raise ExportValidationError(f'dataSet "{data_set}" is not defined')

    definitions = resolve_target_definitions(app_settings.target_items, data_set)

    # targets and in-scope contacts are independent; owners need the targets
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        targets_future = executor.submit(fetch_target_docs_at_interval, store, from_dt)
        contacts_future = executor.submit(fetch_contacts_with_org_units, store, filters.org_unit, contacts_view)

        target_docs = targets_future.result()
        owner_ids = list(dict.fromkeys(doc.owner for doc in target_docs))
        owners = fetch_contacts_with_id(store, owner_ids)
        contacts_with_org_units = contacts_future.result()

    org_units = map_contact_org_units(data_set, owners, contacts_with_org_units)
    target_docs_in_hierarchy = [
        doc for doc in target_docs if not filters.org_unit or org_units.get(doc.owner)
    ]

    zone = ZoneInfo(tz)
    run_ts = now if now else datetime.now(timezone.utc)
    run_ts = run_ts.replace(tzinfo=zone) if run_ts.tzinfo is None else run_ts.astimezone(zone)

    result = ExportResult(
        data_set=data_set,
        complete_date=run_ts.strftime("%Y-%m-%d"),
        period=from_dt.strftime("%Y%m"),
        data_values=build_data_values(definitions, target_docs_in_hierarchy, org_units),
    )

    logger.info(
        "export %s %s: %d target docs, %d owners, %d in-scope contacts, %d data values",
        data_set,
        result.period,
        len(target_docs_in_hierarchy),
        len(owners),
        len(contacts_with_org_units),
        len(result.data_values),
    )

    if options.human_readable:
        result = make_human_readable(result, data_set_config, definitions, contacts_with_org_units)

    return result
