from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Sequence

from dhis2_aggregate.sources.models import (
    DataValue,
    Number,
    OrgUnitMap,
    TargetDefinition,
    TargetDocument,
)

logger = logging.getLogger(__name__)


def data_value_templates(definitions: Sequence[TargetDefinition]) -> Dict[str, Dict[str, Any]]:
    """dataElement -> attributes copied onto each data value (dataSet excluded).

    When several definitions share a dataElement, the last one's attributes win.
    """

    templates: Dict[str, Dict[str, Any]] = {}
    for target in definitions:
        if target.dhis is None or not target.dhis.data_element:
            continue
        templates[target.dhis.data_element] = target.dhis.data_value_attributes()
    return templates


def build_data_values(
    definitions: Sequence[TargetDefinition],
    target_docs: Iterable[TargetDocument],
    org_units: OrgUnitMap,
) -> List[DataValue]:
    """Sum target totals per (orgUnit, dataElement).

    Every org unit in `org_units` gets one zero-valued entry per data element
    before any summing, so units without reports still appear. Documents whose
    owner has no org units, and targets without a configured dataElement, are
    skipped.

    Output is grouped by org unit (first appearance in `org_units`), then by
    data element (definition order).
    """

    element_by_target_id: Dict[str, str] = {}
    for target in definitions:
        if target.dhis is not None and target.dhis.data_element:
            element_by_target_id[target.id] = target.dhis.data_element

    templates = data_value_templates(definitions)

    # all results start with 0s
    totals: Dict[str, Dict[str, Number]] = {}
    for units in org_units.values():
        for org_unit in units:
            if org_unit not in totals:
                totals[org_unit] = {data_element: 0 for data_element in templates}

    skipped = 0
    for doc in target_docs:
        units_of_owner = org_units.get(doc.owner)
        if not units_of_owner:
            skipped += 1
            continue

        for org_unit in units_of_owner:
            by_element = totals.get(org_unit)
            if by_element is None:
                continue
            for target in doc.targets:
                data_element = element_by_target_id.get(target.id)
                if data_element is not None and data_element in by_element:
                    by_element[data_element] += target.value.total

    if skipped:
        logger.debug("skipped %d target docs whose owner has no org unit", skipped)

    data_values: List[DataValue] = []
    for org_unit, by_element in totals.items():
        for data_element, value in by_element.items():
            attrs = dict(templates[data_element])
            attrs.update(orgUnit=org_unit, value=value)
            data_values.append(DataValue.model_validate(attrs))
    return data_values
