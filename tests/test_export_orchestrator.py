from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest

from dhis2_aggregate.errors import ExportValidationError, StoreError
from dhis2_aggregate.pipeline.export import (
    ExportFilters,
    ExportOptions,
    export_aggregate,
    parse_from_date,
)

NOW = datetime(2024, 4, 2, 9, 30, tzinfo=timezone.utc)


def _filters(**overrides):
    raw = {"dataSet": "ds1", "date": {"from": "2024-03-15"}}
    raw.update(overrides)
    return raw


def _by_key(result):
    return {(dv.org_unit, dv.data_element): dv.value for dv in result.data_values}


def test_export_sums_through_the_hierarchy(fake_store, settings_provider) -> None:
    result = export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)

    assert result.data_set == "ds1"
    assert result.period == "202403"
    assert result.complete_date == "2024-04-02"
    # deaths (ds2) is excluded, area3's report has no org unit, February is out of range
    assert _by_key(result) == {
        ("OU_D", "DE1"): 7,
        ("OU_D", "DE2"): 1,
        ("OU_H1", "DE1"): 5,
        ("OU_H1", "DE2"): 1,
        ("OU_H2", "DE1"): 2,
        ("OU_H2", "DE2"): 0,
    }
    coc = {dv.org_unit: getattr(dv, "categoryOptionCombo", None) for dv in result.data_values if dv.data_element == "DE2"}
    assert coc == {"OU_D": "coc1", "OU_H1": "coc1", "OU_H2": "coc1"}


def test_export_fetches_month_range_and_owners(fake_store, settings_provider) -> None:
    export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)

    assert ("all_docs", None, "target~2024-03~", "target~2024-03~\ufff0") in fake_store.calls
    assert ("all_docs", ("area1", "area2", "area3"), None, None) in fake_store.calls
    assert ("query", "medic-admin/contacts_by_orgunit", None) in fake_store.calls


def test_org_unit_filter_limits_scope(fake_store, settings_provider) -> None:
    result = export_aggregate(
        _filters(orgUnit="OU_H1"), store=fake_store, settings_provider=settings_provider, now=NOW
    )

    assert ("query", "medic-admin/contacts_by_orgunit", "OU_H1") in fake_store.calls
    assert _by_key(result) == {("OU_H1", "DE1"): 5, ("OU_H1", "DE2"): 1}


def test_org_unit_filter_on_district(fake_store, settings_provider) -> None:
    result = export_aggregate(_filters(orgUnit="OU_D"), store=fake_store, settings_provider=settings_provider, now=NOW)

    assert _by_key(result) == {("OU_D", "DE1"): 7, ("OU_D", "DE2"): 1}


def test_human_readable_export(fake_store, settings_provider) -> None:
    machine = export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)
    human = export_aggregate(
        _filters(),
        ExportOptions(human_readable=True),
        store=fake_store,
        settings_provider=settings_provider,
        now=NOW,
    )

    assert human.data_set == "Monthly CHW report"
    assert {(dv.org_unit, dv.data_element): dv.value for dv in human.data_values} == {
        ("District", "births"): 7,
        ("District", "pregnancies"): 1,
        ("Health Centre 1", "births"): 5,
        ("Health Centre 1", "pregnancies"): 1,
        ("Health Centre 2", "births"): 2,
        ("Health Centre 2", "pregnancies"): 0,
    }
    assert [dv.value for dv in human.data_values] == [dv.value for dv in machine.data_values]


def test_repeated_export_is_identical(fake_store, settings_provider) -> None:
    first = export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)
    second = export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)

    assert json.dumps(first.to_payload()) == json.dumps(second.to_payload())


def test_sequential_fetching_gives_same_result(fake_store, settings_provider) -> None:
    parallel = export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)
    serial = export_aggregate(
        _filters(), store=fake_store, settings_provider=settings_provider, now=NOW, max_workers=1
    )

    assert serial.to_payload() == parallel.to_payload()


def test_accepts_filters_dataclass_and_epoch_millis(fake_store, settings_provider) -> None:
    # 2024-03-01T00:00:00Z
    filters = ExportFilters(data_set="ds1", date_from=1709251200000)

    result = export_aggregate(filters, store=fake_store, settings_provider=settings_provider, now=NOW)

    assert result.period == "202403"


@pytest.mark.parametrize(
    "filters, message",
    [
        ({"date": {"from": "2024-03-15"}}, 'filter "dataSet" is required'),
        ({"dataSet": "ds1"}, 'filter "from" is required'),
        ({"dataSet": "ds1", "date": {}}, 'filter "from" is required'),
        ({"dataSet": "ds1", "date": {"from": 0}}, 'filter "from" is required'),
        ({"dataSet": "ds1", "date": {"from": ""}}, 'filter "from" is required'),
        ({"dataSet": "ds1", "date": {"from": "last month"}}, 'filter "from" is invalid'),
    ],
)
def test_missing_filters_fail_before_any_io(fake_store, settings_provider, filters, message) -> None:
    with pytest.raises(ExportValidationError) as excinfo:
        export_aggregate(filters, store=fake_store, settings_provider=settings_provider, now=NOW)

    assert excinfo.value.to_dict() == {"code": 422, "message": message}
    assert settings_provider.calls == 0
    assert fake_store.calls == []


def test_unknown_data_set(fake_store, settings_provider) -> None:
    with pytest.raises(ExportValidationError) as excinfo:
        export_aggregate(_filters(dataSet="nope"), store=fake_store, settings_provider=settings_provider, now=NOW)

    assert excinfo.value.to_dict() == {"code": 422, "message": 'dataSet "nope" is not defined'}
    assert fake_store.calls == []


def test_data_set_with_only_foreign_definitions(fake_store, app_settings_dict, make_settings_provider) -> None:
    app_settings_dict["tasks"]["targets"]["items"] = [
        {"id": "deaths", "dhis": {"dataElement": "DE3", "dataSet": "ds2"}}
    ]
    provider = make_settings_provider(app_settings_dict)

    with pytest.raises(ExportValidationError) as excinfo:
        export_aggregate(_filters(dataSet="ds3"), store=fake_store, settings_provider=provider, now=NOW)

    assert excinfo.value.to_dict() == {"code": 422, "message": 'dataSet "ds3" has no dataElements'}
    assert fake_store.calls == []


def test_store_errors_propagate(fake_store, settings_provider, monkeypatch) -> None:
    def _down(*_args, **_kwargs):
        raise StoreError("CouchDB request failed: ConnectionError", status_code=None)

    monkeypatch.setattr(fake_store, "query", _down)

    with pytest.raises(StoreError):
        export_aggregate(_filters(), store=fake_store, settings_provider=settings_provider, now=NOW)


def test_parse_from_date_uses_export_timezone() -> None:
    late_march_utc = "2024-03-31T23:30:00+00:00"

    assert parse_from_date(late_march_utc, "UTC").strftime("%Y%m") == "202403"
    assert parse_from_date(late_march_utc, "Africa/Nairobi").strftime("%Y%m") == "202404"
    assert parse_from_date(date(2024, 3, 5)).strftime("%Y-%m-%d") == "2024-03-05"
    assert parse_from_date("1709251200000").strftime("%Y%m") == "202403"


def test_unrelated_malformed_settings_entries_are_ignored(
    fake_store, app_settings_dict, make_settings_provider
) -> None:
    expected = export_aggregate(
        _filters(), store=fake_store, settings_provider=make_settings_provider(app_settings_dict), now=NOW
    )

    app_settings_dict["dhisDataSets"].append({"label": "no guid"})
    app_settings_dict["tasks"]["targets"]["items"].insert(0, {"type": "count"})
    provider = make_settings_provider(app_settings_dict)

    result = export_aggregate(_filters(), store=fake_store, settings_provider=provider, now=NOW)

    assert result == expected
