from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Sequence

import pytest

from dhis2_aggregate.sources.couchdb import DocumentStore
from dhis2_aggregate.sources.models import AppSettings
from dhis2_aggregate.sources.settings import SettingsProvider, parse_app_settings


def _lineage(*ids: str) -> Optional[Dict[str, Any]]:
    parent: Optional[Dict[str, Any]] = None
    for contact_id in reversed(ids):
        parent = {"_id": contact_id, "parent": parent} if parent else {"_id": contact_id}
    return parent


class FakeStore(DocumentStore):
    """In-memory CHT database; contacts_by_orgunit emits one row per dhis orgUnit."""

    def __init__(self, docs: Sequence[Dict[str, Any]]) -> None:
        self.docs = {d["_id"]: copy.deepcopy(d) for d in docs}
        self.calls: List[tuple] = []

    def all_docs(self, *, keys=None, start_key=None, end_key=None):
        self.calls.append(("all_docs", tuple(keys) if keys is not None else None, start_key, end_key))
        if keys is not None:
            return [copy.deepcopy(self.docs[k]) for k in keys if k in self.docs]
        return [
            copy.deepcopy(doc)
            for doc_id, doc in sorted(self.docs.items())
            if (start_key is None or doc_id >= start_key) and (end_key is None or doc_id <= end_key)
        ]

    def query(self, view, *, key=None):
        self.calls.append(("query", view, key))
        rows = []
        for doc in self.docs.values():
            dhis = doc.get("dhis")
            if dhis is None:
                continue
            for entry in dhis if isinstance(dhis, list) else [dhis]:
                org_unit = entry.get("orgUnit")
                if org_unit and (key is None or key == org_unit):
                    rows.append(copy.deepcopy(doc))
        return rows

    def get(self, doc_id):
        self.calls.append(("get", doc_id))
        doc = self.docs.get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None


class StaticSettingsProvider(SettingsProvider):
    def __init__(self, raw: Dict[str, Any]) -> None:
        self.raw = raw
        self.calls = 0

    def get(self) -> AppSettings:
        self.calls += 1
        return parse_app_settings(self.raw)


@pytest.fixture
def app_settings_dict() -> Dict[str, Any]:
    return {
        "dhisDataSets": [
            {"guid": "ds1", "label": "Monthly CHW report"},
            {"guid": "ds3", "label": "Unused"},
        ],
        "tasks": {
            "targets": {
                "items": [
                    {"id": "births", "dhis": {"dataElement": "DE1"}},
                    {
                        "id": "pregnancies",
                        "dhis": {"dataElement": "DE2", "dataSet": "ds1", "categoryOptionCombo": "coc1"},
                    },
                    {"id": "deaths", "dhis": {"dataElement": "DE3", "dataSet": "ds2"}},
                    {"id": "visits"},
                ]
            }
        },
    }


@pytest.fixture
def cht_docs() -> List[Dict[str, Any]]:
    """district d -> health centres hc1/hc2 -> CHW areas; area3 sits outside any org unit."""

    return [
        {"_id": "d", "name": "District", "dhis": {"orgUnit": "OU_D"}},
        {"_id": "hc1", "name": "Health Centre 1", "dhis": [{"orgUnit": "OU_H1", "dataSet": "ds1"}], "parent": _lineage("d")},
        {"_id": "hc2", "name": "Health Centre 2", "dhis": {"orgUnit": "OU_H2"}, "parent": _lineage("d")},
        {"_id": "x", "name": "Elsewhere"},
        {"_id": "area1", "name": "Area 1", "parent": _lineage("hc1", "d")},
        {"_id": "area2", "name": "Area 2", "parent": _lineage("hc2", "d")},
        {"_id": "area3", "name": "Area 3", "parent": _lineage("x")},
        {
            "_id": "target~2024-03~area1~u1",
            "owner": "area1",
            "reporting_period": "2024-03",
            "targets": [
                {"id": "births", "value": {"pass": 5, "total": 5}},
                {"id": "pregnancies", "value": {"pass": 1, "total": 1}},
                {"id": "deaths", "value": {"pass": 100, "total": 100}},
            ],
        },
        {
            "_id": "target~2024-03~area2~u2",
            "owner": "area2",
            "reporting_period": "2024-03",
            "targets": [{"id": "births", "value": {"pass": 2, "total": 2}}],
        },
        {
            "_id": "target~2024-03~area3~u3",
            "owner": "area3",
            "reporting_period": "2024-03",
            "targets": [{"id": "births", "value": {"pass": 50, "total": 50}}],
        },
        {
            "_id": "target~2024-02~area1~u1",
            "owner": "area1",
            "reporting_period": "2024-02",
            "targets": [{"id": "births", "value": {"pass": 999, "total": 999}}],
        },
    ]


@pytest.fixture
def fake_store(cht_docs) -> FakeStore:
    return FakeStore(cht_docs)


@pytest.fixture
def settings_provider(app_settings_dict) -> StaticSettingsProvider:
    return StaticSettingsProvider(app_settings_dict)


@pytest.fixture
def lineage():
    return _lineage


@pytest.fixture
def make_settings_provider():
    return StaticSettingsProvider
