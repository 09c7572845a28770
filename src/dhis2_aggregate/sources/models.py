from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

Number = Union[int, float]

# ContactId -> org unit codes (unique, insertion ordered)
OrgUnitMap = Dict[str, List[str]]


class _WireModel(BaseModel):
    """Snake-case fields, camelCase on the wire (CHT settings / DHIS2 payloads)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# App settings
# ---------------------------------------------------------------------------


class TargetDhisConfig(_WireModel):
    """`dhis` block of a target definition.

    Every key besides dataSet is copied onto exported data values
    (categoryOptionCombo, attributeOptionCombo, comment, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    data_element: Optional[str] = Field(default=None)
    data_set: Optional[str] = Field(default=None)

    def data_value_attributes(self) -> Dict[str, Any]:
        attrs = self.model_dump(by_alias=True, exclude_none=True)
        attrs.pop("dataSet", None)
        return attrs


class TargetDefinition(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    dhis: Optional[TargetDhisConfig] = Field(default=None)

    @field_validator("dhis", mode="before")
    @classmethod
    def _dhis_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, TargetDhisConfig)) else None


class DataSetConfig(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    guid: str
    label: Optional[str] = Field(default=None)


def _entries_with(value: Any, key: str, model: type) -> List[Any]:
    """Keep list entries carrying a string `key`; others are ignored."""

    if not isinstance(value, list):
        return []
    kept: List[Any] = []
    for entry in value:
        if isinstance(entry, model) or (isinstance(entry, dict) and isinstance(entry.get(key), str) and entry[key]):
            kept.append(entry)
        else:
            logger.debug("ignoring app settings entry without %s: %r", key, entry)
    return kept


class TargetsConfig(_WireModel):
    items: List[TargetDefinition] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, value: Any) -> Any:
        return _entries_with(value, "id", TargetDefinition)


class TasksConfig(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    targets: Optional[TargetsConfig] = Field(default=None)

    @field_validator("targets", mode="before")
    @classmethod
    def _targets_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, TargetsConfig)) else None


class AppSettings(_WireModel):
    """The parts of the CHT app settings the export reads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    dhis_data_sets: List[DataSetConfig] = Field(default_factory=list)
    tasks: Optional[TasksConfig] = Field(default=None)

    @field_validator("dhis_data_sets", mode="before")
    @classmethod
    def _data_sets_list(cls, value: Any) -> Any:
        return _entries_with(value, "guid", DataSetConfig)

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, TasksConfig)) else None

    def find_data_set(self, guid: str) -> Optional[DataSetConfig]:
        for data_set in self.dhis_data_sets:
            if data_set.guid == guid:
                return data_set
        return None

    @property
    def target_items(self) -> List[TargetDefinition]:
        if self.tasks is None or self.tasks.targets is None:
            return []
        return self.tasks.targets.items


# ---------------------------------------------------------------------------
# Stored documents
# ---------------------------------------------------------------------------


class DhisConfig(_WireModel):
    """One `dhis` entry on a contact; no dataSet means "any dataset"."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    org_unit: Optional[str] = Field(default=None)
    data_set: Optional[str] = Field(default=None)

    def matches(self, data_set: str) -> bool:
        return not self.data_set or self.data_set == data_set


class Contact(_WireModel):
    """A facility or administrative place.

    `parent` arrives as CouchDB minified lineage ({"_id": .., "parent": {..}}),
    a bare id or nothing; it is flattened to `lineage` (nearest ancestor first).
    """

    id: str = Field(alias="_id")
    name: Optional[str] = Field(default=None)
    lineage: List[str] = Field(default_factory=list)
    dhis: List[DhisConfig] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _flatten_parent(cls, data: Any) -> Any:
        if isinstance(data, dict) and "parent" in data:
            data = dict(data)
            data["lineage"] = _lineage_ids(data.pop("parent"))
        return data

    @field_validator("dhis", mode="before")
    @classmethod
    def _dhis_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [v for v in value if isinstance(v, (dict, DhisConfig))]
        return [value]


def _lineage_ids(parent: Any) -> List[str]:
    ids: List[str] = []
    node = parent
    while node:
        if isinstance(node, str):
            parent_id, node = node, None
        elif isinstance(node, dict):
            parent_id = node.get("_id") or node.get("id")
            node = node.get("parent")
        else:
            break

        # malformed lineage: stop rather than loop
        if not parent_id or parent_id in ids:
            break
        ids.append(parent_id)
    return ids


class TargetValue(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    total: Number = Field(default=0)

    @field_validator("total", mode="before")
    @classmethod
    def _missing_total(cls, value: Any) -> Any:
        return 0 if value is None else value


class TargetEntry(_WireModel):
    id: str
    value: TargetValue = Field(default_factory=TargetValue)


class TargetDocument(_WireModel):
    """One target doc per facility (owner) per reporting month."""

    id: str = Field(alias="_id")
    owner: str
    period: Optional[str] = Field(default=None, alias="reporting_period")
    targets: List[TargetEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# DHIS2 payload
# ---------------------------------------------------------------------------


class DataValue(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    data_element: str
    org_unit: str
    value: Number = Field(default=0)


class ExportResult(_WireModel):
    """DHIS2 aggregate dataValueSet."""

    data_set: str
    complete_date: str  # YYYY-MM-DD
    period: str  # YYYYMM
    data_values: List[DataValue] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
