"""Export pipeline (definitions → org unit hierarchy → aggregation → payload)."""

from dhis2_aggregate.pipeline.aggregate import build_data_values
from dhis2_aggregate.pipeline.definitions import resolve_target_definitions
from dhis2_aggregate.pipeline.export import (
    ExportFilters,
    ExportOptions,
    export_aggregate,
    parse_from_date,
)
from dhis2_aggregate.pipeline.hierarchy import map_contact_org_units

__all__ = [
    "ExportFilters",
    "ExportOptions",
    "build_data_values",
    "export_aggregate",
    "map_contact_org_units",
    "parse_from_date",
    "resolve_target_definitions",
]
