"""Presentation of export results (human-readable relabeling, JSON/CSV payloads)."""

from dhis2_aggregate.report.human import make_human_readable
from dhis2_aggregate.report.payload import (
    PayloadWriteResult,
    data_values_frame,
    default_export_path,
    load_export,
    write_export,
)

__all__ = [
    "PayloadWriteResult",
    "data_values_frame",
    "default_export_path",
    "load_export",
    "make_human_readable",
    "write_export",
]
