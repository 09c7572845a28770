"""Store, settings and DHIS2 adapters plus the shared document models."""

from dhis2_aggregate.sources.couchdb import CouchDbStore, DocumentStore
from dhis2_aggregate.sources.dhis2 import SubmitResult, submit_data_value_set
from dhis2_aggregate.sources.models import (
    AppSettings,
    Contact,
    DataSetConfig,
    DataValue,
    DhisConfig,
    ExportResult,
    OrgUnitMap,
    TargetDefinition,
    TargetDhisConfig,
    TargetDocument,
)
from dhis2_aggregate.sources.settings import (
    CouchSettingsProvider,
    FileSettingsProvider,
    SettingsProvider,
    parse_app_settings,
)

__all__ = [
    "AppSettings",
    "Contact",
    "CouchDbStore",
    "CouchSettingsProvider",
    "DataSetConfig",
    "DataValue",
    "DhisConfig",
    "DocumentStore",
    "ExportResult",
    "FileSettingsProvider",
    "OrgUnitMap",
    "SettingsProvider",
    "SubmitResult",
    "TargetDefinition",
    "TargetDhisConfig",
    "TargetDocument",
    "parse_app_settings",
    "submit_data_value_set",
]
