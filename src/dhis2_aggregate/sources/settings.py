from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from dhis2_aggregate.errors import StoreError
from dhis2_aggregate.sources.couchdb import DocumentStore
from dhis2_aggregate.sources.models import AppSettings


class SettingsProvider(ABC):
    @abstractmethod
    def get(self) -> AppSettings:
        """Return the current app settings."""


def parse_app_settings(raw: Dict[str, Any]) -> AppSettings:
    """Validate an app settings mapping (the inner `settings` object is unwrapped)."""

    inner = raw.get("settings")
    if isinstance(inner, dict):
        raw = inner
    try:
        return AppSettings.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid app settings: {exc}") from exc


class CouchSettingsProvider(SettingsProvider):
    """Reads the app settings document from the CHT database."""

    def __init__(self, store: DocumentStore, doc_id: str = "settings") -> None:
        self.store = store
        self.doc_id = doc_id

    def get(self) -> AppSettings:
        doc = self.store.get(self.doc_id)
        if doc is None:
            raise StoreError(f"settings document not found: {self.doc_id}", status_code=404)
        return parse_app_settings(doc)


class FileSettingsProvider(SettingsProvider):
    """App settings from a local JSON/YAML file (e.g. an exported app_settings.json)."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get(self) -> AppSettings:
        if not self.path.exists():
            raise FileNotFoundError(str(self.path))
        # YAML is a superset of JSON
        parsed = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        if not isinstance(parsed, dict):
            raise ValueError("app settings must be a mapping/object at the top level")
        return parse_app_settings(parsed)
