from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


class PathsConfig(BaseModel):
    logs_dir: Path = Field(default=Path("logs"))
    exports_dir: Path = Field(default=Path("exports"))


class CouchDbConfig(BaseModel):
    url: str = Field(default="http://localhost:5984")
    database: str = Field(default="medic")

    # Credentials are read primarily from env (COUCH_USER / COUCH_PASSWORD)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)

    timeout_s: float = Field(default=30.0)

    # "<design doc>/<view>"
    contacts_view: str = Field(default="medic-admin/contacts_by_orgunit")
    settings_doc_id: str = Field(default="settings")


class Dhis2Config(BaseModel):
    url: Optional[str] = Field(default=None)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    timeout_s: float = Field(default=60.0)
    max_attempts: int = Field(default=3)


class Settings(BaseModel):
    """Application settings.

    TZ conventions:
    - export_tz is used to read the requested "from" date and to stamp
      completeDate (default UTC)

    Store:
    - couchdb points at the CHT database holding target docs, contacts and
      the app settings document.

    Submission:
    - dhis2 credentials are read from env/YAML and must not be committed.
    """

    export_tz: str = Field(default="UTC")

    @field_validator("export_tz")
    @classmethod
    def _known_tz(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {v}") from exc
        return v

    # Workers for the independent target/contact fetches
    fetch_workers: int = Field(default=2)

    couchdb: CouchDbConfig = Field(default_factory=CouchDbConfig)

    dhis2: Dhis2Config = Field(default_factory=Dhis2Config)

    paths: PathsConfig = Field(default_factory=PathsConfig)


_ENV_OVERRIDES = {
    "EXPORT_TZ": ("export_tz",),
    "COUCH_URL": ("couchdb", "url"),
    "COUCH_DB": ("couchdb", "database"),
    "COUCH_USER": ("couchdb", "username"),
    "COUCH_PASSWORD": ("couchdb", "password"),
    "DHIS2_URL": ("dhis2", "url"),
    "DHIS2_USERNAME": ("dhis2", "username"),
    "DHIS2_PASSWORD": ("dhis2", "password"),
}


def load_settings(config_path: Optional[Path]) -> Settings:
    """Load settings from .env + optional YAML.

    Precedence:
      1) defaults
      2) .env / process env (EXPORT_TZ, COUCH_*, DHIS2_*)
      3) YAML file (if provided)

    Notes:
      - Only the project's local `.env` file is loaded, never one from a
        parent directory.
    """

    load_dotenv(dotenv_path=Path(".env"), override=False)

    merged: Dict[str, Any] = Settings().model_dump(mode="python")

    for env_key, target in _ENV_OVERRIDES.items():
        value = _getenv(env_key)
        if value is None:
            continue
        node = merged
        for part in target[:-1]:
            node = node.setdefault(part, {})
        node[target[-1]] = value

    if config_path is not None:
        cfg = _load_yaml(config_path)
        merged = _deep_merge(merged, cfg)

    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _getenv(key: str) -> Optional[str]:
    import os

    value = os.getenv(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(str(path))
    raw = path.read_text(encoding="utf-8")
    parsed = yaml.safe_load(raw) or {}
    if not isinstance(parsed, dict):
        raise ValueError("YAML config must be a mapping/object at the top level")
    return parsed


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if (
            k in out
            and isinstance(out[k], dict)
            and isinstance(v, dict)
        ):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out
