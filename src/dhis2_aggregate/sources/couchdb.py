from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from dhis2_aggregate.config import CouchDbConfig
from dhis2_aggregate.errors import StoreError

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Read-only view of the CHT database used by the export."""

    @abstractmethod
    def all_docs(
        self,
        *,
        keys: Optional[Sequence[str]] = None,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Docs by id list or by id range; missing and deleted ids are left out."""

    @abstractmethod
    def query(self, view: str, *, key: Optional[str] = None) -> List[Dict[str, Any]]:
        """Docs emitted by `view` ("ddoc/view"), optionally for a single key."""

    @abstractmethod
    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        """A single doc, or None when it does not exist."""


class CouchDbStore(DocumentStore):
    """CouchDB over HTTP (requests). Failures raise StoreError; nothing is retried."""

    def __init__(self, cfg: CouchDbConfig, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.db_url = f"{cfg.url.rstrip('/')}/{cfg.database}"
        self.session = session or requests.Session()
        if cfg.username:
            self.session.auth = (cfg.username, cfg.password or "")

    def _request(self, method: str, path: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        url = f"{self.db_url}/{path}"
        try:
            resp = self.session.request(method, url, timeout=self.cfg.timeout_s, **kwargs)
        except requests.RequestException as exc:
            raise StoreError(f"CouchDB request failed: {type(exc).__name__}: {exc}") from exc

        if resp.status_code == 404 and method == "GET" and not path.startswith("_"):
            return None
        if resp.status_code >= 400:
            raise StoreError(f"CouchDB {method} {path} returned {resp.status_code}", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise StoreError(f"CouchDB invalid JSON: {exc}", status_code=resp.status_code) from exc
        if not isinstance(payload, dict):
            raise StoreError("CouchDB response is not a JSON object", status_code=resp.status_code)
        return payload

    @staticmethod
    def _docs(payload: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = (payload or {}).get("rows") or []
        return [row["doc"] for row in rows if isinstance(row, dict) and isinstance(row.get("doc"), dict)]

    def all_docs(
        self,
        *,
        keys: Optional[Sequence[str]] = None,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"include_docs": "true"}
        if keys is not None:
            if not keys:
                return []
            payload = self._request("POST", "_all_docs", params=params, json={"keys": list(keys)})
        else:
            if start_key is not None:
                params["startkey"] = json.dumps(start_key)
            if end_key is not None:
                params["endkey"] = json.dumps(end_key)
            payload = self._request("GET", "_all_docs", params=params)

        docs = self._docs(payload)
        logger.debug("_all_docs returned %d docs", len(docs))
        return docs

    def query(self, view: str, *, key: Optional[str] = None) -> List[Dict[str, Any]]:
        ddoc, _, view_name = view.partition("/")
        if not view_name:
            raise ValueError(f"view must be '<design doc>/<view>', got {view!r}")

        params: Dict[str, Any] = {"include_docs": "true"}
        if key is not None:
            params["key"] = json.dumps(key)
        payload = self._request("GET", f"_design/{ddoc}/_view/{view_name}", params=params)

        docs = self._docs(payload)
        logger.debug("view %s (key=%s) returned %d docs", view, key, len(docs))
        return docs

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._request("GET", quote(doc_id, safe=""))
