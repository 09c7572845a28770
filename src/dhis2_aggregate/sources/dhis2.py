from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from dhis2_aggregate.config import Dhis2Config
from dhis2_aggregate.retry_utils import (
    TRANSIENT_HTTP_STATUS,
    RetryableHttpStatus,
    RetryConfig,
    retry_call,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    status: str  # ok/warn/error/missing
    message: str
    import_count: Dict[str, int] = field(default_factory=dict)
    http_status: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


def submit_data_value_set(
    payload: Dict[str, Any],
    *,
    cfg: Dhis2Config,
    session: Optional[requests.Session] = None,
) -> SubmitResult:
    """POST a machine-mode dataValueSet to DHIS2.

    Endpoint: <url>/api/dataValueSets

    Notes:
    - Basic auth from cfg (DHIS2_USERNAME / DHIS2_PASSWORD).
    - Transient failures (429/5xx, timeouts, connection errors) are retried
      with exponential backoff; 409 carries an import summary and is not.
    - DHIS2 >= 2.36 wraps the import summary in "response".
    """

    if not cfg.url:
        return SubmitResult(status="missing", message="DHIS2_URL missing (checked config and env)")

    url = f"{cfg.url.rstrip('/')}/api/dataValueSets"
    http = session or requests.Session()
    auth = (cfg.username, cfg.password or "") if cfg.username else None

    def _do_request() -> requests.Response:
        timeout = (min(5.0, float(cfg.timeout_s)), float(cfg.timeout_s))
        resp = http.post(url, json=payload, auth=auth, timeout=timeout)

        if resp.status_code in TRANSIENT_HTTP_STATUS:
            raise RetryableHttpStatus(resp.status_code)
        if resp.status_code == 409:
            return resp

        resp.raise_for_status()
        return resp

    def _on_retry(attempt: int, exc: Exception, delay_s: float) -> None:
        logger.warning(
            "Retry attempt %d/%d for dataValueSets after error: %s. Waiting %.1fs.",
            attempt,
            cfg.max_attempts,
            exc,
            delay_s,
        )

    try:
        resp = retry_call(
            _do_request,
            cfg=RetryConfig(max_attempts=cfg.max_attempts, base_delay_s=0.5, max_delay_s=8.0, multiplier=2.0),
            on_retry=_on_retry,
        )
    except Exception as exc:
        return SubmitResult(
            status="error",
            message=f"DHIS2 request failed: {type(exc).__name__}: {exc}",
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

    try:
        body = resp.json()
    except ValueError as exc:
        return SubmitResult(
            status="error",
            message=f"DHIS2 invalid JSON: {exc}",
            http_status=resp.status_code,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

    if not isinstance(body, dict):
        return SubmitResult(
            status="error",
            message="DHIS2 response is not a JSON object",
            http_status=resp.status_code,
            error_type="InvalidResponseError",
            error_message=type(body).__name__,
        )

    summary = body.get("response") if isinstance(body.get("response"), dict) else body
    import_status = str(summary.get("status") or "").upper()
    counts = summary.get("importCount") if isinstance(summary.get("importCount"), dict) else {}
    import_count = {k: int(v) for k, v in counts.items() if isinstance(v, (int, float))}

    if resp.status_code == 409 or import_status == "ERROR":
        return SubmitResult(
            status="error",
            message=str(summary.get("description") or body.get("message") or "DHIS2 rejected the import"),
            import_count=import_count,
            http_status=resp.status_code,
            error_type="ImportRejected",
            error_message=import_status or None,
        )

    if import_status == "WARNING" or import_count.get("ignored", 0) > 0:
        return SubmitResult(
            status="warn",
            message=f"DHIS2 import finished with warnings ({import_count.get('ignored', 0)} ignored)",
            import_count=import_count,
            http_status=resp.status_code,
        )

    return SubmitResult(status="ok", message="ok", import_count=import_count, http_status=resp.status_code)
