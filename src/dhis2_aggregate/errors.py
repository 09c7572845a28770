from __future__ import annotations

from typing import Any, Dict, Optional


class ExportValidationError(Exception):
    """Client-facing validation failure; no partial output is produced."""

    def __init__(self, message: str, code: int = 422) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class StoreError(Exception):
    """Document store could not be read (unreachable, bad status, bad JSON)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
