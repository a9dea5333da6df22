from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """Raised when a backing store times out or drops the connection."""

    def __init__(self, message: str, *, operation: str, timed_out: bool = False):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.timed_out = timed_out


__all__ = ["ConstraintViolation", "StoreUnavailable"]
