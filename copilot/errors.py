from __future__ import annotations

from typing import Optional


class SchedulingError(Exception):
    """Base for failures that reach the caller of ``resolve`` as typed results."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(SchedulingError):
    kind = "validation"

    def __init__(self, field: str, detail: Optional[str] = None) -> None:
        self.field = field
        self.detail = detail or f"Invalid value for '{field}'."
        super().__init__(self.detail)


class UpstreamUnavailableError(SchedulingError):
    kind = "upstream_unavailable"

    def __init__(self, operation: str, detail: Optional[str] = None) -> None:
        self.operation = operation
        self.detail = detail or "no response"
        super().__init__(f"{operation} failed: {self.detail}")
