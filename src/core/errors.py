"""Error taxonomy and the discriminated result shared by all store operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    CROSS_PROJECT_REFERENCE = "cross_project_reference"
    FORBIDDEN = "forbidden"
    VALIDATION_ERROR = "validation_error"
    INTERNAL_ERROR = "internal_error"


class TimeslotError(Exception):
    """Raised while validating a batch; converted to a failed OperationResult."""

    def __init__(self, kind: ErrorKind, detail: str, ids: list[int] | None = None) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.ids = ids or []


@dataclass
class OperationResult:
    """`{success: true, data}` or `{success: false, error_kind, error}`."""

    success: bool
    data: Any = None
    error_kind: ErrorKind | None = None
    error: str = ""
    offending_ids: list[int] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: TimeslotError) -> OperationResult:
        return cls(
            success=False, error_kind=exc.kind, error=exc.detail, offending_ids=list(exc.ids),
        )
