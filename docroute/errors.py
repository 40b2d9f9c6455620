"""Failure taxonomy shared by the ledger operations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    STALE_STATE = "stale_state"
    INTEGRITY_MISMATCH = "integrity_mismatch"


class OperationResult(BaseModel):
    """Outcome of a guarded mutation.

    Predictable business failures are reported here instead of raised.
    """

    success: bool
    message: str
    error: Optional[ErrorKind] = None
    workflow_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, workflow_id: str | None = None, **details: Any) -> "OperationResult":
        return cls(success=True, message=message, workflow_id=workflow_id, details=details)

    @classmethod
    def fail(
        cls, error: ErrorKind, message: str, workflow_id: str | None = None, **details: Any
    ) -> "OperationResult":
        return cls(
            success=False,
            message=message,
            error=error,
            workflow_id=workflow_id,
            details=details,
        )

    def __bool__(self) -> bool:
        return self.success


class DocrouteError(Exception):
    """Base class for errors that indicate misuse rather than business state."""


class IllegalTransitionError(DocrouteError, ValueError):
    """A step was asked to move along an edge the state machine forbids."""


class InvalidReturnFileError(DocrouteError, ValueError):
    """A returned artifact failed the structural parse stage."""


class WorkflowConflictError(DocrouteError):
    """The document already has an open workflow."""


class DocumentNotFoundError(DocrouteError, LookupError):
    pass


class WorkflowNotFoundError(DocrouteError, LookupError):
    pass


class TemplateNotFoundError(DocrouteError, LookupError):
    pass
