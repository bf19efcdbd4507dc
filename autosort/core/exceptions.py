"""Exception classes for autosort.

Includes:
- Base exception with a serializable error payload
- Typed sorting-engine failures produced by the engine adapter
- Proposal errors raised by the cycle resolver
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class AutosortException(Exception):
    """Base exception for all autosort errors."""

    def __init__(self, detail: str, error_code: str = "INTERNAL_ERROR"):
        self.detail = detail
        self.error_code = error_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for error reports."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


class InvalidProposalError(AutosortException):
    """Raised when a fix proposal can't be built or parsed."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="INVALID_PROPOSAL")


# =============================================================================
# ENGINE EXCEPTIONS
# =============================================================================


class EngineError(AutosortException):
    """Base exception for failures reported by the sorting engine."""

    def __init__(
        self,
        detail: str,
        operation: str = "unknown",
        original_error: BaseException | None = None,
        context: dict[str, Any] | None = None,
        allow_report: bool = True,
        error_code: str | None = None,
    ):
        super().__init__(
            detail=detail,
            error_code=error_code or f"ENGINE_{operation.upper()}_ERROR",
        )
        self.operation = operation
        self.original_error = original_error
        self.context = context or {}
        self.allow_report = allow_report

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "operation": self.operation,
                "allow_report": self.allow_report,
                "context": self.context,
            }
        )
        return base


class EngineInitError(EngineError):
    """The native engine instance could not be created."""

    def __init__(self, detail: str, game: str, original_error: BaseException | None = None):
        super().__init__(
            detail=detail,
            operation="create",
            original_error=original_error,
            context={"game": game},
            allow_report=False,
        )


class EngineClosedError(EngineError):
    """The engine was torn down before or during the call."""

    def __init__(self, operation: str = "unknown", original_error: BaseException | None = None):
        super().__init__(
            detail="already closed",
            operation=operation,
            original_error=original_error,
            error_code="ENGINE_CLOSED",
        )


class CyclicInteractionError(EngineError):
    """The rules contradict each other; carries the offending cycle."""

    def __init__(self, detail: str, cycle: list, original_error: BaseException | None = None):
        super().__init__(
            detail=detail,
            operation="sort",
            original_error=original_error,
            context={"cycle_length": len(cycle)},
            error_code="ENGINE_CYCLIC_INTERACTION",
        )
        self.cycle = cycle


class InvalidItemError(EngineError):
    """The engine rejected one of the items passed to it."""

    def __init__(self, detail: str, item: str, original_error: BaseException | None = None):
        super().__init__(
            detail=detail,
            operation="sort",
            original_error=original_error,
            context={"item": item},
            error_code="ENGINE_INVALID_ITEM",
        )
        self.item = item


class MissingGroupError(EngineError):
    """A rule references a group that doesn't exist."""

    def __init__(self, detail: str, group: str, original_error: BaseException | None = None):
        super().__init__(
            detail=detail,
            operation="sort",
            original_error=original_error,
            context={"group": group},
            error_code="ENGINE_MISSING_GROUP",
        )
        self.group = group


class ConditionEvalError(EngineError):
    """A rule condition could not be evaluated.

    ``path`` is the executable named by a ``version(...)`` condition, if the
    message contained one.
    """

    def __init__(
        self,
        detail: str,
        path: str | None = None,
        original_error: BaseException | None = None,
        allow_report: bool = True,
    ):
        super().__init__(
            detail=detail,
            operation="sort",
            original_error=original_error,
            context={"path": path} if path else {},
            allow_report=allow_report,
            error_code="ENGINE_CONDITION_EVAL",
        )
        self.path = path


class InvalidParameterError(EngineError):
    """The engine rejected an argument, e.g. an item it has no metadata for."""

    def __init__(
        self,
        detail: str,
        operation: str = "unknown",
        arg: Any = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(
            detail=detail,
            operation=operation,
            original_error=original_error,
            context={"arg": arg},
            error_code="ENGINE_INVALID_PARAMETER",
        )
        self.arg = arg
