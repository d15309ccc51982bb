"""Error taxonomy for index facade operations.

Every failure raised by the facade derives from :class:`HnswFacadeError` and
carries a bounded :class:`ErrorCode`. Errors raised by the underlying engine
library that are not part of this taxonomy propagate unchanged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Bounded error codes for callers and observability."""

    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"
    EMPTY_INDEX = "EMPTY_INDEX"
    SAVE_FAILED = "SAVE_FAILED"
    LOAD_FAILED = "LOAD_FAILED"
    COMPACT_MISSING_CONFIG = "COMPACT_MISSING_CONFIG"
    INVALID_INPUT = "INVALID_INPUT"


class HnswFacadeError(Exception):
    """Base class for typed facade errors."""

    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str) -> None:
        """Initialize with a human-readable message."""
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        """Return machine-readable error fields."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/transport."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details(),
        }


class DimensionMismatchError(HnswFacadeError):
    """A vector or config dimension disagrees with the index dimension."""

    code = ErrorCode.DIMENSION_MISMATCH

    def __init__(self, expected: int, got: int) -> None:
        """Initialize with expected and actual dimensions."""
        self.expected = int(expected)
        self.got = int(got)
        super().__init__(f"Invalid dimension: expected {self.expected}, got {self.got}")

    def details(self) -> dict[str, Any]:
        return {"expected": self.expected, "got": self.got}


class EmptyIndexError(HnswFacadeError):
    """The operation requires at least one stored vector."""

    code = ErrorCode.EMPTY_INDEX

    def __init__(self, message: str = "Index is empty") -> None:
        super().__init__(message)


class SaveFailedError(HnswFacadeError):
    """Persisting the index (engine files or tombstone sidecar) failed."""

    code = ErrorCode.SAVE_FAILED

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Save failed: {reason}")

    def details(self) -> dict[str, Any]:
        return {"reason": self.reason}


class LoadFailedError(HnswFacadeError):
    """Engine files are missing, unreadable or corrupt."""

    code = ErrorCode.LOAD_FAILED

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Load failed: {reason}")

    def details(self) -> dict[str, Any]:
        return {"reason": self.reason}


class CompactMissingConfigError(HnswFacadeError):
    """Compaction needs a config but none was given or remembered."""

    code = ErrorCode.COMPACT_MISSING_CONFIG

    def __init__(self) -> None:
        super().__init__(
            "Compaction requires an IndexConfig: pass one explicitly or construct "
            "the index from a config"
        )


class InvalidInputError(HnswFacadeError):
    """Caller input failed validation."""

    code = ErrorCode.INVALID_INPUT

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid input: {reason}")

    def details(self) -> dict[str, Any]:
        return {"reason": self.reason}


class DistanceMismatchError(InvalidInputError):
    """A config or file names a different distance metric than the index uses."""

    def __init__(self, expected: Any, got: Any) -> None:
        self.expected = expected
        self.got = got
        super().__init__(
            f"invalid distance metric: expected {_metric_name(expected)}, "
            f"got {_metric_name(got)}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "expected": _metric_name(self.expected),
            "got": _metric_name(self.got),
        }


def _metric_name(value: Any) -> str:
    return str(getattr(value, "value", value))
