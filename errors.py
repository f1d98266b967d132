from dataclasses import dataclass
from typing import Any, Optional


class ValidationError(ValueError):
    """An intent was rejected before any network call was attempted."""


class FeedUnavailable(RuntimeError):
    """A write, read or subscribe against the remote feed did not succeed."""

    def __init__(self, message: str, path: Optional[str] = None, room_id: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.room_id = room_id


@dataclass
class Outcome:
    """Result of a call whose failure is reported rather than raised."""

    ok: bool
    error: Optional[Exception] = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Outcome":
        return cls(ok=False, error=error)
