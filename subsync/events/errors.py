"""Errors raised while classifying upstream activity events."""

from __future__ import annotations


class MalformedPayloadError(ValueError):
    """Raised when an activity event does not have the expected shape."""

    def __init__(self, message: str, *, source_id: int | None = None) -> None:
        """Record the offending event id, when it could be read."""
        self.source_id = source_id
        super().__init__(message)

    @classmethod
    def invalid_event(cls, detail: object) -> MalformedPayloadError:
        """Return an error for an event that failed schema conversion."""
        return cls(f"activity event has an unexpected shape: {detail}")

    @classmethod
    def unexpected_ref(cls, source_id: int, ref: object) -> MalformedPayloadError:
        """Return an error for a push whose ref is not a branch ref."""
        return cls(
            f"push event {source_id} has non-branch ref {ref!r}", source_id=source_id
        )

    @classmethod
    def missing_field(cls, source_id: int, field: str) -> MalformedPayloadError:
        """Return an error for a push payload missing a commit hash."""
        return cls(
            f"push event {source_id} payload missing {field!r}", source_id=source_id
        )


class EventFeedNotConfiguredError(RuntimeError):
    """Raised when a download is requested from a log without a live feed."""

    def __init__(self) -> None:
        """Attach a fixed message."""
        super().__init__("event log has no feed configured for downloads")
