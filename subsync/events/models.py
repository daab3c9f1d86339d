"""Typed records for the activity event log."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

import msgspec

if typ.TYPE_CHECKING:
    import datetime as dt

    from .storage import EventQueueRecord, EventRecord, EventStateRecord


class EventKind(enum.StrEnum):
    """Upstream event types kept by the log; all others are dropped."""

    PUSH = "PushEvent"
    CREATE = "CreateEvent"


class RawEventRepo(msgspec.Struct, kw_only=True):
    """Repository reference embedded in a feed event."""

    name: str


class RawEvent(msgspec.Struct, kw_only=True):
    """Feed event as delivered by the GitHub events API.

    GitHub serialises event ids as strings; integers are accepted too so
    fixtures and replays can use either.
    """

    id: int | str
    type: str
    repo: RawEventRepo
    payload: dict[str, typ.Any] = msgspec.field(default_factory=dict)
    created_at: str | None = None

    @property
    def source_id(self) -> int:
        """Return the event id as an integer."""
        return int(self.id)


@dataclasses.dataclass(frozen=True, slots=True)
class ActivityEvent:
    """Stored push or branch-create event."""

    source_id: int
    kind: EventKind
    repo: str
    branch: str | None
    before_hash: str | None
    head_hash: str | None
    payload: dict[str, typ.Any]
    created_at: dt.datetime | None
    ingested_at: dt.datetime
    is_sequence_start: bool = False

    @classmethod
    def from_record(cls, record: EventRecord) -> ActivityEvent:
        """Build an immutable event from its database row."""
        return cls(
            source_id=record.source_id,
            kind=EventKind(record.kind),
            repo=record.repo,
            branch=record.branch,
            before_hash=record.before_hash,
            head_hash=record.head_hash,
            payload=dict(record.payload),
            created_at=record.created_at,
            ingested_at=record.ingested_at,
            is_sequence_start=record.sequence_start,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionState:
    """Snapshot of the log bounds.

    Every event with ``start_id <= source_id <= last_id`` is present in the log.
    A ``start_id`` of zero means nothing has been ingested yet.
    """

    name: str
    start_id: int
    last_id: int

    @classmethod
    def from_record(cls, record: EventStateRecord) -> IngestionState:
        """Build a snapshot from the state row."""
        return cls(name=record.name, start_id=record.start_id, last_id=record.last_id)


@dataclasses.dataclass(frozen=True, slots=True)
class QueueCursor:
    """Snapshot of a named consumer's read position."""

    name: str
    kind: EventKind | None
    position: int

    @classmethod
    def from_record(cls, record: EventQueueRecord) -> QueueCursor:
        """Build a snapshot from the queue row."""
        return cls(
            name=record.name,
            kind=EventKind(record.kind) if record.kind else None,
            position=record.position,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class IngestResult:
    """Summary of a single ingestion call."""

    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    malformed: int = 0
    last_id: int = 0
    gap_detected: bool = False
