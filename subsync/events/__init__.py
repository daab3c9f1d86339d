"""Activity event log: ingestion, gap detection and named read queues."""

from __future__ import annotations

from .errors import EventFeedNotConfiguredError, MalformedPayloadError
from .ingestion import DEFAULT_STATE_NAME, EventFeed, EventLog
from .models import (
    ActivityEvent,
    EventKind,
    IngestionState,
    IngestResult,
    QueueCursor,
    RawEvent,
)
from .queue import EventQueue
from .storage import (
    Base,
    EventQueueRecord,
    EventRecord,
    EventStateRecord,
    UTCDateTime,
    init_event_storage,
)

__all__ = [
    "DEFAULT_STATE_NAME",
    "ActivityEvent",
    "Base",
    "EventFeed",
    "EventFeedNotConfiguredError",
    "EventKind",
    "EventLog",
    "EventQueue",
    "EventQueueRecord",
    "EventRecord",
    "EventStateRecord",
    "IngestResult",
    "IngestionState",
    "MalformedPayloadError",
    "QueueCursor",
    "RawEvent",
    "UTCDateTime",
    "init_event_storage",
]
