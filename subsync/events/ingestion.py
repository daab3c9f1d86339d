"""Durable, deduplicated log of upstream activity events.

The GitHub organisation feed only exposes a bounded window of recent events.
Each ingestion run walks the feed newest-first until it reaches an event the
log has already seen. When the walk runs out of feed before connecting to the
previous ``last_id`` the log records a gap: ``start_id`` moves up to the
oldest event just ingested, and any consumer that last read below it has to
fall back to a full resynchronisation.
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import logging
import re
import typing as typ

import msgspec
from sqlalchemy import select

from subsync.common.time import parse_github_datetime

from .errors import EventFeedNotConfiguredError, MalformedPayloadError
from .models import ActivityEvent, EventKind, IngestionState, IngestResult, RawEvent
from .storage import EventRecord, EventStateRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    SessionFactory: typ.TypeAlias = async_sessionmaker[AsyncSession]
    RawEvents: typ.TypeAlias = (
        cabc.Iterable[cabc.Mapping[str, typ.Any]]
        | cabc.AsyncIterable[cabc.Mapping[str, typ.Any]]
    )

logger = logging.getLogger(__name__)

DEFAULT_STATE_NAME = "github-state"

_BRANCH_REF = re.compile(r"^refs/heads/(?P<branch>.+)$")


class EventFeed(typ.Protocol):
    """Source of raw activity events, newest first."""

    def iter_events(self) -> cabc.AsyncIterator[cabc.Mapping[str, typ.Any]]:
        """Yield raw feed events, newest first."""
        ...


def decode_event(item: object) -> RawEvent:
    """Convert a raw feed mapping into a typed event."""
    try:
        raw = msgspec.convert(item, RawEvent)
    except msgspec.ValidationError as exc:
        raise MalformedPayloadError.invalid_event(exc) from exc
    try:
        int(raw.id)
    except ValueError as exc:
        raise MalformedPayloadError.invalid_event(f"id {raw.id!r}") from exc
    return raw


def classify_event(raw: RawEvent) -> EventRecord | None:
    """Build the row to store for ``raw``, or ``None`` for ignored kinds.

    Raises
    ------
    MalformedPayloadError
        If a push event does not target a branch or lacks its hashes.

    """
    if raw.type == EventKind.PUSH:
        ref = raw.payload.get("ref")
        match = _BRANCH_REF.match(ref) if isinstance(ref, str) else None
        if match is None:
            raise MalformedPayloadError.unexpected_ref(raw.source_id, ref)
        before = raw.payload.get("before")
        head = raw.payload.get("head")
        if not isinstance(before, str):
            raise MalformedPayloadError.missing_field(raw.source_id, "before")
        if not isinstance(head, str):
            raise MalformedPayloadError.missing_field(raw.source_id, "head")
        branch: str | None = match.group("branch")
    elif raw.type == EventKind.CREATE:
        # Tags and repositories are created without a branch.
        branch, before, head = None, None, None
    else:
        return None

    try:
        created_at = parse_github_datetime(raw.created_at) if raw.created_at else None
    except ValueError as exc:
        raise MalformedPayloadError.invalid_event(exc) from exc

    return EventRecord(
        source_id=raw.source_id,
        kind=raw.type,
        repo=raw.repo.name,
        branch=branch,
        before_hash=before,
        head_hash=head,
        payload=raw.payload,
        created_at=created_at,
        sequence_start=False,
    )


async def _iter_raw(
    events: RawEvents,
) -> cabc.AsyncIterator[cabc.Mapping[str, typ.Any]]:
    """Iterate sync or async sources uniformly, closing async ones on exit."""
    if not isinstance(events, cabc.AsyncIterable):
        for item in events:
            yield item
        return

    iterator = aiter(events)
    try:
        async for item in iterator:
            yield item
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def _collect_new(
    events: RawEvents, last_id: int
) -> tuple[list[RawEvent], bool, int]:
    """Read the feed until it reaches ``last_id``.

    Returns the decoded new events, whether the walk connected to an already
    seen event, and how many items could not be decoded. The feed is read
    before the write transaction opens so paging never holds the log locked.
    """
    batch: list[RawEvent] = []
    malformed = 0
    async with contextlib.aclosing(_iter_raw(events)) as items:
        async for item in items:
            try:
                raw = decode_event(item)
            except MalformedPayloadError as exc:
                malformed += 1
                logger.warning("Dropping undecodable event: %s", exc)
                continue
            if raw.source_id <= last_id:
                return batch, True, malformed
            batch.append(raw)
    return batch, False, malformed


class _IngestTally:
    """Mutable counters for a single ingestion call."""

    __slots__ = ("fetched", "malformed", "newest", "oldest", "oldest_row", "skipped")

    def __init__(self) -> None:
        self.fetched = 0
        self.skipped = 0
        self.malformed = 0
        self.newest: int | None = None
        self.oldest: int | None = None
        self.oldest_row: EventRecord | None = None

    def saw(self, source_id: int) -> None:
        self.fetched += 1
        if self.newest is None or source_id > self.newest:
            self.newest = source_id
        if self.oldest is None or source_id < self.oldest:
            self.oldest = source_id

    def stored(self, row: EventRecord) -> None:
        if self.oldest_row is None or row.source_id < self.oldest_row.source_id:
            self.oldest_row = row


class EventLog:
    """Event cache shared by every named queue.

    The log is an explicit handle: ingestion and queues receive it rather than
    reaching for process-wide state, so tests can build isolated logs by
    choosing a different ``state_name`` or database.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        feed: EventFeed | None = None,
        state_name: str = DEFAULT_STATE_NAME,
    ) -> None:
        """Bind the log to a database and, optionally, a live feed."""
        self._session_factory = session_factory
        self._feed = feed
        self._state_name = state_name

    @property
    def session_factory(self) -> SessionFactory:
        """Return the session factory used by the log and its queues."""
        return self._session_factory

    async def state(self) -> IngestionState:
        """Return the current log bounds, creating the state row if needed."""
        async with self._session_factory() as session, session.begin():
            record = await self.load_state_record(session)
            return IngestionState.from_record(record)

    async def load_state_record(self, session: AsyncSession) -> EventStateRecord:
        """Load the state row inside ``session``'s transaction."""
        record = await session.scalar(
            select(EventStateRecord).where(EventStateRecord.name == self._state_name)
        )
        if record is None:
            record = EventStateRecord(name=self._state_name, start_id=0, last_id=0)
            session.add(record)
            await session.flush()
        return record

    async def download(self) -> IngestResult:
        """Ingest whatever the live feed currently holds."""
        if self._feed is None:
            raise EventFeedNotConfiguredError
        return await self.ingest(self._feed.iter_events())

    async def ingest(self, events: RawEvents) -> IngestResult:
        """Store new push and create events from a newest-first feed.

        Events, ``start_id`` and ``last_id`` are committed together, so a
        failure part way through leaves the log exactly as it was.
        """
        previous_last_id = (await self.state()).last_id
        batch, connected, malformed = await _collect_new(events, previous_last_id)

        tally = _IngestTally()
        tally.malformed = malformed
        added: set[int] = set()
        async with self._session_factory() as session, session.begin():
            state = await self.load_state_record(session)
            # Another run may have ingested part of the batch in the meantime.
            if state.last_id > previous_last_id:
                connected = connected or any(
                    raw.source_id <= state.last_id for raw in batch
                )
                batch = [raw for raw in batch if raw.source_id > state.last_id]
                previous_last_id = state.last_id

            for raw in batch:
                source_id = raw.source_id
                tally.saw(source_id)
                row = self._classify(raw, tally)
                if row is None:
                    continue
                if source_id in added or await self._is_stored(session, source_id):
                    tally.skipped += 1
                    continue
                session.add(row)
                added.add(source_id)
                tally.stored(row)

            if tally.newest is None or tally.oldest is None:
                return IngestResult(malformed=tally.malformed, last_id=previous_last_id)

            connected = connected or tally.oldest == previous_last_id + 1
            gap = not state.start_id or not connected
            if gap:
                state.start_id = tally.oldest
                if tally.oldest_row is not None:
                    tally.oldest_row.sequence_start = True
                logger.warning(
                    "Event log gap: events after %d may be missing; "
                    "contiguous run now starts at %d",
                    previous_last_id,
                    tally.oldest,
                )
            state.last_id = max(tally.newest, previous_last_id)
            new_last_id = state.last_id

        logger.info(
            "Ingested %d of %d new events (last_id=%d, gap=%s)",
            len(added),
            tally.fetched,
            new_last_id,
            gap,
        )
        return IngestResult(
            fetched=tally.fetched,
            stored=len(added),
            skipped=tally.skipped,
            malformed=tally.malformed,
            last_id=new_last_id,
            gap_detected=gap,
        )

    @staticmethod
    def _classify(raw: RawEvent, tally: _IngestTally) -> EventRecord | None:
        try:
            row = classify_event(raw)
        except MalformedPayloadError as exc:
            tally.malformed += 1
            logger.warning("Dropping malformed event: %s", exc)
            return None
        if row is None:
            tally.skipped += 1
        return row

    @staticmethod
    async def _is_stored(session: AsyncSession, source_id: int) -> bool:
        existing = await session.scalar(
            select(EventRecord.id).where(EventRecord.source_id == source_id)
        )
        return existing is not None

    async def get_events(
        self,
        start_id: int,
        end_id: int,
        *,
        kind: EventKind | None = None,
    ) -> list[ActivityEvent]:
        """Return events with ids in ``(start_id, end_id]``, oldest first."""
        query = select(EventRecord).where(
            EventRecord.source_id > start_id, EventRecord.source_id <= end_id
        )
        if kind is not None:
            query = query.where(EventRecord.kind == kind.value)
        async with self._session_factory() as session:
            rows = (await session.scalars(query.order_by(EventRecord.source_id))).all()
        return [ActivityEvent.from_record(row) for row in rows]

    async def dump_events(self) -> list[ActivityEvent]:
        """Return every stored event, oldest first."""
        async with self._session_factory() as session:
            query = select(EventRecord).order_by(EventRecord.source_id)
            rows = (await session.scalars(query)).all()
        return [ActivityEvent.from_record(row) for row in rows]


__all__ = [
    "DEFAULT_STATE_NAME",
    "EventFeed",
    "EventLog",
    "classify_event",
    "decode_event",
]
