"""Named read cursors over the event log."""

from __future__ import annotations

import logging
import typing as typ

from sqlalchemy import select

from .models import EventKind, QueueCursor
from .storage import EventQueueRecord

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .ingestion import EventLog
    from .models import ActivityEvent, IngestResult

logger = logging.getLogger(__name__)


class EventQueue:
    """Read pointer for a single named consumer of the event log.

    Each queue keeps its own position; several queues (for example one per
    superproject branch plus one for the mirror) can read the same log
    independently. Reading never advances the position; consumers call
    :meth:`mark_read_up_to` once an event has been acted upon.
    """

    def __init__(
        self,
        log: EventLog,
        name: str,
        *,
        kind: EventKind | None = None,
    ) -> None:
        """Create a cursor called ``name``, optionally filtered to ``kind``."""
        self._log = log
        self.name = name
        self.kind = kind

    async def _load(self, session: AsyncSession) -> EventQueueRecord:
        record = await session.scalar(
            select(EventQueueRecord).where(EventQueueRecord.name == self.name)
        )
        if record is None:
            record = EventQueueRecord(
                name=self.name,
                kind=self.kind.value if self.kind else None,
                position=0,
            )
            session.add(record)
            await session.flush()
        return record

    async def cursor(self) -> QueueCursor:
        """Return a snapshot of this queue's stored cursor."""
        async with self._log.session_factory() as session, session.begin():
            return QueueCursor.from_record(await self._load(session))

    async def position(self) -> int:
        """Return the id of the last event this consumer has handled."""
        return (await self.cursor()).position

    async def continued_from_last_run(self) -> bool:
        """Return whether the log still holds every event after our position.

        ``False`` means events were lost between this consumer's last
        checkpoint and the oldest contiguous event the log retains, so the
        consumer must resynchronise from ground truth.
        """
        async with self._log.session_factory() as session, session.begin():
            record = await self._load(session)
            state = await self._log.load_state_record(session)
            position, start_id = record.position, state.start_id
        continued = position >= start_id
        if not continued:
            logger.info(
                "Queue %s lost continuity (position=%d, log start=%d)",
                self.name,
                position,
                start_id,
            )
        return continued

    async def events(self, since: int | None = None) -> list[ActivityEvent]:
        """Return unread events, oldest first, without advancing the queue."""
        async with self._log.session_factory() as session, session.begin():
            record = await self._load(session)
            state = await self._log.load_state_record(session)
            start = record.position if since is None else since
            end = state.last_id
        return await self._log.get_events(start, end, kind=self.kind)

    async def mark_read_up_to(self, source_id: int) -> None:
        """Advance the position to ``source_id``; never moves backwards."""
        async with self._log.session_factory() as session, session.begin():
            record = await self._load(session)
            if source_id > record.position:
                record.position = source_id

    async def mark_all_read(self) -> None:
        """Move the position to the newest event in the log."""
        async with self._log.session_factory() as session, session.begin():
            record = await self._load(session)
            state = await self._log.load_state_record(session)
            record.position = max(record.position, state.last_id)

    async def download_more_events(self) -> IngestResult:
        """Pull the live feed into the log before reading further events."""
        return await self._log.download()


__all__ = ["EventQueue"]
