from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import OUTBOX_FAILURES_TOTAL, OUTBOX_PROCESSED_TOTAL
from packages.db.models import OutboxTable

from .models import OutboxEvent
from .notifications import DeliveryLedger, NotificationFanout

logger = logging.getLogger(__name__)

TICKET_FORWARDED = "ticket.forwarded"
TICKET_ESCALATED = "ticket.escalated"
TICKET_STATUS_UPDATED = "ticket.status.updated"
TICKET_TAT_SET = "ticket.tat.set"
TICKET_REASSIGNED = "ticket.reassigned"

# payload key holding the channels a partly delivered event already reached
DELIVERED_KEY = "delivered_channels"

EventHandler = Callable[[Mapping[str, Any], DeliveryLedger], Awaitable[None]]


class OutboxRepository:
    """Access to pending outbox events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def claim_pending(self, *, limit: int, now: datetime, max_attempts: int) -> list[OutboxEvent]:
        statement = (
            select(OutboxTable)
            .where(
                OutboxTable.processed_at.is_(None),
                OutboxTable.attempts < max_attempts,
                or_(OutboxTable.next_retry_at.is_(None), OutboxTable.next_retry_at <= now),
            )
            .order_by(OutboxTable.id.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_event(row) for row in result.scalars().all()]

    async def get_event(self, event_id: int) -> OutboxEvent | None:
        async with self._session_factory() as session:
            row = await session.get(OutboxTable, event_id)
            return self._table_to_event(row) if row is not None else None

    async def list_events(self, *, event_type: str | None = None) -> list[OutboxEvent]:
        statement = select(OutboxTable).order_by(OutboxTable.id.asc())
        if event_type is not None:
            statement = statement.where(OutboxTable.event_type == event_type)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_event(row) for row in result.scalars().all()]

    async def mark_processed(self, event_id: int, *, now: datetime) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(OutboxTable, event_id)
                if row is None:
                    return
                row.processed_at = now
                row.last_error = None
                row.next_retry_at = None
                session.add(row)

    async def mark_failed(
        self,
        event_id: int,
        *,
        error: str,
        attempts: int,
        next_retry_at: datetime | None,
        delivered: Iterable[str] = (),
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(OutboxTable, event_id)
                if row is None:
                    return
                row.attempts = attempts
                row.last_error = error[:2000]
                row.next_retry_at = next_retry_at
                delivered = sorted(delivered)
                if delivered:
                    row.payload = {**(row.payload or {}), DELIVERED_KEY: delivered}
                session.add(row)

    @staticmethod
    def _table_to_event(row: OutboxTable) -> OutboxEvent:
        return OutboxEvent(
            id=int(row.id),
            event_type=row.event_type,
            payload=dict(row.payload or {}),
            attempts=row.attempts,
            last_error=row.last_error,
            next_retry_at=_as_utc(row.next_retry_at),
            processed_at=_as_utc(row.processed_at),
            created_at=_as_utc(row.created_at) or datetime.now(timezone.utc),
        )


@dataclass(slots=True)
class OutboxResult:
    processed: int = 0
    errors: int = 0


class OutboxProcessor:
    """Deliver pending outbox events, retrying failures with linear backoff.

    An event that fails is retried after ``retry_delay * attempts``. Once it
    has failed ``max_attempts`` times it is no longer claimed and stays in
    the table with its last error for inspection.

    Channels a failed attempt did reach are saved with the event and skipped
    when it is retried.
    """

    def __init__(
        self,
        repository: OutboxRepository,
        fanout: NotificationFanout,
        *,
        batch_size: int = 25,
        max_attempts: int = 5,
        retry_delay: timedelta = timedelta(seconds=60),
        registry: MetricsRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers: dict[str, EventHandler] = {
            TICKET_FORWARDED: fanout.deliver_forwarded,
            TICKET_ESCALATED: fanout.deliver_escalated,
            TICKET_STATUS_UPDATED: fanout.deliver_status_updated,
            TICKET_TAT_SET: fanout.deliver_tat_set,
            TICKET_REASSIGNED: fanout.deliver_reassigned,
        }
        registry = registry or metrics_registry
        self._processed = registry.counter(OUTBOX_PROCESSED_TOTAL, label_names=("event_type",))
        self._failures = registry.counter(OUTBOX_FAILURES_TOTAL, label_names=("event_type",))

    async def process_batch(self) -> OutboxResult:
        now = self._clock()
        events = await self._repository.claim_pending(
            limit=self._batch_size, now=now, max_attempts=self._max_attempts
        )
        result = OutboxResult()
        for event in events:
            if await self._deliver(event, now):
                result.processed += 1
            else:
                result.errors += 1
        if events:
            logger.info("Outbox batch finished: %d processed, %d failed", result.processed, result.errors)
        return result

    async def _deliver(self, event: OutboxEvent, now: datetime) -> bool:
        labels = {"event_type": event.event_type}
        handler = self._handlers.get(event.event_type)
        if handler is None:
            self._failures.inc(labels=labels)
            logger.warning("No handler for outbox event %s of type %s", event.id, event.event_type)
            await self._repository.mark_failed(
                event.id,
                error=f"Unknown event type: {event.event_type}",
                attempts=self._max_attempts,
                next_retry_at=None,
            )
            return False

        ledger = DeliveryLedger(event.payload.get(DELIVERED_KEY) or ())
        try:
            await handler(event.payload, ledger)
        except Exception as exc:
            attempts = event.attempts + 1
            next_retry_at = None
            if attempts < self._max_attempts:
                next_retry_at = now + self._retry_delay * attempts
            self._failures.inc(labels=labels)
            logger.warning(
                "Outbox event %s (%s) failed on attempt %d: %s", event.id, event.event_type, attempts, exc
            )
            await self._repository.mark_failed(
                event.id,
                error=str(exc) or exc.__class__.__name__,
                attempts=attempts,
                next_retry_at=next_retry_at,
                delivered=ledger.delivered,
            )
            return False

        await self._repository.mark_processed(event.id, now=now)
        self._processed.inc(labels=labels)
        return True


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
