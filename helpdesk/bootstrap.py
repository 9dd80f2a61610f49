"""Wire repositories, notification clients and services together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from helpdesk.core.config import Settings
from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.security.role_cache import RoleCache
from helpdesk.services.users import UserService
from helpdesk.tickets.directory import DirectoryRepository
from helpdesk.tickets.escalation import EscalationPolicy
from helpdesk.tickets.notifications import EmailSender, NotificationFanout, SlackClient
from helpdesk.tickets.outbox import OutboxProcessor, OutboxRepository
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.service import TicketService

logger = logging.getLogger(__name__)


def to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    if dsn.startswith("postgres://"):
        return "postgresql+asyncpg://" + dsn[len("postgres://") :]
    return dsn


@dataclass(slots=True)
class ServiceContainer:
    ticket_service: TicketService
    user_service: UserService
    outbox_processor: OutboxProcessor
    outbox_repository: OutboxRepository
    ticket_repository: TicketRepository
    directory: DirectoryRepository
    role_cache: RoleCache
    fanout: NotificationFanout
    registry: MetricsRegistry
    engine: AsyncEngine | None = None

    async def aclose(self) -> None:
        await self.fanout.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_fanout(settings: Settings, registry: MetricsRegistry) -> NotificationFanout:
    chat = SlackClient.from_settings(settings) if settings.slack_enabled else None
    email = EmailSender.from_settings(settings) if settings.email_enabled else None
    return NotificationFanout(chat=chat, email=email, registry=registry)


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    engine: AsyncEngine | None = None,
    fanout: NotificationFanout | None = None,
    registry: MetricsRegistry | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ServiceContainer:
    registry = registry or metrics_registry
    fanout = fanout or build_fanout(settings, registry)
    role_cache = RoleCache(
        ttl_seconds=settings.role_cache_ttl_seconds,
        max_entries=settings.role_cache_max_entries,
    )
    ticket_repository = TicketRepository(session_factory, engine=engine)
    directory = DirectoryRepository(session_factory)
    outbox_repository = OutboxRepository(session_factory)
    return ServiceContainer(
        ticket_service=TicketService(
            ticket_repository,
            directory,
            fanout=fanout,
            registry=registry,
            resolution_tat=timedelta(hours=settings.default_resolution_tat_hours),
            escalation_policy=EscalationPolicy(
                cooldown=timedelta(hours=settings.auto_escalation_cooldown_hours),
                stalled_after=timedelta(hours=settings.auto_escalation_stalled_hours),
            ),
            clock=clock,
        ),
        user_service=UserService(directory, role_cache),
        outbox_processor=OutboxProcessor(
            outbox_repository,
            fanout,
            batch_size=settings.outbox_batch_size,
            max_attempts=settings.outbox_max_attempts,
            retry_delay=timedelta(seconds=settings.outbox_retry_delay_seconds),
            registry=registry,
            clock=clock,
        ),
        outbox_repository=outbox_repository,
        ticket_repository=ticket_repository,
        directory=directory,
        role_cache=role_cache,
        fanout=fanout,
        registry=registry,
        engine=engine,
    )


async def connect(settings: Settings) -> ServiceContainer:
    """Create the engine, prepare the schema and return a ready container."""

    engine = create_async_engine(to_asyncpg_dsn(settings.postgres_dsn), future=True, pool_pre_ping=True)
    try:
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        container = build_container(settings, session_factory, engine=engine)
        await container.ticket_service.ensure_schema()
    except Exception:
        await engine.dispose()
        raise
    return container


def install(app: FastAPI, container: ServiceContainer | None) -> None:
    """Expose the container's services on ``app.state`` for the route dependencies."""

    app.state.container = container
    app.state.ticket_service = container.ticket_service if container else None
    app.state.user_service = container.user_service if container else None
    app.state.outbox_processor = container.outbox_processor if container else None
    app.state.metrics_registry = container.registry if container else metrics_registry
