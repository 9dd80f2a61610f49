from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk.bootstrap import ServiceContainer, build_container, install
from helpdesk.core.config import Settings
from helpdesk.main import create_app
from helpdesk.metrics import MetricsRegistry, register_default_metrics
from helpdesk.security.roles import Role
from helpdesk.security.tokens import TokenVerifier
from helpdesk.tickets.metadata import TicketMetadata
from helpdesk.tickets.models import Ticket, TicketDraft
from helpdesk.tickets.notifications import NotificationFanout
from helpdesk.tickets.state import TicketStatus

from .factories import FIXED_NOW, Users


@pytest.fixture
def settings() -> Settings:
    return Settings(
        postgres_dsn="sqlite+aiosqlite://",
        jwt_secret="helpdesk-test-secret-0123456789abcdef",
        cron_secret="cron-secret",
        slack_enabled=False,
        email_enabled=False,
    )


@pytest.fixture
def registry() -> MetricsRegistry:
    registry = MetricsRegistry()
    register_default_metrics(registry)
    return registry


@pytest.fixture
def fanout() -> AsyncMock:
    return AsyncMock(spec=NotificationFanout)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def container(settings, session_factory, engine, fanout, registry) -> ServiceContainer:
    container = build_container(
        settings,
        session_factory,
        engine=engine,
        fanout=fanout,
        registry=registry,
        clock=lambda: FIXED_NOW,
    )
    await container.ticket_service.ensure_schema()
    return container


@pytest_asyncio.fixture
async def users(container: ServiceContainer) -> Users:
    """Seed the people and committee the ticket scenarios refer to."""

    directory = container.directory
    ids = Users()
    for user_id, external_id, role in (
        (ids.student, "student-1", Role.STUDENT),
        (ids.other_student, "student-2", Role.STUDENT),
        (ids.committee_member, "committee-5", Role.COMMITTEE),
        (ids.admin, "admin-7", Role.ADMIN),
        (ids.unscoped_admin, "admin-8", Role.ADMIN),
        (ids.super_admin, "super-9", Role.SUPER_ADMIN),
    ):
        await directory.create_user(
            external_id=external_id, role=role, email=f"{external_id}@example.edu", user_id=user_id
        )
    await directory.create_user(
        external_id="head-42",
        role=Role.COMMITTEE,
        email="head@example.edu",
        first_name="Ravi",
        last_name="Kumar",
        user_id=ids.head,
    )
    await directory.create_committee(
        name="Hostel Committee",
        head_id=ids.head,
        contact_email="hostel@example.edu",
        committee_id=ids.committee,
    )
    await directory.add_committee_member(ids.committee, ids.committee_member)
    await directory.add_admin_assignment(ids.admin, "Hostel")
    return ids


@pytest.fixture
def create_ticket(container: ServiceContainer):
    async def factory(
        *,
        ticket_id: int,
        created_by: int = 1,
        status: TicketStatus = TicketStatus.OPEN,
        category: str = "Hostel",
        location: str | None = "Block A",
        assigned_to: int | None = None,
        group_id: int | None = None,
        metadata: TicketMetadata | None = None,
        resolution_due_at: datetime | None = FIXED_NOW + timedelta(hours=48),
    ) -> Ticket:
        return await container.ticket_repository.create_ticket(
            TicketDraft(
                id=ticket_id,
                title=f"Ticket {ticket_id}",
                description="Water leaking from the ceiling",
                category=category,
                location=location,
                created_by=created_by,
                status=status,
                assigned_to=assigned_to,
                group_id=group_id,
                resolution_due_at=resolution_due_at,
                metadata=metadata or TicketMetadata(),
            )
        )

    return factory


@pytest.fixture
def app(settings, container):
    app = create_app(settings)
    install(app, container)
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def auth(settings):
    verifier = TokenVerifier.from_settings(settings)

    def headers(external_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {verifier.issue(external_id)}"}

    return headers
