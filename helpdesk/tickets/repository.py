from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import ColumnElement, Select, and_, delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from helpdesk.security.roles import Actor, Role
from packages.db.models import (
    AdminAssignmentTable,
    CommitteeMemberTable,
    CommitteeTable,
    OutboxTable,
    TicketCommitteeTagTable,
    TicketGroupTable,
    TicketStatusTable,
    TicketTable,
)

from .access import COMMITTEE_CATEGORY
from .errors import DuplicateTagError, StaleTicketError, StatusLookupError, TicketNotFoundError
from .metadata import TicketMetadata
from .models import (
    Committee,
    CommitteeTag,
    OutboxDraft,
    TagDraft,
    Ticket,
    TicketChanges,
    TicketDraft,
)
from .state import STATUS_DEFINITIONS, TicketStatus

logger = logging.getLogger(__name__)


class TicketRepository:
    """Persistence for tickets, their committee tags and ticket groups."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._status_ids: dict[TicketStatus, int] = {}
        self._status_values: dict[int, TicketStatus] = {}

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def seed_statuses(self) -> int:
        """Insert any missing status lookup rows; returns how many were added."""

        added = 0
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(select(TicketStatusTable.value))
                existing = set(result.scalars().all())
                for definition in STATUS_DEFINITIONS:
                    if definition.status.value in existing:
                        continue
                    session.add(
                        TicketStatusTable(
                            value=definition.status.value,
                            label=definition.label,
                            badge_color=definition.badge_color,
                            is_final=definition.is_final,
                            display_order=definition.display_order,
                        )
                    )
                    added += 1
        self._status_ids.clear()
        self._status_values.clear()
        if added:
            logger.info("Seeded %d ticket statuses", added)
        return added

    async def _load_statuses(self, session: AsyncSession) -> None:
        if self._status_ids:
            return
        result = await session.execute(select(TicketStatusTable).where(TicketStatusTable.is_active == True))  # noqa: E712
        for row in result.scalars().all():
            try:
                status = TicketStatus(row.value)
            except ValueError:
                logger.warning("Ignoring unknown status lookup row %r", row.value)
                continue
            self._status_ids[status] = row.id
            self._status_values[row.id] = status

    async def _status_id(self, session: AsyncSession, status: TicketStatus) -> int:
        await self._load_statuses(session)
        status_id = self._status_ids.get(status)
        if status_id is None:
            raise StatusLookupError(status.value)
        return status_id

    async def _status_for(self, session: AsyncSession, status_id: int) -> TicketStatus:
        await self._load_statuses(session)
        status = self._status_values.get(status_id)
        if status is None:
            raise StatusLookupError(str(status_id))
        return status

    async def create_ticket(self, draft: TicketDraft) -> Ticket:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                row = TicketTable(
                    title=draft.title,
                    description=draft.description,
                    category=draft.category,
                    subcategory=draft.subcategory,
                    location=draft.location,
                    status_id=await self._status_id(session, draft.status),
                    created_by=draft.created_by,
                    assigned_to=draft.assigned_to,
                    group_id=draft.group_id,
                    resolution_due_at=draft.resolution_due_at,
                    metadata_=draft.metadata.to_document(),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                if draft.id is not None:
                    row.id = draft.id
                session.add(row)
                await session.flush()
                return await self._table_to_ticket(session, row)

    async def get_ticket(self, ticket_id: int) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return await self._table_to_ticket(session, row)

    async def list_tickets(
        self,
        *,
        viewer: Actor | None = None,
        status: TicketStatus | None = None,
        include_final: bool = True,
    ) -> list[Ticket]:
        """List tickets newest first, limited to the ones ``viewer`` may see.

        The visibility filter runs in SQL and mirrors the VIEW rules of
        :class:`AccessGate`. Without a viewer every ticket is returned.
        """

        statement = (
            select(TicketTable, TicketStatusTable.value)
            .join(TicketStatusTable, TicketStatusTable.id == TicketTable.status_id)
            .order_by(TicketTable.created_at.desc(), TicketTable.id.desc())
        )
        if viewer is not None:
            clause = _visibility_clause(viewer)
            if clause is not None:
                statement = statement.where(clause)
        if status is not None:
            statement = statement.where(TicketStatusTable.value == status.value)
        if not include_final:
            statement = statement.where(TicketStatusTable.is_final == False)  # noqa: E712
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._build_ticket(row, _status_from_value(value)) for row, value in result.all()]

    async def save_changes(
        self,
        ticket_id: int,
        changes: TicketChanges,
        *,
        expected_version: int | None = None,
        events: Sequence[OutboxDraft] = (),
        tag: TagDraft | None = None,
    ) -> Ticket:
        """Write ``changes`` together with outbox events and an optional tag.

        Everything commits in one transaction. When ``expected_version`` is
        given the update only applies if the stored version still matches.
        """

        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    raise TicketNotFoundError(ticket_id)
                current_version = row.version
                if expected_version is not None and expected_version != current_version:
                    raise StaleTicketError(ticket_id, expected_version, current_version)

                statement = (
                    update(TicketTable)
                    .where(TicketTable.id == ticket_id, TicketTable.version == current_version)
                    .values(
                        {
                            TicketTable.status_id: await self._status_id(session, changes.status),
                            TicketTable.assigned_to: changes.assigned_to,
                            TicketTable.metadata_: changes.metadata.to_document(),
                            TicketTable.escalation_level: changes.escalation_level,
                            TicketTable.last_escalation_at: changes.last_escalation_at,
                            TicketTable.resolution_due_at: changes.resolution_due_at,
                            TicketTable.version: current_version + 1,
                            TicketTable.updated_at: now,
                        }
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(statement)
                if result.rowcount == 0:
                    raise StaleTicketError(ticket_id, expected_version or current_version, current_version + 1)

                for event in events:
                    session.add(OutboxTable(event_type=event.event_type, payload=dict(event.payload), created_at=now))

                if tag is not None and not await self._has_tag(session, ticket_id, tag.committee_id):
                    session.add(
                        TicketCommitteeTagTable(
                            ticket_id=ticket_id,
                            committee_id=tag.committee_id,
                            tagged_by=tag.tagged_by,
                            reason=tag.reason,
                            created_at=now,
                        )
                    )

                await session.flush()
                refreshed = await session.get(TicketTable, ticket_id, populate_existing=True)
                if refreshed is None:
                    raise TicketNotFoundError(ticket_id)
                return await self._table_to_ticket(session, refreshed)

    async def delete_ticket(self, ticket_id: int) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    return False
                await session.execute(
                    delete(TicketCommitteeTagTable).where(TicketCommitteeTagTable.ticket_id == ticket_id)
                )
                await session.delete(row)
                return True

    async def list_tags(self, ticket_id: int) -> list[CommitteeTag]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketCommitteeTagTable, CommitteeTable)
                .join(CommitteeTable, CommitteeTable.id == TicketCommitteeTagTable.committee_id)
                .where(TicketCommitteeTagTable.ticket_id == ticket_id)
                .order_by(TicketCommitteeTagTable.created_at.asc(), TicketCommitteeTagTable.id.asc())
            )
            return [self._table_to_tag(tag, committee) for tag, committee in result.all()]

    async def add_tag(self, ticket_id: int, draft: TagDraft) -> CommitteeTag:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if await self._has_tag(session, ticket_id, draft.committee_id):
                        raise DuplicateTagError()
                    row = TicketCommitteeTagTable(
                        ticket_id=ticket_id,
                        committee_id=draft.committee_id,
                        tagged_by=draft.tagged_by,
                        reason=draft.reason,
                        created_at=datetime.now(timezone.utc),
                    )
                    session.add(row)
                    await session.flush()
                    committee = await session.get(CommitteeTable, draft.committee_id)
                    return self._table_to_tag(row, committee)
        except IntegrityError as exc:
            # concurrent insert lost the race on the unique pair
            raise DuplicateTagError() from exc

    async def remove_tag(
        self, ticket_id: int, *, tag_id: int | None = None, committee_id: int | None = None
    ) -> bool:
        statement = delete(TicketCommitteeTagTable).where(TicketCommitteeTagTable.ticket_id == ticket_id)
        if tag_id is not None:
            statement = statement.where(TicketCommitteeTagTable.id == tag_id)
        elif committee_id is not None:
            statement = statement.where(TicketCommitteeTagTable.committee_id == committee_id)
        else:
            raise ValueError("tag_id or committee_id is required")
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(statement)
                return result.rowcount > 0

    async def is_tagged_to_user(self, ticket_id: int, user_id: int) -> bool:
        """True when the ticket is tagged to a committee the user heads or belongs to."""

        tagged = await self.tagged_ticket_ids(user_id, ticket_ids=[ticket_id])
        return ticket_id in tagged

    async def tagged_ticket_ids(self, user_id: int, *, ticket_ids: Iterable[int] | None = None) -> set[int]:
        statement = _tagged_to_user(user_id)
        if ticket_ids is not None:
            statement = statement.where(TicketCommitteeTagTable.ticket_id.in_(list(ticket_ids)))
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return set(result.scalars().all())

    async def archive_group_if_complete(self, group_id: int) -> bool:
        """Archive the group once every ticket in it is resolved or closed."""

        async with self._session_factory() as session:
            async with session.begin():
                group = await session.get(TicketGroupTable, group_id)
                if group is None or group.is_archived:
                    return False
                result = await session.execute(
                    select(func.count())
                    .select_from(TicketTable)
                    .join(TicketStatusTable, TicketStatusTable.id == TicketTable.status_id)
                    .where(TicketTable.group_id == group_id, TicketStatusTable.is_final == False)  # noqa: E712
                )
                if result.scalar_one() > 0:
                    return False
                group.is_archived = True
                group.updated_at = datetime.now(timezone.utc)
                session.add(group)
        logger.info("Archived ticket group %s", group_id)
        return True

    async def create_group(self, name: str) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                row = TicketGroupTable(name=name)
                session.add(row)
                await session.flush()
                return int(row.id)

    async def is_group_archived(self, group_id: int) -> bool:
        async with self._session_factory() as session:
            group = await session.get(TicketGroupTable, group_id)
            return bool(group and group.is_archived)

    @staticmethod
    async def _has_tag(session: AsyncSession, ticket_id: int, committee_id: int) -> bool:
        result = await session.execute(
            select(TicketCommitteeTagTable.id).where(
                TicketCommitteeTagTable.ticket_id == ticket_id,
                TicketCommitteeTagTable.committee_id == committee_id,
            )
        )
        return result.first() is not None

    async def _table_to_ticket(self, session: AsyncSession, row: TicketTable) -> Ticket:
        return self._build_ticket(row, await self._status_for(session, row.status_id))

    @staticmethod
    def _build_ticket(row: TicketTable, status: TicketStatus) -> Ticket:
        return Ticket(
            id=int(row.id),
            title=row.title,
            description=row.description,
            category=row.category,
            subcategory=row.subcategory,
            location=row.location,
            status=status,
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            group_id=row.group_id,
            escalation_level=row.escalation_level,
            last_escalation_at=_optional_datetime(row.last_escalation_at),
            resolution_due_at=_optional_datetime(row.resolution_due_at),
            metadata=TicketMetadata.from_document(row.metadata_),
            version=row.version,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )

    @staticmethod
    def _table_to_tag(row: TicketCommitteeTagTable, committee: CommitteeTable | None) -> CommitteeTag:
        return CommitteeTag(
            id=int(row.id),
            ticket_id=row.ticket_id,
            committee_id=row.committee_id,
            tagged_by=row.tagged_by,
            reason=row.reason,
            created_at=_ensure_datetime(row.created_at),
            committee=table_to_committee(committee) if committee is not None else None,
        )


def table_to_committee(row: CommitteeTable) -> Committee:
    return Committee(
        id=int(row.id),
        name=row.name,
        head_id=row.head_id,
        description=row.description,
        contact_email=row.contact_email,
    )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


def _status_from_value(value: str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError as exc:
        raise StatusLookupError(value) from exc


def _normalized(column: Any) -> Any:
    return func.lower(func.trim(column))


def _tagged_to_user(user_id: int) -> Select:
    """Ids of tickets tagged to a committee the user heads or belongs to."""

    member_of = select(CommitteeMemberTable.committee_id).where(CommitteeMemberTable.user_id == user_id)
    return (
        select(TicketCommitteeTagTable.ticket_id)
        .join(CommitteeTable, CommitteeTable.id == TicketCommitteeTagTable.committee_id)
        .where(or_(CommitteeTable.head_id == user_id, CommitteeTable.id.in_(member_of)))
    )


def _visibility_clause(viewer: Actor) -> ColumnElement[bool] | None:
    if viewer.role is Role.SUPER_ADMIN:
        return None
    if viewer.role is Role.STUDENT:
        return TicketTable.created_by == viewer.user_id
    if viewer.role is Role.COMMITTEE:
        owned = and_(
            _normalized(TicketTable.category) == COMMITTEE_CATEGORY,
            TicketTable.created_by == viewer.user_id,
        )
        return or_(owned, TicketTable.id.in_(_tagged_to_user(viewer.user_id)))

    # an assignment without a scope covers every location in its domain
    covered = (
        select(AdminAssignmentTable.id)
        .where(
            AdminAssignmentTable.user_id == viewer.user_id,
            _normalized(AdminAssignmentTable.domain) == _normalized(TicketTable.category),
            or_(
                AdminAssignmentTable.scope.is_(None),
                _normalized(AdminAssignmentTable.scope) == _normalized(func.coalesce(TicketTable.location, "")),
            ),
        )
        .exists()
    )
    return or_(TicketTable.assigned_to == viewer.user_id, covered)
