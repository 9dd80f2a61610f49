from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.security.roles import Role
from packages.db.models import AdminAssignmentTable, CommitteeMemberTable, CommitteeTable, UserTable

from .models import AdminAssignment, Committee, UserRecord
from .repository import table_to_committee


class DirectoryRepository:
    """Read access to users, committees and admin assignments."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user(self, user_id: int) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            return self._table_to_user(row) if row is not None else None

    async def get_user_by_external_id(self, external_id: str) -> UserRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(UserTable.external_id == external_id))
            row = result.scalars().first()
            return self._table_to_user(row) if row is not None else None

    async def first_user_with_role(self, role: Role) -> UserRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserTable).where(UserTable.role == role.value).order_by(UserTable.id.asc()).limit(1)
            )
            row = result.scalars().first()
            return self._table_to_user(row) if row is not None else None

    async def update_user_role(self, user_id: int, role: Role) -> UserRecord | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(UserTable, user_id)
                if row is None:
                    return None
                row.role = role.value
                row.updated_at = datetime.now(timezone.utc)
                session.add(row)
                return self._table_to_user(row)

    async def get_committee(self, committee_id: int) -> Committee | None:
        async with self._session_factory() as session:
            row = await session.get(CommitteeTable, committee_id)
            return table_to_committee(row) if row is not None else None

    async def committee_ids_for_user(self, user_id: int) -> set[int]:
        member_of = select(CommitteeMemberTable.committee_id).where(CommitteeMemberTable.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(
                select(CommitteeTable.id).where(or_(CommitteeTable.head_id == user_id, CommitteeTable.id.in_(member_of)))
            )
            return set(result.scalars().all())

    async def list_admin_assignments(self, user_id: int) -> list[AdminAssignment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AdminAssignmentTable).where(AdminAssignmentTable.user_id == user_id)
            )
            return [
                AdminAssignment(user_id=row.user_id, domain=row.domain, scope=row.scope)
                for row in result.scalars().all()
            ]

    async def create_user(
        self,
        *,
        external_id: str,
        role: Role,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        user_id: int | None = None,
    ) -> UserRecord:
        async with self._session_factory() as session:
            async with session.begin():
                row = UserTable(
                    external_id=external_id,
                    role=role.value,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                )
                if user_id is not None:
                    row.id = user_id
                session.add(row)
                await session.flush()
                return self._table_to_user(row)

    async def create_committee(
        self,
        *,
        name: str,
        head_id: int | None,
        contact_email: str | None = None,
        description: str | None = None,
        committee_id: int | None = None,
    ) -> Committee:
        async with self._session_factory() as session:
            async with session.begin():
                row = CommitteeTable(
                    name=name,
                    head_id=head_id,
                    contact_email=contact_email,
                    description=description,
                )
                if committee_id is not None:
                    row.id = committee_id
                session.add(row)
                await session.flush()
                return table_to_committee(row)

    async def add_committee_member(self, committee_id: int, user_id: int, *, role: str | None = None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(CommitteeMemberTable(committee_id=committee_id, user_id=user_id, role=role))

    async def add_admin_assignment(self, user_id: int, domain: str, scope: str | None = None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(AdminAssignmentTable(user_id=user_id, domain=domain, scope=scope))

    @staticmethod
    def _table_to_user(row: UserTable) -> UserRecord:
        return UserRecord(
            id=int(row.id),
            external_id=row.external_id,
            role=Role.parse(row.role) or Role.STUDENT,
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
        )
