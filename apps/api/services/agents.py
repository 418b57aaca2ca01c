"""Support agent directory: eligibility, ordering and account administration."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.core.database import Database
from apps.api.services.errors import (
    AgentNotFoundError,
    DomainValidationError,
    DuplicateAgentError,
    NoEligibleAgentsError,
)
from apps.api.services.models import AccountStatus, Agent, UserRole, ensure_datetime
from packages.db.models import UserTable

logger = logging.getLogger(__name__)

SUPPORT_ROLES: frozenset[UserRole] = frozenset({UserRole.AGENT, UserRole.ADMIN, UserRole.SUPER_ADMIN})


def is_eligible_agent(user: UserTable | Agent) -> bool:
    """Return True when the account may receive new ticket assignments.

    This is the only place eligibility is decided. Selection and reassignment
    both go through it.
    """

    try:
        role = UserRole(user.role)
        status = AccountStatus(user.status)
    except ValueError:
        return False
    return status is AccountStatus.ACTIVE and role in SUPPORT_ROLES


def row_to_agent(row: UserTable) -> Agent:
    return Agent(
        id=int(row.id),
        email=row.email,
        display_name=row.display_name,
        role=UserRole(row.role),
        status=AccountStatus(row.status),
        created_at=ensure_datetime(row.created_at),
    )


async def list_eligible_agents(session: AsyncSession) -> list[Agent]:
    """Return every eligible agent ordered ascending by id.

    Raises ``NoEligibleAgentsError`` when the directory is empty so callers
    never see an empty selection pool.
    """

    result = await session.execute(
        select(UserTable)
        .where(UserTable.status == AccountStatus.ACTIVE.value)
        .where(UserTable.role.in_([role.value for role in SUPPORT_ROLES]))
        .order_by(UserTable.id.asc())
    )
    agents = [row_to_agent(row) for row in result.scalars().all() if is_eligible_agent(row)]
    if not agents:
        raise NoEligibleAgentsError("No active support agents are available")
    return agents


async def get_agent_row(session: AsyncSession, agent_id: int) -> UserTable:
    row = await session.get(UserTable, agent_id)
    if row is None or row.role not in {role.value for role in SUPPORT_ROLES}:
        raise AgentNotFoundError(f"Agent {agent_id} not found", agent_id=agent_id)
    return row


class AgentDirectory:
    """Administrative operations over support accounts."""

    def __init__(self, database: Database) -> None:
        self._database = database

    async def create_agent(
        self,
        *,
        email: str,
        display_name: str,
        role: UserRole = UserRole.AGENT,
    ) -> Agent:
        if role not in SUPPORT_ROLES:
            raise DomainValidationError(f"Role {role.value} cannot handle support tickets", role=role.value)
        email = email.strip().lower()
        if not email or "@" not in email:
            raise DomainValidationError("A valid email address is required")
        if not display_name.strip():
            raise DomainValidationError("Display name must not be empty")

        try:
            async with self._database.transaction() as session:
                existing = await session.execute(select(UserTable.id).where(UserTable.email == email))
                if existing.first() is not None:
                    raise DuplicateAgentError(f"An account with email {email} already exists", email=email)
                row = UserTable(
                    email=email,
                    display_name=display_name.strip(),
                    role=role.value,
                    status=AccountStatus.ACTIVE.value,
                )
                session.add(row)
                await session.flush()
                agent = row_to_agent(row)
        except IntegrityError as exc:
            raise DuplicateAgentError(f"An account with email {email} already exists", email=email) from exc

        logger.info("Created support agent %s (%s)", agent.id, agent.role.value)
        return agent

    async def list_agents(self, *, status: AccountStatus | None = None) -> Sequence[Agent]:
        async with self._database.reader() as session:
            statement = (
                select(UserTable)
                .where(UserTable.role.in_([role.value for role in SUPPORT_ROLES]))
                .order_by(UserTable.id.asc())
            )
            if status is not None:
                statement = statement.where(UserTable.status == status.value)
            result = await session.execute(statement)
            return [row_to_agent(row) for row in result.scalars().all()]

    async def get_agent(self, agent_id: int) -> Agent:
        async with self._database.reader() as session:
            return row_to_agent(await get_agent_row(session, agent_id))

    async def update_status(self, agent_id: int, status: AccountStatus) -> Agent:
        async with self._database.transaction() as session:
            row = await get_agent_row(session, agent_id)
            previous = row.status
            row.status = status.value
            row.updated_at = datetime.now(timezone.utc)
            await session.flush()
            agent = row_to_agent(row)
        logger.info("Agent %s status changed %s -> %s", agent_id, previous, status.value)
        return agent

    async def suspend(self, agent_id: int) -> Agent:
        """Soft delete: the account stays referenced by its tickets but stops receiving new ones."""

        return await self.update_status(agent_id, AccountStatus.SUSPENDED)

    async def stats(self) -> dict[str, int]:
        async with self._database.reader() as session:
            result = await session.execute(
                select(UserTable.status, func.count(UserTable.id))
                .where(UserTable.role.in_([role.value for role in SUPPORT_ROLES]))
                .group_by(UserTable.status)
            )
            counts = {status: int(count) for status, count in result.all()}

        return {
            "total": sum(counts.values()),
            "active": counts.get(AccountStatus.ACTIVE.value, 0),
            "suspended": counts.get(AccountStatus.SUSPENDED.value, 0),
            "pending": counts.get(AccountStatus.PENDING.value, 0),
        }
