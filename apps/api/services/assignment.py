"""Durable round-robin assignment of tickets to support agents."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import insert, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.core.database import Database
from apps.api.metrics import record_counter
from apps.api.services.agents import list_eligible_agents
from apps.api.services.errors import NoEligibleAgentsError
from apps.api.services.models import Agent
from packages.db.models import AssignmentCursorTable

logger = logging.getLogger(__name__)

DEFAULT_CURSOR_NAME = "ticket_assignment"

_CONFLICT_AWARE_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


class AssignmentCursor:
    """Monotonic counter stored in ``assignment_cursors``.

    ``advance`` must run inside the caller's transaction. The UPDATE takes the
    row lock, so a concurrent caller blocks until the first one commits or
    rolls back, and a rollback gives the slot back. A missing row is inserted
    with ON CONFLICT DO NOTHING, so concurrent first callers share one row.
    """

    def __init__(self, name: str = DEFAULT_CURSOR_NAME) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def ensure(self, database: Database) -> None:
        """Create the cursor row if it does not exist yet."""

        async with database.transaction() as session:
            row = await session.get(AssignmentCursorTable, self._name)
            if row is None:
                await self._create_missing(session)

    async def advance(self, session: AsyncSession) -> int:
        """Increment the cursor and return the slot it pointed at before."""

        result = await session.execute(self._increment())
        if result.rowcount == 0:
            await self._create_missing(session)
            await session.execute(self._increment())

        position = await session.scalar(
            select(AssignmentCursorTable.position).where(AssignmentCursorTable.name == self._name)
        )
        return int(position) - 1

    def _increment(self):
        return (
            update(AssignmentCursorTable)
            .where(AssignmentCursorTable.name == self._name)
            .values(
                position=AssignmentCursorTable.position + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

    async def _create_missing(self, session: AsyncSession) -> None:
        """Insert the row at position 0 unless a concurrent first caller already has."""

        insert_factory = _CONFLICT_AWARE_INSERTS.get(session.get_bind().dialect.name, insert)
        statement = insert_factory(AssignmentCursorTable).values(
            name=self._name, position=0, updated_at=datetime.now(timezone.utc)
        )
        if hasattr(statement, "on_conflict_do_nothing"):
            statement = statement.on_conflict_do_nothing(index_elements=["name"])
        await session.execute(statement)
        logger.info("Initialised assignment cursor %s", self._name)

    async def peek(self, session: AsyncSession) -> int:
        position = await session.scalar(
            select(AssignmentCursorTable.position).where(AssignmentCursorTable.name == self._name)
        )
        return int(position or 0)


class RoundRobinSelector:
    """Pick the next agent from an ordered pool using the durable cursor."""

    def __init__(self, cursor: AssignmentCursor | None = None) -> None:
        self._cursor = cursor or AssignmentCursor()

    @property
    def cursor(self) -> AssignmentCursor:
        return self._cursor

    async def select_next_agent(self, session: AsyncSession, agents: Sequence[Agent]) -> Agent:
        if not agents:
            raise NoEligibleAgentsError("No active support agents are available")
        slot = await self._cursor.advance(session)
        agent = agents[slot % len(agents)]
        logger.debug("Cursor %s slot %s -> agent %s of %s", self._cursor.name, slot, agent.id, len(agents))
        return agent

    async def assign(self, session: AsyncSession) -> Agent:
        """Resolve the eligible pool and pick from it in one step."""

        agents = await list_eligible_agents(session)
        agent = await self.select_next_agent(session, agents)
        record_counter("support_assignments_total", labels={"agent_id": str(agent.id)})
        return agent
