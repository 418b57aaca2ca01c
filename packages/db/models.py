"""SQLModel table definitions for the support desk data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class UserTable(SQLModel, table=True):
    """Marketplace accounts: brands, creators and support staff."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    display_name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    status: str = Field(default="active", sa_column=Column(String(50), nullable=False, default="active"))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class BrandProfileTable(SQLModel, table=True):
    __tablename__ = "brand_profiles"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id"), nullable=False, unique=True))
    company_name: str = Field(sa_column=Column(String(255), nullable=False))


class CreatorProfileTable(SQLModel, table=True):
    __tablename__ = "creator_profiles"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id"), nullable=False, unique=True))
    bio: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


class PackageTable(SQLModel, table=True):
    """A purchasable offer published by a creator."""

    __tablename__ = "packages"

    id: int | None = Field(default=None, primary_key=True)
    creator_id: int = Field(sa_column=Column(Integer, ForeignKey("creator_profiles.id"), nullable=False, index=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="USD", sa_column=Column(String(3), nullable=False, default="USD"))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))


class OrderTable(SQLModel, table=True):
    """Purchase of a package by a brand."""

    __tablename__ = "orders"

    id: int | None = Field(default=None, primary_key=True)
    package_id: int = Field(sa_column=Column(Integer, ForeignKey("packages.id"), nullable=False))
    brand_id: int = Field(sa_column=Column(Integer, ForeignKey("brand_profiles.id"), nullable=False, index=True))
    creator_id: int = Field(sa_column=Column(Integer, ForeignKey("creator_profiles.id"), nullable=False, index=True))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    total_amount: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(sa_column=Column(String(3), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    rejection_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Support ticket bound one-to-one to an order."""

    __tablename__ = "tickets"

    id: int | None = Field(default=None, primary_key=True)
    # The unique index is what keeps a second ticket out under concurrent checkouts.
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True))
    agent_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id"), nullable=False, index=True))
    channel_id: str = Field(sa_column=Column(String(255), nullable=False))
    channel_pending: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketMessageTable(SQLModel, table=True):
    """Individual messages belonging to a ticket."""

    __tablename__ = "ticket_messages"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: int = Field(sa_column=Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True))
    sender_id: int | None = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id"), nullable=True))
    sender_role: str = Field(sa_column=Column(String(50), nullable=False))
    body: str = Field(sa_column=Column(Text, nullable=False))
    message_type: str = Field(sa_column=Column(String(50), nullable=False))
    attachment_url: str | None = Field(default=None, sa_column=Column(String(1024), nullable=True))
    attachment_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketAuditLogTable(SQLModel, table=True):
    """Audit trail describing discrete ticket actions."""

    __tablename__ = "ticket_audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: int = Field(sa_column=Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True))
    action: str = Field(sa_column=Column(String(100), nullable=False))
    actor: str = Field(sa_column=Column(String(255), nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AssignmentCursorTable(SQLModel, table=True):
    """Durable round-robin counter, one row per cursor name."""

    __tablename__ = "assignment_cursors"

    name: str = Field(primary_key=True)
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
