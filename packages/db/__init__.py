"""Database models and utilities."""

from .models import (
    AssignmentCursorTable,
    BrandProfileTable,
    CreatorProfileTable,
    OrderTable,
    PackageTable,
    TicketAuditLogTable,
    TicketMessageTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "AssignmentCursorTable",
    "BrandProfileTable",
    "CreatorProfileTable",
    "OrderTable",
    "PackageTable",
    "TicketAuditLogTable",
    "TicketMessageTable",
    "TicketTable",
    "UserTable",
]
