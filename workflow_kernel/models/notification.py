"""
Module: workflow_kernel.models.notification
Responsibility: ORM persistence for the notification outbox.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A row is written for every intent the dispatcher produces, inside its
      own SAVEPOINT, so a failed write never reaches the request state.
    - status moves pending -> delivered, or pending -> failed once
      attempts reaches the configured maximum.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime, UUIDString


class NotificationStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationModel(Base):
    """One queued notification."""

    __tablename__ = "notifications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'delivered', 'failed')",
            name="ck_notifications_status",
        ),
        Index("ix_notifications_status", "status", "created_at"),
        Index("ix_notifications_recipient", "recipient_id"),
    )

    recipient_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    template_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING.value,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Notification {self.template_kind} -> {self.recipient_id} "
            f"{self.status} attempts={self.attempts}>"
        )
