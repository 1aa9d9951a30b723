"""
Module: workflow_kernel.models.domain_records
Responsibility: ORM persistence for the domain records that requests wrap:
    leave requests, document changes and employee transfers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Each record links back to exactly one workflow request
      (workflow_request_id), written once during request creation.
    - Record status is owned by its bounded context and only mirrors the
      workflow outcome (pending / approved / rejected / cancelled).

Failure modes:
    - IntegrityError on a bad date range (check constraints).
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime, UUIDString


class RecordStatus(str, Enum):
    """Outcome as seen by the owning bounded context."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class LeaveType(str, Enum):
    VACATION = "vacation"
    SICK = "sick"
    PERSONAL = "personal"
    UNPAID = "unpaid"
    OTHER = "other"


_RECORD_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RecordStatus)


class LeaveRequestModel(Base):
    """Time-off request for one employee."""

    __tablename__ = "leave_requests"

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_leave_requests_dates"),
        CheckConstraint(
            f"status IN ({_RECORD_STATUS_VALUES})",
            name="ck_leave_requests_status",
        ),
        Index("ix_leave_requests_requester_id", "requester_id"),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    leave_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecordStatus.PENDING.value,
    )
    workflow_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class DocumentChangeModel(Base):
    """Proposed change to a controlled document (policy, SOP, form)."""

    __tablename__ = "document_changes"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_RECORD_STATUS_VALUES})",
            name="ck_document_changes_status",
        ),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    change_summary: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecordStatus.PENDING.value,
    )
    workflow_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class TransferRequestModel(Base):
    """Move of an employee between properties."""

    __tablename__ = "transfer_requests"

    __table_args__ = (
        CheckConstraint(
            "from_property_id <> to_property_id",
            name="ck_transfer_requests_distinct_properties",
        ),
        CheckConstraint(
            f"status IN ({_RECORD_STATUS_VALUES})",
            name="ck_transfer_requests_status",
        ),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    from_property_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    to_property_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecordStatus.PENDING.value,
    )
    workflow_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
