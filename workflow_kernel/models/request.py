"""
Module: workflow_kernel.models.request
Responsibility: ORM persistence for the request workflow envelope, its
    append-only history, and request comments.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/request.py and exceptions.py only.

Invariants enforced:
    - Status values limited by a check constraint; legality of moves is
      enforced by the workflow engine before any write.
    - request_no, entity_type, entity_id and requester_id are write-once
      (ORM before_update guard).
    - Requests are never deleted; cancellation is a transition.
    - History rows are append-only: no UPDATE, no DELETE.
    - version increases by one on every committed change (CAS precondition).

Failure modes:
    - ImmutabilityViolationError on write-once column change, request
      delete, or history UPDATE/DELETE.
    - IntegrityError on duplicate request_no or history sequence.

Audit relevance:
    request_history is the source of truth for audit: the request's status
    and assignee always equal the tail entry's to_status and assignee_id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, UTCDateTime, UUIDString
from workflow_kernel.domain.request import (
    CommentVisibility,
    EntityType,
    HistoryEntry,
    Request,
    RequestAction,
    RequestComment,
    RequestStatus,
)
from workflow_kernel.exceptions import ImmutabilityViolationError

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestStatus)


def format_request_number(request_no: int, prefix: str = "REQ", width: int = 6) -> str:
    """Display form of a request number, e.g. ``REQ-000042``."""
    return f"{prefix}-{request_no:0{width}d}"


class RequestModel(Base):
    """Persistent workflow envelope.

    Contract:
        Mutated only by the workflow engine through version-conditioned
        updates.  Never deleted.
    """

    __tablename__ = "requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_requests_valid_status",
        ),
        CheckConstraint("version >= 1", name="ck_requests_version_positive"),
        Index("ix_requests_entity", "entity_type", "entity_id"),
        Index("ix_requests_status", "status"),
        Index("ix_requests_requester", "requester_id"),
        Index("ix_requests_current_assignee", "current_assignee_id"),
        Index("ix_requests_created_at", "created_at"),
    )

    request_no: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    supervisor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    current_assignee_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=RequestStatus.DRAFT.value,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    request_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    history: Mapped[list["RequestHistoryModel"]] = relationship(
        "RequestHistoryModel",
        back_populates="request",
        order_by="RequestHistoryModel.sequence",
    )

    def __repr__(self) -> str:
        return (
            f"<Request {self.request_no} {self.entity_type}/{self.entity_id} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(
        self,
        prefix: str = "REQ",
        width: int = 6,
        history: list["RequestHistoryModel"] | None = None,
    ) -> Request:
        """Convert ORM model to frozen domain DTO.

        ``history`` may be passed when the caller has already read the rows;
        otherwise the relationship is loaded.
        """
        entries = self.history if history is None else history
        return Request(
            id=self.id,
            request_no=self.request_no,
            request_number=format_request_number(self.request_no, prefix, width),
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            requester_id=self.requester_id,
            supervisor_id=self.supervisor_id,
            status=RequestStatus(self.status),
            current_assignee_id=self.current_assignee_id,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            submitted_at=self.submitted_at,
            closed_at=self.closed_at,
            metadata=dict(self.request_metadata or {}),
            history=tuple(h.to_dto() for h in entries),
        )


class RequestHistoryModel(Base):
    """One append-only history row.

    Contract:
        Immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "request_history"

    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_request_history_sequence"),
        Index("ix_request_history_request_id", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assignee_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    request: Mapped["RequestModel"] = relationship(
        "RequestModel", back_populates="history",
    )

    def __repr__(self) -> str:
        return (
            f"<RequestHistory {self.request_id}#{self.sequence} "
            f"{self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> HistoryEntry:
        return HistoryEntry(
            sequence=self.sequence,
            from_status=RequestStatus(self.from_status),
            to_status=RequestStatus(self.to_status),
            action=RequestAction(self.action),
            actor_id=self.actor_id,
            assignee_id=self.assignee_id,
            note=self.note,
            created_at=self.created_at,
        )


class RequestCommentModel(Base):
    """Discussion comment on a request."""

    __tablename__ = "request_comments"

    __table_args__ = (
        CheckConstraint(
            "visibility IN ('all', 'internal')",
            name="ck_request_comments_visibility",
        ),
        Index("ix_request_comments_request_id", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CommentVisibility.ALL.value,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> RequestComment:
        return RequestComment(
            id=self.id,
            request_id=self.request_id,
            author_id=self.author_id,
            body=self.body,
            visibility=CommentVisibility(self.visibility),
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================

_WRITE_ONCE_COLUMNS = ("request_no", "entity_type", "entity_id", "requester_id")


@event.listens_for(RequestModel, "before_update")
def prevent_write_once_change(mapper, connection, target):
    """Reject changes to columns that are fixed at creation."""
    state = inspect(target)
    for column in _WRITE_ONCE_COLUMNS:
        if state.attrs[column].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="Request",
                entity_id=str(target.id),
                reason=f"{column} is set at creation and cannot change",
            )


@event.listens_for(RequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Requests are never physically deleted."""
    raise ImmutabilityViolationError(
        entity_type="Request",
        entity_id=str(target.id),
        reason="Requests cannot be deleted -- close them instead",
    )


@event.listens_for(RequestHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="RequestHistory",
        entity_id=str(target.id),
        reason="History entries are immutable -- cannot modify",
    )


@event.listens_for(RequestHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="RequestHistory",
        entity_id=str(target.id),
        reason="History entries are immutable -- cannot delete",
    )
