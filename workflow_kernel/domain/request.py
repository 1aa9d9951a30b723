"""
Request domain types (``workflow_kernel.domain.request``).

Responsibility
--------------
Pure value objects for the request workflow: the status and entity-type
enumerations, the workflow envelope (``Request``) with its append-only
history, read-side summaries and inbox filters.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``.

Invariants enforced
-------------------
* ``Request.status`` and ``Request.current_assignee_id`` are a function of
  the latest ``HistoryEntry`` once the request has left ``draft``
  (see ``Request.derived_state``).
* Terminal statuses carry no assignee.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    DRAFT = "draft"
    PENDING_SUPERVISOR_APPROVAL = "pending_supervisor_approval"
    PENDING_HR_REVIEW = "pending_hr_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED_FOR_CORRECTION = "returned_for_correction"
    CLOSED = "closed"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CLOSED,
})


def is_terminal(status: RequestStatus | str) -> bool:
    """True if ``status`` has no outgoing edges by definition."""
    try:
        return RequestStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


class EntityType(str, Enum):
    """Discriminator selecting the domain record and its transition graph."""

    LEAVE_REQUEST = "leave_request"
    DOCUMENT = "document"
    TRANSFER = "transfer"


class ActorRole(str, Enum):
    """Role classes that may be required to trigger an edge."""

    SYSTEM = "system"
    REQUESTER = "requester"
    SUPERVISOR = "supervisor"
    HR = "hr"
    ADMIN = "admin"


class RequestAction(str, Enum):
    """Business verbs recorded on history entries."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    RESUBMIT = "resubmit"
    ADMIN_CLOSE = "admin_close"
    CANCEL = "cancel"
    FORWARD = "forward"
    UPDATE_DETAILS = "update_details"


class CommentVisibility(str, Enum):
    ALL = "all"
    INTERNAL = "internal"


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only audit record of a request move."""

    sequence: int
    from_status: RequestStatus
    to_status: RequestStatus
    action: RequestAction
    actor_id: UUID | None
    assignee_id: UUID | None
    created_at: datetime
    note: str | None = None


@dataclass(frozen=True)
class Request:
    """Immutable snapshot of a workflow envelope as last read from the store."""

    id: UUID
    request_no: int
    request_number: str
    entity_type: EntityType
    entity_id: UUID
    requester_id: UUID
    status: RequestStatus
    current_assignee_id: UUID | None
    version: int
    created_at: datetime
    updated_at: datetime
    supervisor_id: UUID | None = None
    submitted_at: datetime | None = None
    closed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    history: tuple[HistoryEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def latest_entry(self) -> HistoryEntry | None:
        return self.history[-1] if self.history else None

    def derived_state(self) -> tuple[RequestStatus, UUID | None]:
        """Status and assignee as implied by the history tail.

        A request that has never left ``draft`` is assigned to its requester.
        """
        tail = self.latest_entry
        if tail is None:
            return RequestStatus.DRAFT, self.requester_id
        return tail.to_status, tail.assignee_id


@dataclass(frozen=True)
class RequestComment:
    id: UUID
    request_id: UUID
    author_id: UUID
    body: str
    visibility: CommentVisibility
    created_at: datetime


@dataclass(frozen=True)
class NotificationIntent:
    """Who should be told what, decoupled from the delivery mechanism."""

    recipient_id: UUID
    template_kind: str
    context_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestSummary:
    """Inbox row for one request."""

    id: UUID
    request_number: str
    entity_type: EntityType
    status: RequestStatus
    requester_id: UUID
    requester_name: str | None
    current_assignee_id: UUID | None
    title: str
    created_at: datetime
    updated_at: datetime


class InboxScope(str, Enum):
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    ALL = "all"


@dataclass(frozen=True)
class InboxFilters:
    """Read-side filters for the inbox façade.

    ``created_from`` / ``created_to`` are inclusive bounds on ``created_at``.
    """

    scope: InboxScope = InboxScope.ASSIGNED
    statuses: tuple[RequestStatus, ...] = ()
    entity_types: tuple[EntityType, ...] = ()
    requester_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None
    limit: int | None = None
