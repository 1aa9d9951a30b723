"""
Notification dispatcher (``workflow_kernel.domain.notification``).

Responsibility
--------------
Translates a transition outcome into zero or more ``NotificationIntent``
records.  Pure function of its inputs: it does not persist, send, or read
anything.  The workflow engine hands the intents to the outbox, which
stores them best-effort so a notification problem can never undo the
authoritative state change.

Routing
-------
* forward progress (into a review status) -> the new assignee
* approved / rejected / returned_for_correction -> the requester
* closed -> the requester, unless the requester closed it
* forward (assignee changed, status unchanged) -> the new assignee
* comments -> assignee and requester (internal comments skip the requester)

The actor is never notified of their own action.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.domain.request import (
    CommentVisibility,
    NotificationIntent,
    Request,
    RequestStatus,
)


class NotificationTemplate(str, Enum):
    REQUEST_SUBMITTED = "request_submitted"
    REVIEW_REQUESTED = "review_requested"
    REQUEST_FORWARDED = "request_forwarded"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_RETURNED = "request_returned"
    REQUEST_CLOSED = "request_closed"
    COMMENT_ADDED = "comment_added"


_ASSIGNEE_TEMPLATES: dict[RequestStatus, NotificationTemplate] = {
    RequestStatus.PENDING_SUPERVISOR_APPROVAL: NotificationTemplate.REQUEST_SUBMITTED,
    RequestStatus.PENDING_HR_REVIEW: NotificationTemplate.REVIEW_REQUESTED,
}

_REQUESTER_TEMPLATES: dict[RequestStatus, NotificationTemplate] = {
    RequestStatus.APPROVED: NotificationTemplate.REQUEST_APPROVED,
    RequestStatus.REJECTED: NotificationTemplate.REQUEST_REJECTED,
    RequestStatus.RETURNED_FOR_CORRECTION: NotificationTemplate.REQUEST_RETURNED,
    RequestStatus.CLOSED: NotificationTemplate.REQUEST_CLOSED,
}


class NotificationDispatcher:
    """Decides who must be told about a request outcome."""

    def dispatch(
        self,
        request: Request,
        previous_status: RequestStatus,
        actor_id: UUID | None,
        note: str | None = None,
    ) -> list[NotificationIntent]:
        context = self._context(request, previous_status, actor_id, note)
        recipients: list[tuple[UUID | None, NotificationTemplate]] = []

        if request.status == previous_status:
            recipients.append(
                (request.current_assignee_id, NotificationTemplate.REQUEST_FORWARDED)
            )
        elif request.status in _ASSIGNEE_TEMPLATES:
            recipients.append(
                (request.current_assignee_id, _ASSIGNEE_TEMPLATES[request.status])
            )
        elif request.status in _REQUESTER_TEMPLATES:
            recipients.append(
                (request.requester_id, _REQUESTER_TEMPLATES[request.status])
            )

        return self._build(recipients, actor_id, context)

    def comment_intents(
        self,
        request: Request,
        author_id: UUID,
        comment_id: UUID,
        visibility: CommentVisibility = CommentVisibility.ALL,
    ) -> list[NotificationIntent]:
        context = {
            "request_id": str(request.id),
            "request_number": request.request_number,
            "entity_type": request.entity_type.value,
            "comment_id": str(comment_id),
            "author_id": str(author_id),
            "visibility": visibility.value,
        }
        recipients: list[tuple[UUID | None, NotificationTemplate]] = [
            (request.current_assignee_id, NotificationTemplate.COMMENT_ADDED),
        ]
        if visibility == CommentVisibility.ALL:
            recipients.append((request.requester_id, NotificationTemplate.COMMENT_ADDED))
        return self._build(recipients, author_id, context)

    @staticmethod
    def _context(
        request: Request,
        previous_status: RequestStatus,
        actor_id: UUID | None,
        note: str | None,
    ) -> dict[str, Any]:
        context: dict[str, Any] = {
            "request_id": str(request.id),
            "request_number": request.request_number,
            "entity_type": request.entity_type.value,
            "previous_status": previous_status.value,
            "status": request.status.value,
            "actor_id": str(actor_id) if actor_id is not None else None,
        }
        if note:
            context["note"] = note
        title = request.metadata.get("title")
        if title:
            context["title"] = title
        return context

    @staticmethod
    def _build(
        recipients: list[tuple[UUID | None, NotificationTemplate]],
        actor_id: UUID | None,
        context: dict[str, Any],
    ) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []
        seen: set[UUID] = set()
        for recipient_id, template in recipients:
            if recipient_id is None or recipient_id == actor_id:
                continue
            if recipient_id in seen:
                continue
            seen.add(recipient_id)
            intents.append(
                NotificationIntent(
                    recipient_id=recipient_id,
                    template_kind=template.value,
                    context_data=dict(context),
                )
            )
        return intents
