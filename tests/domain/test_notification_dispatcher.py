"""
Tests for NotificationDispatcher (``workflow_kernel.domain.notification``).

The dispatcher is pure: given a request snapshot and the previous status it
returns who should be told, and never includes the actor.
"""

from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from workflow_kernel.domain.notification import (
    NotificationDispatcher,
    NotificationTemplate,
)
from workflow_kernel.domain.request import (
    CommentVisibility,
    EntityType,
    Request,
    RequestStatus,
)

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def people():
    return {"requester": uuid4(), "manager": uuid4(), "hr": uuid4(), "admin": uuid4()}


def make_request(people, status, assignee, **kwargs) -> Request:
    return Request(
        id=uuid4(),
        request_no=42,
        request_number="REQ-000042",
        entity_type=EntityType.LEAVE_REQUEST,
        entity_id=uuid4(),
        requester_id=people["requester"],
        status=status,
        current_assignee_id=assignee,
        version=2,
        created_at=NOW,
        updated_at=NOW,
        metadata={"title": "Vacation leave 2025-03-10 to 2025-03-14"},
        **kwargs,
    )


class TestDispatch:
    """Routing of transition outcomes."""

    def test_submission_notifies_new_assignee(self, people):
        request = make_request(
            people, RequestStatus.PENDING_SUPERVISOR_APPROVAL, people["manager"],
        )
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.DRAFT, people["requester"],
        )
        assert [(i.recipient_id, i.template_kind) for i in intents] == [
            (people["manager"], NotificationTemplate.REQUEST_SUBMITTED.value),
        ]
        context = intents[0].context_data
        assert context["request_number"] == "REQ-000042"
        assert context["previous_status"] == "draft"
        assert context["status"] == "pending_supervisor_approval"
        assert context["title"].startswith("Vacation")

    def test_hr_review_notifies_hr(self, people):
        request = make_request(people, RequestStatus.PENDING_HR_REVIEW, people["hr"])
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.PENDING_SUPERVISOR_APPROVAL, people["manager"],
        )
        assert [(i.recipient_id, i.template_kind) for i in intents] == [
            (people["hr"], NotificationTemplate.REVIEW_REQUESTED.value),
        ]

    @pytest.mark.parametrize(
        "status,template",
        [
            (RequestStatus.APPROVED, NotificationTemplate.REQUEST_APPROVED),
            (RequestStatus.REJECTED, NotificationTemplate.REQUEST_REJECTED),
            (RequestStatus.CLOSED, NotificationTemplate.REQUEST_CLOSED),
        ],
    )
    def test_outcomes_notify_requester(self, people, status, template):
        request = make_request(people, status, None)
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.PENDING_HR_REVIEW, people["hr"], note="ok",
        )
        assert [(i.recipient_id, i.template_kind) for i in intents] == [
            (people["requester"], template.value),
        ]
        assert intents[0].context_data["note"] == "ok"

    def test_returned_notifies_requester(self, people):
        request = make_request(
            people, RequestStatus.RETURNED_FOR_CORRECTION, people["requester"],
        )
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.PENDING_SUPERVISOR_APPROVAL, people["manager"],
        )
        assert [i.template_kind for i in intents] == [
            NotificationTemplate.REQUEST_RETURNED.value,
        ]

    def test_requester_closing_own_request_gets_nothing(self, people):
        """Cancellation by the requester: the actor is never notified."""
        request = make_request(people, RequestStatus.CLOSED, None)
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.PENDING_SUPERVISOR_APPROVAL, people["requester"],
        )
        assert intents == []

    def test_forward_notifies_new_assignee(self, people):
        request = make_request(people, RequestStatus.PENDING_HR_REVIEW, people["admin"])
        intents = NotificationDispatcher().dispatch(
            request, RequestStatus.PENDING_HR_REVIEW, people["hr"],
        )
        assert [(i.recipient_id, i.template_kind) for i in intents] == [
            (people["admin"], NotificationTemplate.REQUEST_FORWARDED.value),
        ]


class TestCommentIntents:
    """Comment notifications go to assignee and requester, never the author."""

    def test_public_comment_by_assignee_notifies_requester(self, people):
        request = make_request(
            people, RequestStatus.PENDING_SUPERVISOR_APPROVAL, people["manager"],
        )
        intents = NotificationDispatcher().comment_intents(
            request, people["manager"], uuid4(),
        )
        assert [i.recipient_id for i in intents] == [people["requester"]]

    def test_internal_comment_skips_requester(self, people):
        request = make_request(people, RequestStatus.PENDING_HR_REVIEW, people["hr"])
        intents = NotificationDispatcher().comment_intents(
            request, people["admin"], uuid4(), CommentVisibility.INTERNAL,
        )
        assert [i.recipient_id for i in intents] == [people["hr"]]

    def test_recipients_deduplicated(self, people):
        """Returned requests are assigned to the requester: one intent only."""
        request = make_request(
            people, RequestStatus.RETURNED_FOR_CORRECTION, people["requester"],
        )
        intents = NotificationDispatcher().comment_intents(
            request, people["manager"], uuid4(),
        )
        assert [i.recipient_id for i in intents] == [people["requester"]]

    def test_frozen_request_not_mutated(self, people):
        request = make_request(people, RequestStatus.APPROVED, None)
        before = replace(request)
        NotificationDispatcher().dispatch(request, RequestStatus.PENDING_HR_REVIEW, None)
        assert request == before
