"""
workflow_kernel.services.workflow_engine -- request lifecycle management.

Responsibility:
    The only component permitted to create or mutate a workflow request.
    Creates requests for any registered entity type, moves them along the
    rule table, cancels and forwards them, applies corrections, and
    records comments.  Every check runs against freshly loaded state; the
    caller's idea of the current status is never trusted.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and sibling
    services.  Flushes only: the caller owns the outer transaction.

Invariants enforced:
    - Only edges present in the rule table are applied.  Legality and
      authorization are checked before any write.
    - ``status`` / ``current_assignee_id`` equal the tail history entry;
      every successful transition appends exactly one entry.
    - The assignee is recomputed on every transition: supervisor review ->
      requester's live manager, HR review -> HR approver for the
      requester, returned -> requester, terminal -> nobody.
    - Creation is atomic: domain record, request number, request row,
      submit transition, history entry and back-link commit together or
      not at all (one SAVEPOINT).
    - Writes are version-conditioned; a lost race is a conflict, never a
      silent overwrite.
    - Notifications are enqueued after the state change, best-effort.
      They can never undo it.

Check order for ``transition``:
    NotFound -> Conflict (stale ``expected_version``) -> IllegalTransition
    -> Forbidden -> assignee resolution -> write.

Failure modes:
    - UnknownEntityTypeError, RequestValidationError (creation).
    - RequestNotFoundError.
    - RequestConflictError on a stale ``expected_version`` or lost CAS.
    - IllegalTransitionError when the move is not an edge.
    - ForbiddenActionError when the actor may not trigger the edge.
    - AssigneeResolutionError when no approver exists for the target
      status.  The whole operation is abandoned.

Audit relevance:
    Each operation logs a structured event (``request_created``,
    ``request_transitioned``, ``request_cancelled``, ``request_forwarded``,
    ``request_details_updated``, ``comment_added``) bound to the request
    id and actor.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.domain.access import can_see_internal, can_view_request
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.identity import IdentityProvider
from workflow_kernel.domain.notification import NotificationDispatcher
from workflow_kernel.domain.request import (
    TERMINAL_STATUSES,
    ActorRole,
    CommentVisibility,
    EntityType,
    Request,
    RequestAction,
    RequestComment,
    RequestStatus,
)
from workflow_kernel.domain.transition_rules import (
    FORWARDABLE_STATUSES,
    SUBMIT_TRANSITION,
    TransitionEdge,
    find_edge,
)
from workflow_kernel.exceptions import (
    AssigneeResolutionError,
    ForbiddenActionError,
    IllegalTransitionError,
    RequestConflictError,
    RequestValidationError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.request import RequestCommentModel
from workflow_kernel.services.entity_handlers import EntityTypeRegistry
from workflow_kernel.services.notification_outbox import NotificationOutbox
from workflow_kernel.services.request_store import RequestStore
from workflow_kernel.services.sequence_service import SequenceService

logger = get_logger("services.workflow_engine")

CANCEL_NOTE = "Cancelled by requester"
MAX_COMMENT_LENGTH = 5000


class WorkflowEngine:
    """
    Creates and moves workflow requests.

    Contract:
        Accepts a caller-owned ``Session`` and a live ``IdentityProvider``.
        Never commits.  Every public method returns a fresh ``Request``
        snapshot (or comment DTO) read back after the write.

    Non-goals:
        - Does NOT deliver notifications; the outbox is drained separately.
        - Does NOT list or search requests; see ``InboxSelector``.
    """

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider,
        registry: EntityTypeRegistry | None = None,
        clock: Clock | None = None,
        settings: WorkflowSettings | None = None,
        outbox: NotificationOutbox | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.session = session
        self.identity = identity
        self.settings = settings or WorkflowSettings()
        self.clock = clock or SystemClock()
        self.registry = registry or EntityTypeRegistry.default()
        self.store = RequestStore(session, self.settings)
        self.sequences = SequenceService(session)
        self.outbox = outbox or NotificationOutbox(session, self.clock, self.settings)
        self.dispatcher = dispatcher or NotificationDispatcher()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_request(
        self,
        entity_type: EntityType | str,
        domain_payload: dict[str, Any],
        requester_id: UUID,
    ) -> Request:
        """
        Create the domain record and its request, and submit it.

        Postconditions:
            - status is ``pending_supervisor_approval``, assigned to the
              requester's manager, with exactly one history entry.
            - The domain record carries the request id.

        Raises:
            UnknownEntityTypeError, RequestValidationError,
            AssigneeResolutionError.
        """
        handler = self.registry.get(entity_type)
        payload = handler.validate_payload(domain_payload)
        from_status, to_status = SUBMIT_TRANSITION
        edge = find_edge(handler.entity_type, from_status, to_status)
        if edge is None:
            raise IllegalTransitionError(
                "<new>", handler.entity_type.value, from_status.value, to_status.value,
            )

        now = self.clock.now()
        with LogContext.bind(
            actor_id=str(requester_id), entity_type=handler.entity_type.value,
        ):
            with self.session.begin_nested():
                entity_id = handler.create_record(
                    self.session, requester_id, payload, now,
                )
                request_no = self.sequences.next_value(SequenceService.REQUEST_NUMBER)
                request_id = self.store.insert(
                    request_no=request_no,
                    entity_type=handler.entity_type,
                    entity_id=entity_id,
                    requester_id=requester_id,
                    now=now,
                    metadata=handler.build_metadata(payload),
                )
                assignee_id = handler.resolve_first_assignee(requester_id, self.identity)
                self.store.compare_and_swap(
                    request_id,
                    1,
                    now,
                    status=to_status,
                    current_assignee_id=assignee_id,
                    supervisor_id=assignee_id,
                    submitted_at=now,
                )
                self.store.append_history(
                    request_id,
                    from_status=from_status,
                    to_status=to_status,
                    action=edge.action,
                    actor_id=requester_id,
                    assignee_id=assignee_id,
                    now=now,
                )
                handler.link_request(self.session, entity_id, request_id)

            request = self.store.get(request_id)
            logger.info(
                "request_created",
                extra={
                    "request_id": str(request.id),
                    "request_number": request.request_number,
                    "entity_id": str(entity_id),
                    "assignee_id": str(assignee_id),
                },
            )
            self._notify(request, from_status, requester_id)
        return request

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def transition(
        self,
        request_id: UUID,
        actor_id: UUID,
        to_status: RequestStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> Request:
        """
        Move a request along one edge of its rule table.

        Args:
            request_id: Request to move.
            actor_id: Who is acting.
            to_status: Target status.
            note: Optional free text recorded on the history entry.
            expected_version: Version the caller last saw.  When given and
                stale, the call fails with ``RequestConflictError`` before
                any other check.
        """
        request = self.store.get(request_id)
        if expected_version is not None and expected_version != request.version:
            raise RequestConflictError(str(request_id), expected_version, request.version)

        edge = find_edge(request.entity_type, request.status, to_status)
        if edge is None:
            raise IllegalTransitionError(
                str(request_id),
                request.entity_type.value,
                request.status.value,
                getattr(to_status, "value", str(to_status)),
            )

        self._authorize(request, edge, actor_id)
        return self._apply(request, edge.to_status, edge.action, actor_id, note)

    def cancel_request(self, request_id: UUID, actor_id: UUID) -> Request:
        """
        Requester withdraws an open request.

        Raises:
            ForbiddenActionError: actor is not the requester, or the request
                is already terminal.
        """
        request = self.store.get(request_id)
        if request.requester_id != actor_id:
            raise ForbiddenActionError(
                str(request_id), str(actor_id), RequestAction.CANCEL.value,
                "only the requester may cancel",
            )
        if request.is_terminal:
            raise ForbiddenActionError(
                str(request_id), str(actor_id), RequestAction.CANCEL.value,
                f"request is already {request.status.value}",
            )
        return self._apply(
            request, RequestStatus.CLOSED, RequestAction.CANCEL, actor_id, CANCEL_NOTE,
        )

    def forward_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        forward_to: UUID,
        note: str | None = None,
    ) -> Request:
        """
        Current assignee hands a request under review to someone else.

        The status does not change.  One history entry (action ``forward``)
        records the new assignee.
        """
        request = self.store.get(request_id)
        if request.status not in FORWARDABLE_STATUSES:
            raise IllegalTransitionError(
                str(request_id), request.entity_type.value,
                request.status.value, request.status.value,
            )
        if request.current_assignee_id != actor_id:
            raise ForbiddenActionError(
                str(request_id), str(actor_id), RequestAction.FORWARD.value,
                "only the current assignee may forward",
            )

        problems = []
        if forward_to == actor_id:
            problems.append({"field": "forward_to", "message": "already assigned"})
        elif forward_to == request.requester_id:
            problems.append(
                {"field": "forward_to", "message": "cannot forward to the requester"}
            )
        elif self.identity.get_display_name(forward_to) is None:
            problems.append({"field": "forward_to", "message": "unknown user"})
        elif not self.identity.is_active(forward_to):
            problems.append({"field": "forward_to", "message": "user is inactive"})
        if problems:
            raise RequestValidationError(request.entity_type.value, problems)

        now = self.clock.now()
        with LogContext.bind(request_id=str(request_id), actor_id=str(actor_id)):
            with self.session.begin_nested():
                self.store.compare_and_swap(
                    request.id, request.version, now, current_assignee_id=forward_to,
                )
                self.store.append_history(
                    request.id,
                    from_status=request.status,
                    to_status=request.status,
                    action=RequestAction.FORWARD,
                    actor_id=actor_id,
                    assignee_id=forward_to,
                    now=now,
                    note=note,
                )
            updated = self.store.get(request.id)
            logger.info(
                "request_forwarded",
                extra={
                    "status": updated.status.value,
                    "from_assignee_id": str(actor_id),
                    "to_assignee_id": str(forward_to),
                },
            )
            self._notify(updated, request.status, actor_id, note)
        return updated

    # -------------------------------------------------------------------------
    # Corrections
    # -------------------------------------------------------------------------

    def update_request_details(
        self,
        request_id: UUID,
        actor_id: UUID,
        changes: dict[str, Any],
        note: str | None = None,
        expected_version: int | None = None,
    ) -> Request:
        """
        Requester amends a request that was returned for correction.

        ``changes`` is a partial payload merged over the current domain
        record and validated as a whole by the entity handler.  The record,
        the request metadata and one ``update_details`` history entry are
        written together under a version-checked update.  Status and
        assignee do not change; the requester resubmits separately.

        Raises:
            RequestNotFoundError, RequestConflictError.
            ForbiddenActionError: actor is not the requester, or the request
                is not awaiting correction.
            RequestValidationError: unknown fields or an invalid result.
        """
        request = self.store.get_for_update(request_id)
        if expected_version is not None and expected_version != request.version:
            raise RequestConflictError(str(request_id), expected_version, request.version)
        if request.requester_id != actor_id:
            raise ForbiddenActionError(
                str(request_id), str(actor_id), RequestAction.UPDATE_DETAILS.value,
                "only the requester may change request details",
            )
        if request.status != RequestStatus.RETURNED_FOR_CORRECTION:
            raise ForbiddenActionError(
                str(request_id), str(actor_id), RequestAction.UPDATE_DETAILS.value,
                f"details are locked while {request.status.value}",
            )

        handler = self.registry.get(request.entity_type)
        payload = handler.validate_changes(self.session, request.entity_id, changes)
        metadata = {**request.metadata, **handler.build_metadata(payload)}

        now = self.clock.now()
        with LogContext.bind(
            request_id=str(request_id),
            actor_id=str(actor_id),
            entity_type=request.entity_type.value,
        ):
            with self.session.begin_nested():
                self.store.compare_and_swap(
                    request.id, request.version, now, request_metadata=metadata,
                )
                self.store.append_history(
                    request.id,
                    from_status=request.status,
                    to_status=request.status,
                    action=RequestAction.UPDATE_DETAILS,
                    actor_id=actor_id,
                    assignee_id=request.current_assignee_id,
                    now=now,
                    note=note,
                )
                handler.update_record(self.session, request.entity_id, payload)

            updated = self.store.get(request.id)
            logger.info(
                "request_details_updated",
                extra={
                    "fields": sorted(changes),
                    "version": updated.version,
                },
            )
        return updated

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def add_comment(
        self,
        request_id: UUID,
        author_id: UUID,
        body: str,
        visibility: CommentVisibility | str = CommentVisibility.ALL,
    ) -> RequestComment:
        """Record a comment.  Internal comments are HR/admin/assignee only."""
        request = self.store.get(request_id)
        roles = self.identity.get_roles(author_id)
        if not can_view_request(request, author_id, roles):
            raise ForbiddenActionError(
                str(request_id), str(author_id), "comment", "not a participant",
            )

        problems = []
        try:
            visibility = CommentVisibility(visibility)
        except ValueError:
            problems.append(
                {"field": "visibility", "message": "must be 'all' or 'internal'"}
            )
        text = (body or "").strip()
        if not text:
            problems.append({"field": "body", "message": "is required"})
        elif len(text) > MAX_COMMENT_LENGTH:
            problems.append(
                {"field": "body", "message": f"must be at most {MAX_COMMENT_LENGTH} characters"}
            )
        if problems:
            raise RequestValidationError(request.entity_type.value, problems)

        if visibility == CommentVisibility.INTERNAL and not can_see_internal(
            request, author_id, roles,
        ):
            raise ForbiddenActionError(
                str(request_id), str(author_id), "comment",
                "internal comments are limited to HR and the current assignee",
            )

        comment = RequestCommentModel(
            request_id=request.id,
            author_id=author_id,
            body=text,
            visibility=visibility.value,
            created_at=self.clock.now(),
        )
        self.session.add(comment)
        self.session.flush()

        with LogContext.bind(request_id=str(request_id), actor_id=str(author_id)):
            logger.info(
                "comment_added",
                extra={"comment_id": str(comment.id), "visibility": visibility.value},
            )
            self._enqueue_safely(
                request.id,
                lambda: self.dispatcher.comment_intents(
                    request, author_id, comment.id, visibility,
                ),
            )
        return comment.to_dto()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _holds_role(self, request: Request, actor_id: UUID, role: ActorRole) -> bool:
        if role == ActorRole.REQUESTER:
            return actor_id == request.requester_id
        if role == ActorRole.SUPERVISOR:
            manager_id = self.identity.get_manager(request.requester_id)
            return manager_id is not None and manager_id == actor_id
        if role in (ActorRole.HR, ActorRole.ADMIN):
            return self.identity.has_role(actor_id, role)
        return False

    def _authorize(self, request: Request, edge: TransitionEdge, actor_id: UUID) -> None:
        if edge.assignee_may_act and request.current_assignee_id == actor_id:
            return
        if self._holds_role(request, actor_id, edge.required_role):
            return
        raise ForbiddenActionError(
            str(request.id),
            str(actor_id),
            edge.action.value,
            f"requires the current assignee or role '{edge.required_role.value}'",
        )

    def _resolve_assignee(self, request: Request, to_status: RequestStatus) -> UUID | None:
        if to_status in TERMINAL_STATUSES:
            return None
        if to_status == RequestStatus.RETURNED_FOR_CORRECTION:
            return request.requester_id
        if to_status == RequestStatus.PENDING_SUPERVISOR_APPROVAL:
            handler = self.registry.get(request.entity_type)
            return handler.resolve_first_assignee(request.requester_id, self.identity)
        if to_status == RequestStatus.PENDING_HR_REVIEW:
            hr_id = self.identity.find_hr_assignee(request.requester_id)
            if hr_id is None:
                raise AssigneeResolutionError(
                    entity_type=request.entity_type.value,
                    status=to_status.value,
                    subject_id=str(request.requester_id),
                    reason="no HR approver for the requester's property or region",
                )
            return hr_id
        raise AssigneeResolutionError(
            entity_type=request.entity_type.value,
            status=to_status.value,
            subject_id=str(request.requester_id),
            reason="status has no assignee rule",
        )

    def _apply(
        self,
        request: Request,
        to_status: RequestStatus,
        action: RequestAction,
        actor_id: UUID,
        note: str | None,
    ) -> Request:
        """Write one transition: CAS, history, domain-record sync."""
        handler = self.registry.get(request.entity_type)
        with LogContext.bind(
            request_id=str(request.id),
            actor_id=str(actor_id),
            entity_type=request.entity_type.value,
        ):
            assignee_id = self._resolve_assignee(request, to_status)
            now = self.clock.now()

            changes: dict[str, Any] = {
                "status": to_status,
                "current_assignee_id": assignee_id,
            }
            if to_status == RequestStatus.PENDING_SUPERVISOR_APPROVAL:
                changes["supervisor_id"] = assignee_id
            if to_status in TERMINAL_STATUSES:
                changes["closed_at"] = now

            with self.session.begin_nested():
                self.store.compare_and_swap(request.id, request.version, now, **changes)
                self.store.append_history(
                    request.id,
                    from_status=request.status,
                    to_status=to_status,
                    action=action,
                    actor_id=actor_id,
                    assignee_id=assignee_id,
                    now=now,
                    note=note,
                )
                handler.sync_status(self.session, request.entity_id, to_status)

            updated = self.store.get(request.id)
            logger.info(
                "request_cancelled" if action == RequestAction.CANCEL
                else "request_transitioned",
                extra={
                    "from_status": request.status.value,
                    "to_status": to_status.value,
                    "action": action.value,
                    "assignee_id": str(assignee_id) if assignee_id else None,
                    "version": updated.version,
                },
            )
            self._notify(updated, request.status, actor_id, note)
        return updated

    def _notify(
        self,
        request: Request,
        previous_status: RequestStatus,
        actor_id: UUID,
        note: str | None = None,
    ) -> None:
        self._enqueue_safely(
            request.id,
            lambda: self.dispatcher.dispatch(request, previous_status, actor_id, note),
        )

    def _enqueue_safely(self, request_id: UUID, build_intents) -> None:
        """Dispatch and enqueue; a failure here is logged, never raised.

        The state change is already flushed when this runs and must stand
        regardless of what happens to its notifications.
        """
        try:
            self.outbox.enqueue(build_intents(), request_id)
        except Exception:
            logger.error(
                "notification_dispatch_failed",
                extra={"request_id": str(request_id)},
                exc_info=True,
            )
