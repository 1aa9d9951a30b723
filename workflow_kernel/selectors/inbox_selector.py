"""
Module: workflow_kernel.selectors.inbox_selector
Responsibility: Read-only inbox and detail queries over workflow requests.
Architecture position: Kernel > Selectors.  Reads requests, history and
    comments; consults the live IdentityProvider for roles and reporting
    lines and the entity handler registry for display titles.

Invariants enforced:
    - Read-only: no add, flush or commit.
    - Visibility: detail and comment reads require the viewer to be a
      participant or an HR/admin user (ForbiddenActionError otherwise).
    - ``assigned`` scope matches what the viewer can act on right now: the
      current assignee, or a live member of the role class of an
      assignee-actable outgoing edge (HR for HR review, a manager for the
      supervisor review of a direct report).  Override-only edges such as
      the administrative close do not put requests in anyone's inbox.
    - Results are newest first.
"""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy import and_, exists, false, or_, select, true
from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.domain.access import (
    can_see_internal,
    can_view_request,
    has_oversight,
)
from workflow_kernel.domain.identity import IdentityProvider
from workflow_kernel.domain.request import (
    ActorRole,
    CommentVisibility,
    EntityType,
    InboxFilters,
    InboxScope,
    Request,
    RequestComment,
    RequestStatus,
    RequestSummary,
)
from workflow_kernel.domain.transition_rules import RULE_TABLES
from workflow_kernel.exceptions import ForbiddenActionError, RequestNotFoundError
from workflow_kernel.models.request import (
    RequestCommentModel,
    RequestHistoryModel,
    RequestModel,
)
from workflow_kernel.selectors.base import BaseSelector
from workflow_kernel.services.entity_handlers import EntityTypeRegistry


class InboxSelector(BaseSelector[RequestModel]):
    """Inbox lists, request detail and comment threads."""

    def __init__(
        self,
        session: Session,
        identity: IdentityProvider,
        registry: EntityTypeRegistry | None = None,
        settings: WorkflowSettings | None = None,
    ):
        super().__init__(session)
        self.identity = identity
        self.registry = registry or EntityTypeRegistry.default()
        self.settings = settings or WorkflowSettings()
        prefix = re.escape(self.settings.request_number.prefix)
        self._number_pattern = re.compile(rf"^(?:{prefix}-?)?0*(\d+)$", re.IGNORECASE)

    # -------------------------------------------------------------------------
    # Lists
    # -------------------------------------------------------------------------

    def list(
        self, viewer_id: UUID, filters: InboxFilters | None = None,
    ) -> list[RequestSummary]:
        filters = filters or InboxFilters()
        roles = self.identity.get_roles(viewer_id)

        query = select(RequestModel).where(self._scope_clause(viewer_id, roles, filters.scope))

        if filters.statuses:
            query = query.where(
                RequestModel.status.in_([RequestStatus(s).value for s in filters.statuses])
            )
        if filters.entity_types:
            query = query.where(
                RequestModel.entity_type.in_([EntityType(t).value for t in filters.entity_types])
            )
        if filters.requester_id is not None:
            query = query.where(RequestModel.requester_id == filters.requester_id)
        if filters.created_from is not None:
            query = query.where(RequestModel.created_at >= filters.created_from)
        if filters.created_to is not None:
            query = query.where(RequestModel.created_at <= filters.created_to)
        if filters.search and filters.search.strip():
            query = query.where(self._search_clause(filters.search.strip()))

        limit = filters.limit or self.settings.inbox.page_size
        query = query.order_by(
            RequestModel.created_at.desc(), RequestModel.request_no.desc(),
        ).limit(limit)

        names: dict[UUID, str | None] = {}
        summaries = []
        for model in self.session.execute(query).scalars():
            if model.requester_id not in names:
                names[model.requester_id] = self.identity.get_display_name(
                    model.requester_id
                )
            summaries.append(self._summary(model, names[model.requester_id]))
        return summaries

    def _scope_clause(self, viewer_id: UUID, roles, scope: InboxScope):
        scope = InboxScope(scope)
        if scope == InboxScope.SUBMITTED:
            return RequestModel.requester_id == viewer_id
        if scope == InboxScope.ASSIGNED:
            return self._assigned_clause(viewer_id, roles)
        if has_oversight(roles):
            return true()
        return self._visible_clause(viewer_id)

    def _assigned_clause(self, viewer_id: UUID, roles):
        clauses = [RequestModel.current_assignee_id == viewer_id]
        reports = None
        for entity_type, table in RULE_TABLES.items():
            for edge in table.edges:
                if not edge.assignee_may_act:
                    continue
                on_status = and_(
                    RequestModel.entity_type == entity_type.value,
                    RequestModel.status == edge.from_status.value,
                )
                if edge.required_role in (ActorRole.HR, ActorRole.ADMIN):
                    if edge.required_role in roles:
                        clauses.append(on_status)
                elif edge.required_role == ActorRole.SUPERVISOR:
                    if reports is None:
                        reports = self.identity.get_direct_reports(viewer_id)
                    if reports:
                        clauses.append(
                            and_(on_status, RequestModel.requester_id.in_(list(reports)))
                        )
                elif edge.required_role == ActorRole.REQUESTER:
                    clauses.append(
                        and_(on_status, RequestModel.requester_id == viewer_id)
                    )
        return or_(*clauses)

    @staticmethod
    def _visible_clause(viewer_id: UUID):
        touched = exists().where(
            RequestHistoryModel.request_id == RequestModel.id,
            or_(
                RequestHistoryModel.actor_id == viewer_id,
                RequestHistoryModel.assignee_id == viewer_id,
            ),
        )
        return or_(
            RequestModel.requester_id == viewer_id,
            RequestModel.current_assignee_id == viewer_id,
            RequestModel.supervisor_id == viewer_id,
            touched,
        )

    def _search_clause(self, text: str):
        clauses = []
        match = self._number_pattern.match(text)
        if match:
            clauses.append(RequestModel.request_no == int(match.group(1)))
        requester_ids = self.identity.find_users_by_name(text)
        if requester_ids:
            clauses.append(RequestModel.requester_id.in_(list(requester_ids)))
        return or_(*clauses) if clauses else false()

    def _summary(self, model: RequestModel, requester_name: str | None) -> RequestSummary:
        numbering = self.settings.request_number
        handler = self.registry.get(model.entity_type)
        request = model.to_dto(numbering.prefix, numbering.width, history=[])
        return RequestSummary(
            id=request.id,
            request_number=request.request_number,
            entity_type=request.entity_type,
            status=request.status,
            requester_id=request.requester_id,
            requester_name=requester_name,
            current_assignee_id=request.current_assignee_id,
            title=handler.describe(request.metadata),
            created_at=request.created_at,
            updated_at=request.updated_at,
        )

    # -------------------------------------------------------------------------
    # Detail
    # -------------------------------------------------------------------------

    def _load(self, request_id: UUID) -> Request:
        model = self.session.execute(
            select(RequestModel)
            .where(RequestModel.id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        history = list(
            self.session.execute(
                select(RequestHistoryModel)
                .where(RequestHistoryModel.request_id == request_id)
                .order_by(RequestHistoryModel.sequence)
            ).scalars()
        )
        numbering = self.settings.request_number
        return model.to_dto(numbering.prefix, numbering.width, history=history)

    def get(self, request_id: UUID, viewer_id: UUID) -> Request:
        """Request with full history, if the viewer may see it."""
        request = self._load(request_id)
        if not can_view_request(request, viewer_id, self.identity.get_roles(viewer_id)):
            raise ForbiddenActionError(
                str(request_id), str(viewer_id), "view", "not a participant",
            )
        return request

    def get_by_number(self, request_number: str, viewer_id: UUID) -> Request:
        match = self._number_pattern.match(request_number.strip())
        if not match:
            raise RequestNotFoundError(request_number)
        request_id = self.session.execute(
            select(RequestModel.id).where(RequestModel.request_no == int(match.group(1)))
        ).scalar_one_or_none()
        if request_id is None:
            raise RequestNotFoundError(request_number)
        return self.get(request_id, viewer_id)

    def comments(self, request_id: UUID, viewer_id: UUID) -> list[RequestComment]:
        """Comment thread, oldest first.  Internal comments only for HR/assignee."""
        roles = self.identity.get_roles(viewer_id)
        request = self._load(request_id)
        if not can_view_request(request, viewer_id, roles):
            raise ForbiddenActionError(
                str(request_id), str(viewer_id), "view", "not a participant",
            )
        query = select(RequestCommentModel).where(
            RequestCommentModel.request_id == request_id
        )
        if not can_see_internal(request, viewer_id, roles):
            query = query.where(RequestCommentModel.visibility == CommentVisibility.ALL.value)
        query = query.order_by(RequestCommentModel.created_at, RequestCommentModel.id)
        return [c.to_dto() for c in self.session.execute(query).scalars()]

