"""
RequestStore -- persistence gateway for workflow requests.

Responsibility:
    The only code that reads and writes ``requests`` and
    ``request_history`` rows.  Every read is fresh (``populate_existing``),
    and every status change is a version-conditioned UPDATE.

Architecture position:
    Kernel > Services.  Used by the WorkflowEngine only; selectors read
    the same tables directly for list queries.

Invariants enforced:
    - Compare-and-swap: ``UPDATE requests ... WHERE id = :id AND
      version = :expected`` bumps ``version`` and ``updated_at`` in the same
      statement.  Zero rows affected means another writer won.
    - History is insert-only; sequence numbers are contiguous from 1.

Failure modes:
    - RequestNotFoundError: unknown request id.
    - RequestConflictError: CAS lost the race (stale version).
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.domain.request import (
    EntityType,
    Request,
    RequestAction,
    RequestStatus,
)
from workflow_kernel.exceptions import RequestConflictError, RequestNotFoundError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.request import RequestHistoryModel, RequestModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.request_store")


class RequestStore(BaseService[RequestModel]):
    """
    Reads and version-conditioned writes of request rows.

    Non-goals:
        - Does NOT check legality or authorization; the engine does that
          before calling any write method.
    """

    def __init__(self, session: Session, settings: WorkflowSettings | None = None):
        super().__init__(session)
        self.settings = settings or WorkflowSettings()

    def _load(self, request_id: UUID, for_update: bool = False) -> RequestModel:
        query = select(RequestModel).where(RequestModel.id == request_id)
        if for_update:
            query = query.with_for_update()
        model = self.session.execute(
            query.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _history(self, request_id: UUID) -> list[RequestHistoryModel]:
        return list(
            self.session.execute(
                select(RequestHistoryModel)
                .where(RequestHistoryModel.request_id == request_id)
                .order_by(RequestHistoryModel.sequence)
            ).scalars()
        )

    def _to_dto(self, model: RequestModel) -> Request:
        numbering = self.settings.request_number
        return model.to_dto(
            numbering.prefix, numbering.width, history=self._history(model.id),
        )

    def get(self, request_id: UUID) -> Request:
        """Fresh snapshot of a request with its full history."""
        return self._to_dto(self._load(request_id))

    def get_for_update(self, request_id: UUID) -> Request:
        """Fresh snapshot, holding a row lock where the backend supports it."""
        return self._to_dto(self._load(request_id, for_update=True))

    def current_version(self, request_id: UUID) -> int | None:
        return self.session.execute(
            select(RequestModel.version).where(RequestModel.id == request_id)
        ).scalar_one_or_none()

    def insert(
        self,
        *,
        request_no: int,
        entity_type: EntityType,
        entity_id: UUID,
        requester_id: UUID,
        now: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """Insert a new request in ``draft``, assigned to its requester."""
        model = RequestModel(
            request_no=request_no,
            entity_type=EntityType(entity_type).value,
            entity_id=entity_id,
            requester_id=requester_id,
            status=RequestStatus.DRAFT.value,
            current_assignee_id=requester_id,
            version=1,
            request_metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()
        return model.id

    def next_history_sequence(self, request_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(RequestHistoryModel.sequence)).where(
                RequestHistoryModel.request_id == request_id
            )
        ).scalar_one_or_none()
        return (current or 0) + 1

    def append_history(
        self,
        request_id: UUID,
        *,
        from_status: RequestStatus,
        to_status: RequestStatus,
        action: RequestAction,
        actor_id: UUID | None,
        assignee_id: UUID | None,
        now: datetime,
        note: str | None = None,
    ) -> int:
        """Append one history entry and return its sequence number.

        The (request_id, sequence) unique constraint backs up the CAS: two
        writers can never both append the same sequence.
        """
        sequence = self.next_history_sequence(request_id)
        self.session.add(
            RequestHistoryModel(
                request_id=request_id,
                sequence=sequence,
                from_status=RequestStatus(from_status).value,
                to_status=RequestStatus(to_status).value,
                action=RequestAction(action).value,
                actor_id=actor_id,
                assignee_id=assignee_id,
                note=note,
                created_at=now,
            )
        )
        self.session.flush()
        return sequence

    def compare_and_swap(
        self,
        request_id: UUID,
        expected_version: int,
        now: datetime,
        **changes: Any,
    ) -> int:
        """
        Apply ``changes`` only if the row is still at ``expected_version``.

        Returns:
            The new version.

        Raises:
            RequestConflictError: No row matched (lost race or stale read).
        """
        values = {
            key: value.value if isinstance(value, RequestStatus) else value
            for key, value in changes.items()
        }
        values["version"] = RequestModel.version + 1
        values["updated_at"] = now

        result = self.session.execute(
            update(RequestModel)
            .where(
                RequestModel.id == request_id,
                RequestModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self.current_version(request_id)
            if actual is None:
                raise RequestNotFoundError(str(request_id))
            logger.warning(
                "request_version_conflict",
                extra={
                    "request_id": str(request_id),
                    "expected_version": expected_version,
                    "actual_version": actual,
                },
            )
            raise RequestConflictError(str(request_id), expected_version, actual)
        return expected_version + 1
