"""
Entity-type handlers -- per-domain hooks the workflow engine dispatches to.

Responsibility:
    Each entity type (leave request, document change, transfer) owns its
    payload validation, its domain record, the first approver, the display
    snapshot copied onto the request, and how the workflow outcome is
    mirrored back onto the record.  The engine itself knows nothing about
    leave dates or property ids.

Architecture position:
    Kernel > Services.  Handlers write domain records through the caller's
    session (flush only).  Dispatch is a registry keyed by ``EntityType``;
    request classes are never subclassed per entity type.

Invariants enforced:
    - Payloads are validated before anything is written.  Corrections are
      merged over the stored record and validated as a whole payload.
    - The first approver is the requester's live manager.  There is no HR
      fallback: a requester without a manager cannot submit.
    - Record status mirrors the workflow: approved -> approved,
      rejected -> rejected, closed -> cancelled, anything else -> pending.

Failure modes:
    - RequestValidationError: malformed or non-mapping payload (all field
      errors reported).
    - AssigneeResolutionError: requester has no active manager.
    - UnknownEntityTypeError: no handler registered.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, ClassVar, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from workflow_kernel.db.base import Base
from workflow_kernel.domain.identity import IdentityProvider
from workflow_kernel.domain.request import EntityType, RequestStatus
from workflow_kernel.exceptions import (
    AssigneeResolutionError,
    RequestValidationError,
    UnknownEntityTypeError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.domain_records import (
    DocumentChangeModel,
    LeaveRequestModel,
    LeaveType,
    RecordStatus,
    TransferRequestModel,
)

logger = get_logger("services.entity_handlers")


_RECORD_STATUS_BY_REQUEST_STATUS: dict[RequestStatus, RecordStatus] = {
    RequestStatus.APPROVED: RecordStatus.APPROVED,
    RequestStatus.REJECTED: RecordStatus.REJECTED,
    RequestStatus.CLOSED: RecordStatus.CANCELLED,
}


def record_status_for(status: RequestStatus) -> RecordStatus:
    """Domain-record status mirroring a workflow status."""
    return _RECORD_STATUS_BY_REQUEST_STATUS.get(status, RecordStatus.PENDING)


class EntityTypeHandler(Protocol):
    """Hooks the workflow engine calls for one entity type."""

    entity_type: EntityType

    def validate_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return the normalized payload or raise RequestValidationError."""
        ...

    def create_record(
        self, session: Session, requester_id: UUID, payload: dict[str, Any],
        now: datetime,
    ) -> UUID:
        ...

    def link_request(self, session: Session, entity_id: UUID, request_id: UUID) -> None:
        ...

    def resolve_first_assignee(
        self, requester_id: UUID, identity: IdentityProvider,
    ) -> UUID:
        ...

    def sync_status(self, session: Session, entity_id: UUID, status: RequestStatus) -> None:
        ...

    def validate_changes(
        self, session: Session, entity_id: UUID, changes: Mapping[str, Any],
    ) -> dict[str, Any]:
        ...

    def update_record(
        self, session: Session, entity_id: UUID, payload: dict[str, Any],
    ) -> None:
        ...

    def build_metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...

    def describe(self, metadata: dict[str, Any]) -> str:
        ...


# =============================================================================
# Field helpers
# =============================================================================


class _Errors:
    """Collects field errors so a payload reports all problems at once."""

    def __init__(self) -> None:
        self.items: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})

    def raise_if_any(self, entity_type: EntityType) -> None:
        if self.items:
            raise RequestValidationError(entity_type.value, self.items)


def _date_field(payload: dict, name: str, errors: _Errors) -> date | None:
    value = payload.get(name)
    if value is None or value == "":
        errors.add(name, "is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            errors.add(name, "must be an ISO date (YYYY-MM-DD)")
            return None
    errors.add(name, "must be a date")
    return None


def _uuid_field(payload: dict, name: str, errors: _Errors, required: bool = True):
    value = payload.get(name)
    if value is None or value == "":
        if required:
            errors.add(name, "is required")
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        errors.add(name, "must be a UUID")
        return None


def _text_field(
    payload: dict, name: str, errors: _Errors, required: bool = True,
    max_length: int | None = None,
) -> str | None:
    value = payload.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.add(name, "is required")
        return None
    if not isinstance(value, str):
        errors.add(name, "must be text")
        return None
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        errors.add(name, f"must be at most {max_length} characters")
        return None
    return value


# =============================================================================
# Handlers
# =============================================================================


class BaseEntityHandler:
    """Record plumbing shared by every handler."""

    entity_type: ClassVar[EntityType]
    model: ClassVar[type[Base]]
    # Record columns a payload maps onto; also the fields a correction may change.
    payload_fields: ClassVar[tuple[str, ...]]

    def validate_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(payload, Mapping):
            raise RequestValidationError(
                self.entity_type.value,
                [{"field": "payload", "message": "must be an object"}],
            )
        return self.validate_fields(payload)

    def validate_fields(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def current_payload(self, session: Session, entity_id: UUID) -> dict[str, Any]:
        record = self._record(session, entity_id)
        return {name: getattr(record, name) for name in self.payload_fields}

    def validate_changes(
        self, session: Session, entity_id: UUID, changes: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Merge a partial payload over the stored record and validate the result."""
        if not isinstance(changes, Mapping):
            raise RequestValidationError(
                self.entity_type.value,
                [{"field": "changes", "message": "must be an object"}],
            )
        unknown = sorted(set(changes) - set(self.payload_fields))
        if unknown or not changes:
            problems = [{"field": name, "message": "cannot be changed"} for name in unknown]
            if not changes:
                problems.append({"field": "changes", "message": "nothing to change"})
            raise RequestValidationError(self.entity_type.value, problems)
        return self.validate_payload({**self.current_payload(session, entity_id), **changes})

    def update_record(
        self, session: Session, entity_id: UUID, payload: dict[str, Any],
    ) -> None:
        record = self._record(session, entity_id)
        for name, value in self.record_fields(record.requester_id, payload).items():
            setattr(record, name, value)
        session.flush()

    def record_fields(self, requester_id: UUID, payload: dict[str, Any]) -> dict[str, Any]:
        return dict(payload)

    def create_record(
        self, session: Session, requester_id: UUID, payload: dict[str, Any],
        now: datetime,
    ) -> UUID:
        record = self.model(
            requester_id=requester_id,
            created_at=now,
            **self.record_fields(requester_id, payload),
        )
        session.add(record)
        session.flush()
        return record.id

    def _record(self, session: Session, entity_id: UUID):
        record = session.get(self.model, entity_id)
        if record is None:
            raise LookupError(f"{self.entity_type.value} record {entity_id} not found")
        return record

    def link_request(self, session: Session, entity_id: UUID, request_id: UUID) -> None:
        self._record(session, entity_id).workflow_request_id = request_id
        session.flush()

    def resolve_first_assignee(
        self, requester_id: UUID, identity: IdentityProvider,
    ) -> UUID:
        manager_id = identity.get_manager(requester_id)
        if manager_id is None:
            raise AssigneeResolutionError(
                entity_type=self.entity_type.value,
                status=RequestStatus.PENDING_SUPERVISOR_APPROVAL.value,
                subject_id=str(requester_id),
                reason="requester has no active manager",
            )
        return manager_id

    def sync_status(self, session: Session, entity_id: UUID, status: RequestStatus) -> None:
        record = self._record(session, entity_id)
        new_status = record_status_for(status).value
        if record.status != new_status:
            record.status = new_status
            session.flush()
            logger.debug(
                "domain_record_synced",
                extra={
                    "entity_type": self.entity_type.value,
                    "entity_id": str(entity_id),
                    "record_status": new_status,
                },
            )

    def build_metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"title": self.describe_payload(payload)}

    def describe_payload(self, payload: dict[str, Any]) -> str:
        return self.entity_type.value.replace("_", " ").title()

    def describe(self, metadata: dict[str, Any]) -> str:
        return metadata.get("title") or self.entity_type.value.replace("_", " ").title()


class LeaveRequestHandler(BaseEntityHandler):
    """Time off.  Supervisor, then HR."""

    entity_type = EntityType.LEAVE_REQUEST
    model = LeaveRequestModel
    payload_fields = ("leave_type", "start_date", "end_date", "reason")

    def validate_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        errors = _Errors()
        raw_type = payload.get("leave_type")
        leave_type = None
        try:
            leave_type = LeaveType(raw_type)
        except ValueError:
            allowed = ", ".join(t.value for t in LeaveType)
            errors.add("leave_type", f"must be one of: {allowed}")
        start = _date_field(payload, "start_date", errors)
        end = _date_field(payload, "end_date", errors)
        if start is not None and end is not None and end < start:
            errors.add("end_date", "must not be before start_date")
        reason = _text_field(payload, "reason", errors, required=False, max_length=2000)
        errors.raise_if_any(self.entity_type)
        return {
            "leave_type": leave_type.value,
            "start_date": start,
            "end_date": end,
            "reason": reason,
        }

    def describe_payload(self, payload: dict[str, Any]) -> str:
        label = payload["leave_type"].title()
        start, end = payload["start_date"], payload["end_date"]
        if start == end:
            return f"{label} leave {start.isoformat()}"
        return f"{label} leave {start.isoformat()} to {end.isoformat()}"

    def build_metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": self.describe_payload(payload),
            "leave_type": payload["leave_type"],
            "start_date": payload["start_date"].isoformat(),
            "end_date": payload["end_date"].isoformat(),
            "days": (payload["end_date"] - payload["start_date"]).days + 1,
        }


class DocumentChangeHandler(BaseEntityHandler):
    """Controlled-document changes.  Supervisor sign-off only."""

    entity_type = EntityType.DOCUMENT
    model = DocumentChangeModel
    payload_fields = ("document_id", "title", "change_summary")

    def validate_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        errors = _Errors()
        document_id = _uuid_field(payload, "document_id", errors)
        title = _text_field(payload, "title", errors, max_length=300)
        summary = _text_field(payload, "change_summary", errors, max_length=5000)
        errors.raise_if_any(self.entity_type)
        return {"document_id": document_id, "title": title, "change_summary": summary}

    def describe_payload(self, payload: dict[str, Any]) -> str:
        return f"Document change: {payload['title']}"

    def build_metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": self.describe_payload(payload),
            "document_id": str(payload["document_id"]),
        }


class TransferHandler(BaseEntityHandler):
    """Employee moves between properties.  Supervisor, then HR."""

    entity_type = EntityType.TRANSFER
    model = TransferRequestModel
    payload_fields = (
        "employee_id", "from_property_id", "to_property_id", "effective_date", "reason",
    )

    def validate_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        errors = _Errors()
        employee_id = _uuid_field(payload, "employee_id", errors, required=False)
        from_property = _uuid_field(payload, "from_property_id", errors)
        to_property = _uuid_field(payload, "to_property_id", errors)
        if from_property is not None and from_property == to_property:
            errors.add("to_property_id", "must differ from from_property_id")
        effective = _date_field(payload, "effective_date", errors)
        reason = _text_field(payload, "reason", errors, required=False, max_length=2000)
        errors.raise_if_any(self.entity_type)
        return {
            "employee_id": employee_id,
            "from_property_id": from_property,
            "to_property_id": to_property,
            "effective_date": effective,
            "reason": reason,
        }

    def record_fields(self, requester_id: UUID, payload: dict[str, Any]) -> dict[str, Any]:
        fields = dict(payload)
        if fields.get("employee_id") is None:
            fields["employee_id"] = requester_id
        return fields

    def describe_payload(self, payload: dict[str, Any]) -> str:
        return f"Transfer effective {payload['effective_date'].isoformat()}"

    def build_metadata(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": self.describe_payload(payload),
            "from_property_id": str(payload["from_property_id"]),
            "to_property_id": str(payload["to_property_id"]),
            "effective_date": payload["effective_date"].isoformat(),
        }


# =============================================================================
# Registry
# =============================================================================


class EntityTypeRegistry:
    """Handler lookup keyed by entity type."""

    def __init__(self, handlers: list[EntityTypeHandler] | None = None):
        self._handlers: dict[EntityType, EntityTypeHandler] = {}
        for handler in handlers or ():
            self.register(handler)

    @classmethod
    def default(cls) -> "EntityTypeRegistry":
        return cls([LeaveRequestHandler(), DocumentChangeHandler(), TransferHandler()])

    def register(self, handler: EntityTypeHandler) -> None:
        self._handlers[EntityType(handler.entity_type)] = handler

    def get(self, entity_type: EntityType | str) -> EntityTypeHandler:
        try:
            return self._handlers[EntityType(entity_type)]
        except (KeyError, ValueError):
            raise UnknownEntityTypeError(
                str(getattr(entity_type, "value", entity_type)),
            ) from None

    def entity_types(self) -> frozenset[EntityType]:
        return frozenset(self._handlers)
