"""
Tests for entity-type handlers and their registry
(``workflow_kernel.services.entity_handlers``).
"""

from datetime import date
from uuid import uuid4

import pytest

from workflow_kernel.domain.request import EntityType, RequestStatus
from workflow_kernel.exceptions import RequestValidationError, UnknownEntityTypeError
from workflow_kernel.models.domain_records import LeaveRequestModel, RecordStatus
from workflow_kernel.services.entity_handlers import (
    DocumentChangeHandler,
    EntityTypeRegistry,
    LeaveRequestHandler,
    TransferHandler,
    record_status_for,
)


def field_names(exc_info) -> set[str]:
    return {e["field"] for e in exc_info.value.field_errors}


class TestRecordStatusMapping:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (RequestStatus.APPROVED, RecordStatus.APPROVED),
            (RequestStatus.REJECTED, RecordStatus.REJECTED),
            (RequestStatus.CLOSED, RecordStatus.CANCELLED),
            (RequestStatus.PENDING_HR_REVIEW, RecordStatus.PENDING),
            (RequestStatus.RETURNED_FOR_CORRECTION, RecordStatus.PENDING),
        ],
    )
    def test_mapping(self, status, expected):
        assert record_status_for(status) == expected


class TestLeaveRequestHandler:
    handler = LeaveRequestHandler()

    def test_normalizes_strings(self):
        payload = self.handler.validate_payload(
            {"leave_type": "sick", "start_date": "2025-02-03", "end_date": "2025-02-04",
             "reason": "  flu  "}
        )
        assert payload == {
            "leave_type": "sick",
            "start_date": date(2025, 2, 3),
            "end_date": date(2025, 2, 4),
            "reason": "flu",
        }

    def test_missing_everything(self):
        with pytest.raises(RequestValidationError) as exc_info:
            self.handler.validate_payload({})
        assert field_names(exc_info) == {"leave_type", "start_date", "end_date"}
        assert exc_info.value.entity_type == "leave_request"

    @pytest.mark.parametrize("payload", [None, [], "sick", 42])
    def test_non_mapping_payload(self, payload):
        with pytest.raises(RequestValidationError) as exc_info:
            self.handler.validate_payload(payload)
        assert field_names(exc_info) == {"payload"}

    def test_reason_optional_but_bounded(self):
        with pytest.raises(RequestValidationError) as exc_info:
            self.handler.validate_payload(
                {"leave_type": "unpaid", "start_date": date(2025, 1, 1),
                 "end_date": date(2025, 1, 1), "reason": "x" * 2001}
            )
        assert field_names(exc_info) == {"reason"}

    def test_metadata(self):
        payload = self.handler.validate_payload(
            {"leave_type": "personal", "start_date": "2025-05-01", "end_date": "2025-05-02"}
        )
        metadata = self.handler.build_metadata(payload)
        assert metadata["title"] == "Personal leave 2025-05-01 to 2025-05-02"
        assert metadata["days"] == 2
        assert self.handler.describe(metadata) == metadata["title"]

    def test_describe_falls_back_to_entity_label(self):
        assert self.handler.describe({}) == "Leave Request"


class TestDocumentChangeHandler:
    handler = DocumentChangeHandler()

    def test_valid(self):
        doc_id = uuid4()
        payload = self.handler.validate_payload(
            {"document_id": str(doc_id), "title": "Linen SOP", "change_summary": "New supplier"}
        )
        assert payload["document_id"] == doc_id
        assert self.handler.build_metadata(payload) == {
            "title": "Document change: Linen SOP",
            "document_id": str(doc_id),
        }

    def test_bad_uuid_and_blank_title(self):
        with pytest.raises(RequestValidationError) as exc_info:
            self.handler.validate_payload(
                {"document_id": "not-a-uuid", "title": "   ", "change_summary": "x"}
            )
        assert field_names(exc_info) == {"document_id", "title"}


class TestTransferHandler:
    handler = TransferHandler()

    def test_record_defaults_employee(self):
        requester = uuid4()
        payload = self.handler.validate_payload(
            {"from_property_id": uuid4(), "to_property_id": uuid4(),
             "effective_date": "2025-07-01"}
        )
        assert payload["employee_id"] is None
        assert self.handler.record_fields(requester, payload)["employee_id"] == requester

    def test_explicit_employee_kept(self):
        employee = uuid4()
        payload = self.handler.validate_payload(
            {"employee_id": employee, "from_property_id": uuid4(),
             "to_property_id": uuid4(), "effective_date": date(2025, 7, 1)}
        )
        assert self.handler.record_fields(uuid4(), payload)["employee_id"] == employee

    def test_effective_date_required(self):
        with pytest.raises(RequestValidationError) as exc_info:
            self.handler.validate_payload(
                {"from_property_id": uuid4(), "to_property_id": uuid4()}
            )
        assert field_names(exc_info) == {"effective_date"}


class TestRegistry:
    def test_default_registry_covers_every_entity_type(self):
        assert EntityTypeRegistry.default().entity_types() == frozenset(EntityType)

    def test_lookup_by_string(self):
        handler = EntityTypeRegistry.default().get("document")
        assert isinstance(handler, DocumentChangeHandler)

    @pytest.mark.parametrize("entity_type", ["payroll", ""])
    def test_unknown_entity_type(self, entity_type):
        with pytest.raises(UnknownEntityTypeError):
            EntityTypeRegistry.default().get(entity_type)

    def test_registered_but_missing(self):
        registry = EntityTypeRegistry([LeaveRequestHandler()])
        with pytest.raises(UnknownEntityTypeError) as exc_info:
            registry.get(EntityType.TRANSFER)
        assert exc_info.value.entity_type == "transfer"

    def test_register_replaces(self):
        class QuietLeave(LeaveRequestHandler):
            pass

        registry = EntityTypeRegistry.default()
        registry.register(QuietLeave())
        assert isinstance(registry.get(EntityType.LEAVE_REQUEST), QuietLeave)


class TestRecordSync:
    """Domain records follow the workflow outcome."""

    def test_sync_writes_only_on_change(self, submit_leave, session, captured_logs):
        request = submit_leave()
        handler = LeaveRequestHandler()
        handler.sync_status(session, request.entity_id, RequestStatus.PENDING_HR_REVIEW)
        assert not any(r["message"] == "domain_record_synced" for r in captured_logs())

        handler.sync_status(session, request.entity_id, RequestStatus.APPROVED)
        assert session.get(LeaveRequestModel, request.entity_id).status == "approved"
        synced = [r for r in captured_logs() if r["message"] == "domain_record_synced"]
        assert synced[0]["record_status"] == "approved"

    def test_missing_record(self, session):
        with pytest.raises(LookupError):
            LeaveRequestHandler().sync_status(session, uuid4(), RequestStatus.APPROVED)


class TestCorrections:
    """Partial changes merged over the stored record."""

    def test_changes_merged_over_record(self, submit_leave, session):
        request = submit_leave()
        handler = LeaveRequestHandler()
        payload = handler.validate_changes(
            session, request.entity_id, {"reason": "  Wedding  "},
        )
        assert payload == {
            "leave_type": "vacation",
            "start_date": date(2025, 3, 10),
            "end_date": date(2025, 3, 14),
            "reason": "Wedding",
        }

        handler.update_record(session, request.entity_id, payload)
        assert session.get(LeaveRequestModel, request.entity_id).reason == "Wedding"

    def test_unknown_fields_cannot_be_changed(self, submit_leave, session):
        request = submit_leave()
        with pytest.raises(RequestValidationError) as exc_info:
            LeaveRequestHandler().validate_changes(
                session, request.entity_id, {"workflow_request_id": str(uuid4())},
            )
        assert field_names(exc_info) == {"workflow_request_id"}
