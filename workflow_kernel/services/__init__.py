"""Services for the workflow kernel (write side)."""

from workflow_kernel.services.directory import DirectoryIdentityProvider
from workflow_kernel.services.entity_handlers import (
    DocumentChangeHandler,
    EntityTypeRegistry,
    LeaveRequestHandler,
    TransferHandler,
)
from workflow_kernel.services.notification_outbox import (
    NotificationOutbox,
    NotificationSink,
)
from workflow_kernel.services.request_store import RequestStore
from workflow_kernel.services.sequence_service import SequenceService
from workflow_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "DirectoryIdentityProvider",
    "DocumentChangeHandler",
    "EntityTypeRegistry",
    "LeaveRequestHandler",
    "NotificationOutbox",
    "NotificationSink",
    "RequestStore",
    "SequenceService",
    "TransferHandler",
    "WorkflowEngine",
]
