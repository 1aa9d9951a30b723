"""ORM models for the workflow kernel."""

from workflow_kernel.models.domain_records import (
    DocumentChangeModel,
    LeaveRequestModel,
    LeaveType,
    RecordStatus,
    TransferRequestModel,
)
from workflow_kernel.models.notification import NotificationModel, NotificationStatus
from workflow_kernel.models.profile import ProfileModel
from workflow_kernel.models.request import (
    RequestCommentModel,
    RequestHistoryModel,
    RequestModel,
    format_request_number,
)

__all__ = [
    "RequestModel",
    "RequestHistoryModel",
    "RequestCommentModel",
    "format_request_number",
    "ProfileModel",
    "NotificationModel",
    "NotificationStatus",
    "LeaveRequestModel",
    "DocumentChangeModel",
    "TransferRequestModel",
    "LeaveType",
    "RecordStatus",
]
