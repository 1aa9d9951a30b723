"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (UI handlers, API adapters, batch jobs) must react differently to
"you can't do this" and "this isn't a valid move".  Parsing message strings
to tell them apart is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        engine.transition(request_id, actor_id, RequestStatus.APPROVED)
    except ForbiddenActionError as e:
        api_response(403, code=e.code, request=e.request_id)
    except IllegalTransitionError as e:
        api_response(409, code=e.code, from_status=e.from_status)
    except RequestConflictError:
        reload_and_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- RequestValidationError
    +-- RequestNotFoundError
    +-- AuthorizationError
    |   +-- ForbiddenActionError
    +-- IllegalTransitionError
    +-- ConcurrencyError
    |   +-- RequestConflictError
    +-- AssigneeResolutionError
    +-- UnknownEntityTypeError
    +-- ImmutabilityViolationError
    +-- NotificationDeliveryError
    +-- SettingsError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|----------------------------------------------
VALIDATION_ERROR            | Domain payload failed its owner's validator
REQUEST_NOT_FOUND           | Unknown request id
FORBIDDEN                   | Actor not authorized for this edge / view
ILLEGAL_TRANSITION          | Edge not present in the rule table
REQUEST_CONFLICT            | Concurrent modification (stale version)
ASSIGNEE_RESOLUTION_FAILED  | No eligible approver (e.g. no manager)
UNKNOWN_ENTITY_TYPE         | No handler registered for the entity type
IMMUTABILITY_VIOLATION      | Write to history or a write-once column
NOTIFICATION_DELIVERY_FAILED| Delivery sink rejected a notification
INVALID_SETTINGS            | Settings file is structurally invalid

===============================================================================
HANDLING PATTERNS
===============================================================================

* ForbiddenActionError / IllegalTransitionError -> user-facing, recoverable.
* RequestConflictError -> re-fetch and retry, or "already updated".
* AssigneeResolutionError -> data problem in the directory; surface to HR.
* NotificationDeliveryError -> never escapes a transition; logged by the
  outbox and retried independently.
"""

from __future__ import annotations


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


class RequestValidationError(WorkflowKernelError):
    """Domain payload is malformed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, entity_type: str, field_errors: list[dict]):
        self.entity_type = entity_type
        self.field_errors = field_errors
        super().__init__(
            f"Invalid {entity_type} payload: {len(field_errors)} error(s)"
        )


class RequestNotFoundError(WorkflowKernelError):
    """Request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class AuthorizationError(WorkflowKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class ForbiddenActionError(AuthorizationError):
    """
    Actor may not perform this action on this request.

    Raised when the actor is neither the current assignee nor a live member
    of the role class required by the edge, or when a viewer may not see
    the request.
    """

    code: str = "FORBIDDEN"

    def __init__(self, request_id: str, actor_id: str, action: str, reason: str):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} may not {action} request {request_id}: {reason}"
        )


class IllegalTransitionError(WorkflowKernelError):
    """Requested status move is not an edge of the rule table."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        request_id: str,
        entity_type: str,
        from_status: str,
        to_status: str,
    ):
        self.request_id = request_id
        self.entity_type = entity_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Illegal transition for {entity_type} request {request_id}: "
            f"{from_status} -> {to_status}"
        )


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class RequestConflictError(ConcurrencyError):
    """Request was modified by another actor since it was read."""

    code: str = "REQUEST_CONFLICT"

    def __init__(
        self,
        request_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Request {request_id} was already updated "
            f"(expected version {expected_version}, found {actual_version})"
        )


class AssigneeResolutionError(WorkflowKernelError):
    """No eligible approver could be resolved."""

    code: str = "ASSIGNEE_RESOLUTION_FAILED"

    def __init__(self, entity_type: str, status: str, subject_id: str, reason: str):
        self.entity_type = entity_type
        self.status = status
        self.subject_id = subject_id
        self.reason = reason
        super().__init__(
            f"Cannot resolve assignee for {entity_type} in {status} "
            f"(subject {subject_id}): {reason}"
        )


class UnknownEntityTypeError(WorkflowKernelError):
    """No handler is registered for the entity type."""

    code: str = "UNKNOWN_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type}")


class ImmutabilityViolationError(WorkflowKernelError):
    """Attempted to modify or delete an immutable record or column."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class NotificationDeliveryError(WorkflowKernelError):
    """A delivery sink failed to deliver a notification."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, notification_id: str, reason: str):
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(
            f"Delivery failed for notification {notification_id}: {reason}"
        )


class SettingsError(WorkflowKernelError):
    """Workflow settings are structurally invalid."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid workflow settings in {source}: {reason}")
