"""
Pure domain layer.

Value objects, rule tables and the notification dispatcher, with NO
dependencies on the ORM, the database or I/O.  All domain objects are
immutable and deterministic.
"""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.identity import IdentityProvider
from workflow_kernel.domain.notification import (
    NotificationDispatcher,
    NotificationTemplate,
)
from workflow_kernel.domain.request import (
    TERMINAL_STATUSES,
    ActorRole,
    CommentVisibility,
    EntityType,
    HistoryEntry,
    InboxFilters,
    InboxScope,
    NotificationIntent,
    Request,
    RequestAction,
    RequestComment,
    RequestStatus,
    RequestSummary,
    is_terminal,
)
from workflow_kernel.domain.transition_rules import (
    RULE_TABLES,
    RuleTable,
    TransitionEdge,
    find_edge,
    is_legal,
    legal_transitions,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "IdentityProvider",
    "NotificationDispatcher",
    "NotificationTemplate",
    "TERMINAL_STATUSES",
    "ActorRole",
    "CommentVisibility",
    "EntityType",
    "HistoryEntry",
    "InboxFilters",
    "InboxScope",
    "NotificationIntent",
    "Request",
    "RequestAction",
    "RequestComment",
    "RequestStatus",
    "RequestSummary",
    "is_terminal",
    "RULE_TABLES",
    "RuleTable",
    "TransitionEdge",
    "find_edge",
    "is_legal",
    "legal_transitions",
]
