"""
Transition rule tables (``workflow_kernel.domain.transition_rules``).

Responsibility
--------------
Declares, per entity type, the directed graph of legal status moves and
the role class authorized to trigger each edge.  Lookups are pure and
never raise: a missing edge is a normal "not allowed" answer, and the
caller decides whether that is a user-facing validation error or a bug.

Architecture position
---------------------
**Kernel domain layer** -- pure data.  ZERO I/O.  May import only from
``domain/request``.

Invariants enforced
-------------------
* Terminal statuses have no outgoing edges in any table
  (``validate_rule_table`` runs at import).
* Each (from_status, to_status) pair appears at most once per table.
* Every non-terminal status has an administrative ``closed`` edge.
"""

from __future__ import annotations

from dataclasses import dataclass

from workflow_kernel.domain.request import (
    TERMINAL_STATUSES,
    ActorRole,
    EntityType,
    RequestAction,
    RequestStatus,
)

S = RequestStatus


@dataclass(frozen=True)
class TransitionEdge:
    """A single legal move.

    ``assignee_may_act`` is False for override edges: holding the request
    is not enough, the actor must be a live member of ``required_role``.
    """

    from_status: RequestStatus
    to_status: RequestStatus
    action: RequestAction
    required_role: ActorRole
    assignee_may_act: bool = True


@dataclass(frozen=True)
class RuleTable:
    """The transition graph for one entity type."""

    entity_type: EntityType
    edges: tuple[TransitionEdge, ...]

    def outgoing(self, from_status: RequestStatus) -> tuple[TransitionEdge, ...]:
        return tuple(e for e in self.edges if e.from_status == from_status)

    def edge(
        self, from_status: RequestStatus, to_status: RequestStatus,
    ) -> TransitionEdge | None:
        for e in self.edges:
            if e.from_status == from_status and e.to_status == to_status:
                return e
        return None

    @property
    def statuses(self) -> frozenset[RequestStatus]:
        found: set[RequestStatus] = set()
        for e in self.edges:
            found.add(e.from_status)
            found.add(e.to_status)
        return frozenset(found)


SUBMIT_TRANSITION: tuple[RequestStatus, RequestStatus] = (
    S.DRAFT,
    S.PENDING_SUPERVISOR_APPROVAL,
)

# Approvers may hand a request to someone else without changing its status.
FORWARDABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    S.PENDING_SUPERVISOR_APPROVAL,
    S.PENDING_HR_REVIEW,
})


def _admin_close_edges(statuses: tuple[RequestStatus, ...]) -> tuple[TransitionEdge, ...]:
    return tuple(
        TransitionEdge(
            status, S.CLOSED, RequestAction.ADMIN_CLOSE, ActorRole.ADMIN,
            assignee_may_act=False,
        )
        for status in statuses
    )


def _review_graph(*, hr_stage: bool) -> tuple[TransitionEdge, ...]:
    """Supervisor review, optionally followed by an HR review stage."""
    edges = [
        TransitionEdge(S.DRAFT, S.PENDING_SUPERVISOR_APPROVAL,
                       RequestAction.SUBMIT, ActorRole.SYSTEM),
        TransitionEdge(S.PENDING_SUPERVISOR_APPROVAL, S.REJECTED,
                       RequestAction.REJECT, ActorRole.SUPERVISOR),
        TransitionEdge(S.PENDING_SUPERVISOR_APPROVAL, S.RETURNED_FOR_CORRECTION,
                       RequestAction.RETURN, ActorRole.SUPERVISOR),
        TransitionEdge(S.RETURNED_FOR_CORRECTION, S.PENDING_SUPERVISOR_APPROVAL,
                       RequestAction.RESUBMIT, ActorRole.REQUESTER),
    ]
    non_terminal = [S.DRAFT, S.PENDING_SUPERVISOR_APPROVAL, S.RETURNED_FOR_CORRECTION]
    if hr_stage:
        edges += [
            TransitionEdge(S.PENDING_SUPERVISOR_APPROVAL, S.PENDING_HR_REVIEW,
                           RequestAction.APPROVE, ActorRole.SUPERVISOR),
            TransitionEdge(S.PENDING_HR_REVIEW, S.APPROVED,
                           RequestAction.APPROVE, ActorRole.HR),
            TransitionEdge(S.PENDING_HR_REVIEW, S.REJECTED,
                           RequestAction.REJECT, ActorRole.HR),
            TransitionEdge(S.PENDING_HR_REVIEW, S.RETURNED_FOR_CORRECTION,
                           RequestAction.RETURN, ActorRole.HR),
        ]
        non_terminal.append(S.PENDING_HR_REVIEW)
    else:
        edges.append(
            TransitionEdge(S.PENDING_SUPERVISOR_APPROVAL, S.APPROVED,
                           RequestAction.APPROVE, ActorRole.SUPERVISOR),
        )
    return tuple(edges) + _admin_close_edges(tuple(non_terminal))


RULE_TABLES: dict[EntityType, RuleTable] = {
    EntityType.LEAVE_REQUEST: RuleTable(
        EntityType.LEAVE_REQUEST, _review_graph(hr_stage=True),
    ),
    EntityType.TRANSFER: RuleTable(
        EntityType.TRANSFER, _review_graph(hr_stage=True),
    ),
    EntityType.DOCUMENT: RuleTable(
        EntityType.DOCUMENT, _review_graph(hr_stage=False),
    ),
}


def _coerce(entity_type, from_status, to_status=None):
    """Normalize raw strings to enums; None for anything unknown."""
    try:
        et = EntityType(entity_type)
        fs = RequestStatus(from_status)
        ts = RequestStatus(to_status) if to_status is not None else None
    except ValueError:
        return None
    return et, fs, ts


def get_rule_table(entity_type: EntityType | str) -> RuleTable | None:
    try:
        return RULE_TABLES.get(EntityType(entity_type))
    except ValueError:
        return None


def find_edge(
    entity_type: EntityType | str,
    from_status: RequestStatus | str,
    to_status: RequestStatus | str,
) -> TransitionEdge | None:
    """The edge for this move, or None when the move is not allowed."""
    coerced = _coerce(entity_type, from_status, to_status)
    if coerced is None:
        return None
    et, fs, ts = coerced
    table = RULE_TABLES.get(et)
    if table is None:
        return None
    return table.edge(fs, ts)


def legal_transitions(
    entity_type: EntityType | str,
    from_status: RequestStatus | str,
) -> frozenset[tuple[RequestStatus, ActorRole]]:
    """All (to_status, required_role) pairs reachable from ``from_status``."""
    coerced = _coerce(entity_type, from_status)
    if coerced is None:
        return frozenset()
    et, fs, _ = coerced
    table = RULE_TABLES.get(et)
    if table is None:
        return frozenset()
    return frozenset((e.to_status, e.required_role) for e in table.outgoing(fs))


def is_legal(
    entity_type: EntityType | str,
    from_status: RequestStatus | str,
    to_status: RequestStatus | str,
) -> bool:
    return find_edge(entity_type, from_status, to_status) is not None


def validate_rule_table(table: RuleTable) -> list[str]:
    """Return structural problems with ``table`` (empty when sound)."""
    problems: list[str] = []
    seen: set[tuple[RequestStatus, RequestStatus]] = set()
    for e in table.edges:
        key = (e.from_status, e.to_status)
        if key in seen:
            problems.append(f"duplicate edge {e.from_status.value}->{e.to_status.value}")
        seen.add(key)
        if e.from_status in TERMINAL_STATUSES:
            problems.append(f"terminal status {e.from_status.value} has outgoing edge")
        if e.from_status == e.to_status:
            problems.append(f"self-loop on {e.from_status.value}")
    for status in table.statuses - TERMINAL_STATUSES:
        if table.edge(status, S.CLOSED) is None:
            problems.append(f"{status.value} has no administrative close edge")
    return problems


for _table in RULE_TABLES.values():
    _problems = validate_rule_table(_table)
    if _problems:
        raise RuntimeError(
            f"Invalid rule table for {_table.entity_type.value}: {_problems}"
        )
