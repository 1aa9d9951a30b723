"""
Request visibility rules (``workflow_kernel.domain.access``).

Pure predicates shared by the workflow engine (comment authoring) and the
inbox selector (reads).  Role classes are passed in, already resolved from
the live directory by the caller.

A viewer may see a request when they are its requester, its current
assignee, the supervisor snapshotted at submission, anyone who has acted
on or held it (history), or an HR/admin user.  Internal comments are
limited to HR/admin users and the current assignee.
"""

from __future__ import annotations

from uuid import UUID

from workflow_kernel.domain.request import ActorRole, Request

_OVERSIGHT_ROLES = frozenset({ActorRole.HR, ActorRole.ADMIN})


def has_oversight(roles: frozenset[ActorRole]) -> bool:
    return bool(roles & _OVERSIGHT_ROLES)


def participants(request: Request) -> frozenset[UUID]:
    """Everyone the request has touched: requester, supervisor, history."""
    found: set[UUID] = {request.requester_id}
    if request.supervisor_id is not None:
        found.add(request.supervisor_id)
    if request.current_assignee_id is not None:
        found.add(request.current_assignee_id)
    for entry in request.history:
        if entry.actor_id is not None:
            found.add(entry.actor_id)
        if entry.assignee_id is not None:
            found.add(entry.assignee_id)
    return frozenset(found)


def can_view_request(
    request: Request, viewer_id: UUID, roles: frozenset[ActorRole],
) -> bool:
    if has_oversight(roles):
        return True
    return viewer_id in participants(request)


def can_see_internal(
    request: Request, viewer_id: UUID, roles: frozenset[ActorRole],
) -> bool:
    return has_oversight(roles) or viewer_id == request.current_assignee_id
