"""
Identity / role provider contract (``workflow_kernel.domain.identity``).

The workflow engine never stores role membership itself; it asks an
``IdentityProvider`` on every call so authorization always reflects live
directory data.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from workflow_kernel.domain.request import ActorRole


class IdentityProvider(Protocol):
    """Pluggable interface for directory and role lookups."""

    def get_roles(self, user_id: UUID) -> frozenset[ActorRole]:
        """Return the global role classes held by a user (HR, admin)."""
        ...

    def has_role(self, user_id: UUID, role: ActorRole) -> bool:
        """Check if a user holds a global role class."""
        ...

    def get_manager(self, user_id: UUID) -> UUID | None:
        """Return the user's direct manager, if any."""
        ...

    def get_direct_reports(self, user_id: UUID) -> frozenset[UUID]:
        """Return the active users whose manager is ``user_id``."""
        ...

    def find_users_by_name(self, text: str) -> frozenset[UUID]:
        """Return users whose display name contains ``text`` (any case)."""
        ...

    def find_hr_assignee(self, user_id: UUID) -> UUID | None:
        """Return the HR approver responsible for this user, if any."""
        ...

    def get_display_name(self, user_id: UUID) -> str | None:
        """Return a human-readable name for a user."""
        ...

    def is_active(self, user_id: UUID) -> bool:
        """Check if a user exists and may hold work."""
        ...
