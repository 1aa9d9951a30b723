"""
DirectoryIdentityProvider -- IdentityProvider backed by the profiles table.

Responsibility:
    Answers role, reporting-line and HR-approver questions from live
    ``profiles`` rows.  Directory role names (``property_hr``,
    ``regional_admin`` ...) are mapped to workflow role classes through
    ``WorkflowSettings.roles``.

Architecture position:
    Kernel > Services.  Read-only against the session; never flushes.

Invariants enforced:
    - Inactive profiles hold no role class, have no manager for approval
      purposes and are never returned as an approver.
    - HR approver resolution: a property-HR user on the requester's
      property first, then any regional-HR user, else None.  Ties are
      broken by full_name then id so resolution is deterministic.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.domain.request import ActorRole
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.profile import ProfileModel

logger = get_logger("services.directory")


class DirectoryIdentityProvider:
    """Live directory lookups.  No caching across calls."""

    def __init__(self, session: Session, settings: WorkflowSettings | None = None):
        self.session = session
        self.settings = settings or WorkflowSettings()

    def _profile(self, user_id: UUID | None) -> ProfileModel | None:
        if user_id is None:
            return None
        return self.session.get(ProfileModel, user_id)

    def _active(self, user_id: UUID | None) -> ProfileModel | None:
        profile = self._profile(user_id)
        if profile is None or not profile.is_active:
            return None
        return profile

    def get_roles(self, user_id: UUID) -> frozenset[ActorRole]:
        profile = self._active(user_id)
        if profile is None:
            return frozenset()
        names = set(profile.roles or ())
        roles: set[ActorRole] = set()
        if names & set(self.settings.roles.hr):
            roles.add(ActorRole.HR)
        if names & set(self.settings.roles.admin):
            roles.add(ActorRole.ADMIN)
        return frozenset(roles)

    def has_role(self, user_id: UUID, role: ActorRole) -> bool:
        return role in self.get_roles(user_id)

    def get_manager(self, user_id: UUID) -> UUID | None:
        profile = self._profile(user_id)
        if profile is None or profile.manager_id is None:
            return None
        manager = self._active(profile.manager_id)
        return manager.id if manager is not None else None

    def get_direct_reports(self, user_id: UUID) -> frozenset[UUID]:
        if self._active(user_id) is None:
            return frozenset()
        rows = self.session.execute(
            select(ProfileModel.id).where(
                ProfileModel.manager_id == user_id,
                ProfileModel.is_active.is_(True),
            )
        ).scalars()
        return frozenset(rows)

    def find_users_by_name(self, text: str) -> frozenset[UUID]:
        needle = text.strip().lower()
        for char in ("\\", "%", "_"):
            needle = needle.replace(char, "\\" + char)
        pattern = f"%{needle}%"
        rows = self.session.execute(
            select(ProfileModel.id).where(
                func.lower(ProfileModel.full_name).like(pattern, escape="\\")
            )
        ).scalars()
        return frozenset(rows)

    def _first_with_role(self, role_name: str, property_id: UUID | None = None):
        # Role lists are JSON, so membership is checked in Python.
        query = select(ProfileModel).where(ProfileModel.is_active.is_(True))
        if property_id is not None:
            query = query.where(ProfileModel.property_id == property_id)
        query = query.order_by(ProfileModel.full_name, ProfileModel.id)
        for profile in self.session.execute(query).scalars():
            if role_name in (profile.roles or ()):
                return profile.id
        return None

    def find_hr_assignee(self, user_id: UUID) -> UUID | None:
        profile = self._profile(user_id)
        if profile is not None and profile.property_id is not None:
            found = self._first_with_role(
                self.settings.roles.property_hr, profile.property_id,
            )
            if found is not None:
                return found
        found = self._first_with_role(self.settings.roles.regional_hr)
        if found is None:
            logger.warning(
                "hr_assignee_not_found",
                extra={"subject_id": str(user_id)},
            )
        return found

    def get_display_name(self, user_id: UUID) -> str | None:
        profile = self._profile(user_id)
        return profile.full_name if profile is not None else None

    def is_active(self, user_id: UUID) -> bool:
        return self._active(user_id) is not None
