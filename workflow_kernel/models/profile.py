"""
Module: workflow_kernel.models.profile
Responsibility: ORM persistence for staff profiles -- the directory that
    backs identity, role and reporting-line lookups.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - email is unique.
    - Role names are stored verbatim; mapping them to workflow role classes
      is a settings concern (workflow_config), not a storage concern.
    - Inactive profiles keep their rows so history stays resolvable, but
      they hold no live role and are never resolved as an approver.

Failure modes:
    - IntegrityError on duplicate email.

Audit relevance:
    History entries reference profile ids for actors and assignees; profile
    rows are deactivated, never deleted.
"""

from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString


class ProfileModel(Base):
    """
    One member of staff.

    Guarantees:
        - manager_id points at another profile (the reporting line).
        - roles is a JSON list of role names such as ``property_hr``.
    """

    __tablename__ = "profiles"

    __table_args__ = (
        Index("ix_profiles_manager_id", "manager_id"),
        Index("ix_profiles_property_id", "property_id"),
    )

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    manager_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("profiles.id"), nullable=True,
    )
    property_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Profile {self.full_name} roles={self.roles}>"
