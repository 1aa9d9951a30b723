"""
Workflow settings schema.

Frozen dataclasses that YAML settings are parsed into.  This module has no
dependencies so the kernel may import it to type its settings parameter;
everything else in ``workflow_config`` sits above the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RoleSettings:
    """Binds directory role names to workflow role classes."""

    hr: tuple[str, ...] = ("regional_admin", "regional_hr", "property_hr")
    admin: tuple[str, ...] = ("regional_admin",)
    property_hr: str = "property_hr"
    regional_hr: str = "regional_hr"


@dataclass(frozen=True)
class RequestNumberSettings:
    prefix: str = "REQ"
    width: int = 6


@dataclass(frozen=True)
class NotificationSettings:
    max_attempts: int = 5


@dataclass(frozen=True)
class InboxSettings:
    page_size: int = 50


@dataclass(frozen=True)
class WorkflowSettings:
    """Runtime settings for the workflow kernel.

    The field defaults equal the packaged ``defaults.yaml``, so
    ``WorkflowSettings()`` is a valid configuration for tests and
    embedded use.
    """

    settings_id: str = "hospitality-default"
    version: int = 1
    roles: RoleSettings = field(default_factory=RoleSettings)
    request_number: RequestNumberSettings = field(default_factory=RequestNumberSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    inbox: InboxSettings = field(default_factory=InboxSettings)
    checksum: str = ""
