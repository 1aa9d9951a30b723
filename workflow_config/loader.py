"""
Settings loader (``workflow_config.loader``).

Responsibility
--------------
Loads YAML settings files and parses them into the frozen
``workflow_config.schema`` dataclasses.  Runtime callers use
``workflow_config.get_active_settings()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parse error raises ``SettingsError`` naming the source and the
  offending key; no silent coercion of wrong types.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form, so identical settings always carry the identical checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or type  -> ``SettingsError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    InboxSettings,
    NotificationSettings,
    RequestNumberSettings,
    RoleSettings,
    WorkflowSettings,
)
from workflow_kernel.exceptions import SettingsError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        SettingsError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(str(path), "top level must be a mapping")
    return data


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` on ``base`` one section deep."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], key: str, source: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise SettingsError(source, f"'{key}' must be a mapping")
    return value


def _str_list(value: Any, key: str, source: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise SettingsError(source, f"'{key}' must be a list of role names")
    if not all(isinstance(v, str) and v for v in value):
        raise SettingsError(source, f"'{key}' entries must be non-empty strings")
    return tuple(value)


def _positive_int(value: Any, key: str, source: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise SettingsError(source, f"'{key}' must be a positive integer")
    return value


def _non_empty_str(value: Any, key: str, source: str) -> str:
    if not isinstance(value, str) or not value:
        raise SettingsError(source, f"'{key}' must be a non-empty string")
    return value


def parse_role_settings(data: dict[str, Any], source: str) -> RoleSettings:
    defaults = RoleSettings()
    roles = RoleSettings(
        hr=_str_list(data.get("hr", defaults.hr), "roles.hr", source),
        admin=_str_list(data.get("admin", defaults.admin), "roles.admin", source),
        property_hr=_non_empty_str(
            data.get("property_hr", defaults.property_hr), "roles.property_hr", source,
        ),
        regional_hr=_non_empty_str(
            data.get("regional_hr", defaults.regional_hr), "roles.regional_hr", source,
        ),
    )
    for name in (roles.property_hr, roles.regional_hr):
        if name not in roles.hr:
            raise SettingsError(
                source, f"HR approver role '{name}' is not listed in roles.hr",
            )
    return roles


def parse_settings(data: dict[str, Any], source: str = "<memory>") -> WorkflowSettings:
    """
    Parse a settings mapping into ``WorkflowSettings``.

    Missing sections and keys fall back to the schema defaults; present
    keys must have the right type.
    """
    defaults = WorkflowSettings()
    numbering = _section(data, "request_number", source)
    notifications = _section(data, "notifications", source)
    inbox = _section(data, "inbox", source)

    return WorkflowSettings(
        settings_id=_non_empty_str(
            data.get("settings_id", defaults.settings_id), "settings_id", source,
        ),
        version=_positive_int(data.get("version", defaults.version), "version", source),
        roles=parse_role_settings(_section(data, "roles", source), source),
        request_number=RequestNumberSettings(
            prefix=_non_empty_str(
                numbering.get("prefix", defaults.request_number.prefix),
                "request_number.prefix", source,
            ),
            width=_positive_int(
                numbering.get("width", defaults.request_number.width),
                "request_number.width", source,
            ),
        ),
        notifications=NotificationSettings(
            max_attempts=_positive_int(
                notifications.get("max_attempts", defaults.notifications.max_attempts),
                "notifications.max_attempts", source,
            ),
        ),
        inbox=InboxSettings(
            page_size=_positive_int(
                inbox.get("page_size", defaults.inbox.page_size),
                "inbox.page_size", source,
            ),
        ),
        checksum=compute_checksum(data),
    )
