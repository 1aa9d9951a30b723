"""
workflow_config -- single public entrypoint for workflow settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration.  This package sits above ``workflow_kernel``: the loader
    uses the kernel's exception and logging types.  The kernel imports only
    ``workflow_config.schema`` (plain frozen dataclasses) to type the
    settings it is handed.

Failure modes:
    - ``FileNotFoundError`` -- ``WORKFLOW_SETTINGS_PATH`` names a missing file.
    - ``SettingsError`` -- structural or type errors in a settings file.

Audit relevance:
    Every call emits a ``WORKFLOW_SETTINGS_TRACE`` log entry with the
    settings id, version and checksum, tying request activity to the exact
    settings in force.
"""

from __future__ import annotations

import os
from pathlib import Path

from workflow_config.loader import load_yaml_file, merge_settings, parse_settings
from workflow_config.schema import WorkflowSettings
from workflow_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
SETTINGS_PATH_ENV = "WORKFLOW_SETTINGS_PATH"


def get_active_settings(path: Path | str | None = None) -> WorkflowSettings:
    """The ONLY public settings entrypoint.

    The packaged defaults are loaded first; an override file (``path``, or
    else ``$WORKFLOW_SETTINGS_PATH``) is overlaid section by section.

    Raises:
        FileNotFoundError: If the override file does not exist.
        SettingsError: If the merged settings are invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)

    override = path if path is not None else os.environ.get(SETTINGS_PATH_ENV)
    if override:
        data = merge_settings(data, load_yaml_file(Path(override)))
        source = str(override)

    settings = parse_settings(data, source)

    _logger.info(
        "WORKFLOW_SETTINGS_TRACE",
        extra={
            "trace_type": "WORKFLOW_SETTINGS_TRACE",
            "settings_id": settings.settings_id,
            "settings_version": settings.version,
            "checksum": settings.checksum,
            "source": source,
        },
    )
    return settings


__all__ = ["WorkflowSettings", "get_active_settings", "parse_settings"]
