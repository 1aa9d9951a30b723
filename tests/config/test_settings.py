"""
Tests for workflow settings loading (``workflow_config``).

get_active_settings() is the only runtime entrypoint: packaged defaults,
optionally overlaid by a YAML file named explicitly or through
WORKFLOW_SETTINGS_PATH.
"""

import pytest
import yaml

from workflow_config import SETTINGS_PATH_ENV, get_active_settings
from workflow_config.loader import compute_checksum, merge_settings, parse_settings
from workflow_config.schema import WorkflowSettings
from workflow_kernel.exceptions import SettingsError


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(SETTINGS_PATH_ENV, raising=False)


def write_yaml(tmp_path, data, name="settings.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_packaged_defaults_match_schema_defaults(self):
        settings = get_active_settings()
        expected = WorkflowSettings()
        assert settings.settings_id == expected.settings_id
        assert settings.roles == expected.roles
        assert settings.request_number == expected.request_number
        assert settings.notifications == expected.notifications
        assert settings.inbox == expected.inbox
        assert len(settings.checksum) == 64

    def test_trace_logged(self, captured_logs):
        settings = get_active_settings()
        traces = [r for r in captured_logs() if r["message"] == "WORKFLOW_SETTINGS_TRACE"]
        assert traces[-1]["checksum"] == settings.checksum
        assert traces[-1]["settings_id"] == "hospitality-default"


class TestOverrides:
    def test_override_file_merges_sections(self, tmp_path):
        path = write_yaml(tmp_path, {"request_number": {"prefix": "HR"}, "version": 3})
        settings = get_active_settings(path)
        assert settings.request_number.prefix == "HR"
        assert settings.request_number.width == 6
        assert settings.version == 3

    def test_env_var_override(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path, {"inbox": {"page_size": 10}})
        monkeypatch.setenv(SETTINGS_PATH_ENV, str(path))
        assert get_active_settings().inbox.page_size == 10

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "nope.yaml")

    def test_empty_override_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert get_active_settings(path).settings_id == "hospitality-default"

    def test_merge_is_one_section_deep(self):
        merged = merge_settings(
            {"roles": {"hr": ["a"], "admin": ["b"]}, "version": 1},
            {"roles": {"admin": ["c"]}},
        )
        assert merged == {"roles": {"hr": ["a"], "admin": ["c"]}, "version": 1}


class TestInvalidSettings:
    @pytest.mark.parametrize(
        "data,fragment",
        [
            ({"version": 0}, "version"),
            ({"version": True}, "version"),
            ({"settings_id": ""}, "settings_id"),
            ({"request_number": "REQ"}, "request_number"),
            ({"request_number": {"width": "six"}}, "request_number.width"),
            ({"notifications": {"max_attempts": -1}}, "notifications.max_attempts"),
            ({"roles": {"hr": "property_hr"}}, "roles.hr"),
            ({"roles": {"hr": ["regional_hr"]}}, "property_hr"),
        ],
    )
    def test_rejected(self, data, fragment):
        with pytest.raises(SettingsError) as exc_info:
            parse_settings(data, "test.yaml")
        assert fragment in exc_info.value.reason
        assert exc_info.value.source == "test.yaml"
        assert exc_info.value.code == "INVALID_SETTINGS"

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(SettingsError):
            get_active_settings(path)


class TestChecksum:
    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum(
            {"b": {"c": 2}, "a": 1}
        )

    def test_content_changes_checksum(self, tmp_path):
        base = get_active_settings()
        changed = get_active_settings(write_yaml(tmp_path, {"version": 2}))
        assert base.checksum != changed.checksum
