"""Tests for loading and validating the costing configuration."""

import pytest
import yaml

from costing_config import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    get_active_config,
    reset_config_cache,
    resolve_config_path,
)
from costing_config.loader import compute_checksum, load_config, parse_costing_config
from costing_kernel.exceptions import InvalidConfigError


def _write(tmp_path, data, name="costing.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return path


class TestDefaults:
    def test_packaged_defaults(self):
        config = load_config(DEFAULT_CONFIG_PATH)

        assert config.business_timezone == "Asia/Bangkok"
        assert config.default_method == "FIFO"
        assert config.cancelled_status_groups == ("Cancelled", "ยกเลิกแล้ว")
        assert (config.batch.page_size, config.batch.max_pages) == (1000, 100)
        assert config.batch.max_report_entries == 200
        assert config.permissions_for("admin") == frozenset(
            {"cogs.apply", "cogs.reverse", "inventory.layers.manage"}
        )
        assert config.permissions_for("nobody") == frozenset()
        assert config.source == str(DEFAULT_CONFIG_PATH)

    def test_empty_document_uses_schema_defaults(self):
        config = parse_costing_config({})
        assert config.business_timezone == "Asia/Bangkok"
        assert config.role_permissions == ()


class TestValidation:
    @pytest.mark.parametrize(
        ("data", "field"),
        [
            ({"business_timezone": "Mars/Olympus"}, "business_timezone"),
            ({"default_method": "LIFO"}, "default_method"),
            ({"cancelled_status_groups": []}, "cancelled_status_groups"),
            ({"batch": {"page_size": 0}}, "batch.page_size"),
            ({"batch": {"max_pages": "ten"}}, "batch.max_pages"),
            ({"roles": {"clerk": ["cogs.delete"]}}, "roles.clerk"),
        ],
    )
    def test_invalid_values_rejected(self, data, field):
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_costing_config(data)
        assert exc_info.value.field == field

    def test_method_normalized(self):
        assert parse_costing_config({"default_method": "fifo"}).default_method == "FIFO"


class TestChecksum:
    def test_independent_of_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_changes_with_content(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestActiveConfig:
    def test_env_override(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"business_timezone": "UTC", "batch": {"page_size": 50}})
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        config = get_active_config()

        assert resolve_config_path() == path
        assert config.business_timezone == "UTC"
        assert config.batch.page_size == 50

    def test_explicit_path_wins_over_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "missing.yaml"))
        assert resolve_config_path(DEFAULT_CONFIG_PATH) == DEFAULT_CONFIG_PATH

    def test_cached_until_reset(self, tmp_path):
        path = _write(tmp_path, {"batch": {"page_size": 10}})
        first = get_active_config(path)

        _write(tmp_path, {"batch": {"page_size": 20}})
        assert get_active_config(path) is first

        reset_config_cache()
        assert get_active_config(path).batch.page_size == 20

    def test_trace_logged_on_load(self, captured_logs, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "COSTING_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")
