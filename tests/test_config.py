"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from rollcall.config import RollcallConfig, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_full_file(self, tmp_path):
        path = _write(
            tmp_path,
            'service_name: "Club"\n'
            "api_port: 9000\n"
            "log_level: debug\n"
            "bulk_attendance_limit: 50\n"
            "roster_page_limit: 200\n"
            "history_page_limit: 25\n"
            "cors_origins:\n"
            '  - "http://localhost:5173"\n',
        )
        cfg = load_config(path)
        assert cfg == RollcallConfig(
            service_name="Club",
            api_port=9000,
            log_level="DEBUG",
            bulk_attendance_limit=50,
            roster_page_limit=200,
            history_page_limit=25,
            cors_origins=("http://localhost:5173",),
        )

    def test_limits_default(self, tmp_path):
        path = _write(tmp_path, "service_name: x\napi_port: 8000\nlog_level: INFO\n")
        cfg = load_config(path)
        assert cfg.bulk_attendance_limit == 100
        assert cfg.roster_page_limit == 500
        assert cfg.history_page_limit == 100
        assert cfg.cors_origins == ()

    def test_missing_file_has_hint(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        path = _write(tmp_path, "service_name: x\nlog_level: INFO\n")
        with pytest.raises(KeyError):
            load_config(path)

    def test_config_is_frozen(self, tmp_path):
        path = _write(tmp_path, "service_name: x\napi_port: 8000\nlog_level: INFO\n")
        cfg = load_config(path)
        with pytest.raises(AttributeError):
            cfg.api_port = 1
