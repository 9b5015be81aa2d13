"""Tests for runtime config — env-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from limepkg.config import LimeConfig


class TestLimeConfig:
    def test_defaults(self):
        config = LimeConfig()
        assert config.log_level == "INFO"
        assert config.compress_files is True
        assert config.compression_level == 6
        assert config.trigger_timeout_seconds == 60.0
        assert config.trigger_workers == 4

    def test_default_paths(self):
        config = LimeConfig()
        assert config.state_path == Path(".limepkg/state.json")
        assert config.root_path == Path(".limepkg/root")

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LIMEPKG_TRIGGER_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("LIMEPKG_COMPRESS_FILES", "false")
        monkeypatch.setenv("LIMEPKG_ROOT_PATH", "/srv/root")
        config = LimeConfig()
        assert config.trigger_timeout_seconds == 2.5
        assert config.compress_files is False
        assert config.root_path == Path("/srv/root")

    def test_keyword_override(self):
        config = LimeConfig(log_level="DEBUG", trigger_workers=1)
        assert config.log_level == "DEBUG"
        assert config.trigger_workers == 1
