"""Tests for configuration loading."""

import os

import pytest

from workspace_archiver.config import Settings, load_settings
from workspace_archiver.errors import ConfigError


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return {}


class TestDefaults:

    def test_no_file_uses_builtin_defaults(self, tmp_path, clean_env):
        s = load_settings(environ=clean_env)
        assert s.group_path == "/FormerEmployees"
        assert s.archive_dir == os.path.join(os.getcwd(), "archives")
        assert s.temp_dir == os.path.join(os.getcwd(), "temp")
        assert s.max_attempts == 3
        assert s.retry_delay == 60
        assert s.delay_between_users == 0
        assert s.report_every == 500
        assert s.gam_bin == "gam"
        assert not s.vault_enabled

    def test_ledger_lives_in_log_dir(self, tmp_path):
        s = Settings(base_dir=str(tmp_path))
        assert s.ledger_file == os.path.join(str(tmp_path), "logs", "archive_ledger.log")


class TestFile:

    def test_values_read_from_file(self, tmp_path, clean_env):
        cfg = tmp_path / "custom.cfg"
        cfg.write_text(
            "[settings]\n"
            "group_path = /Suspended\n"
            "archive_dir = store\n"
            "delay_between_users = 5\n"
            "[tools]\n"
            "gyb_bin = /opt/gyb/gyb\n"
            "[retry]\n"
            "max_attempts = 5\n"
            "retry_delay = 1.5\n"
            "[vault]\n"
            "s3_bucket = my-bucket\n"
        )
        s = load_settings(str(cfg), environ=clean_env)
        assert s.group_path == "/Suspended"
        assert s.archive_dir == os.path.join(str(tmp_path), "store")
        assert s.delay_between_users == 5
        assert s.gyb_bin == "/opt/gyb/gyb"
        assert s.max_attempts == 5
        assert s.retry_delay == 1.5
        assert s.vault_enabled

    def test_local_archiver_cfg_picked_up(self, tmp_path, clean_env):
        (tmp_path / "archiver.cfg").write_text("[settings]\ngroup_path = /Local\n")
        assert load_settings(environ=clean_env).group_path == "/Local"

    def test_explicit_missing_file_is_error(self, tmp_path, clean_env):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(str(tmp_path / "nope.cfg"), environ=clean_env)

    def test_archiver_config_env_var(self, tmp_path):
        cfg = tmp_path / "elsewhere.cfg"
        cfg.write_text("[settings]\ngroup_path = /FromEnv\n")
        s = load_settings(environ={"ARCHIVER_CONFIG": str(cfg)})
        assert s.group_path == "/FromEnv"

    def test_bad_number_is_config_error(self, tmp_path, clean_env):
        cfg = tmp_path / "bad.cfg"
        cfg.write_text("[retry]\nmax_attempts = many\n")
        with pytest.raises(ConfigError):
            load_settings(str(cfg), environ=clean_env)

    def test_zero_attempts_rejected(self, tmp_path, clean_env):
        cfg = tmp_path / "bad.cfg"
        cfg.write_text("[retry]\nmax_attempts = 0\n")
        with pytest.raises(ConfigError, match="max_attempts"):
            load_settings(str(cfg), environ=clean_env)

    def test_malformed_file_is_config_error(self, tmp_path, clean_env):
        cfg = tmp_path / "broken.cfg"
        cfg.write_text("no section header here\n")
        with pytest.raises(ConfigError, match="malformed"):
            load_settings(str(cfg), environ=clean_env)


class TestEnvironmentOverrides:

    def test_env_beats_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "archiver.cfg").write_text("[settings]\ngroup_path = /FromFile\n[tools]\ngam_bin = gam-file\n")
        env = {
            "FORMER_EMPLOYEES_OU": "/FromEnv",
            "GAM_BIN": "/usr/bin/gam7",
            "GYB_BIN": "/usr/bin/gyb",
            "ARCHIVE_BASE_DIR": str(tmp_path / "vault"),
        }
        s = load_settings(environ=env)
        assert s.group_path == "/FromEnv"
        assert s.gam_bin == "/usr/bin/gam7"
        assert s.gyb_bin == "/usr/bin/gyb"
        assert s.archive_dir == str(tmp_path / "vault")
