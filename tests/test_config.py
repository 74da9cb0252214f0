"""Tests for configuration loading.

@file test_config.py
@description FORMPILOT_DIR resolution, engine.yaml overlay onto DEFAULTS,
             tolerance of missing or malformed files, and .env loading.
"""

from __future__ import annotations


import os

from formpilot import config


class TestAppDir:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FORMPILOT_DIR", str(tmp_path / "custom"))
        assert config._app_dir() == tmp_path / "custom"

    def test_blank_override_falls_back_to_home(self, monkeypatch):
        monkeypatch.setenv("FORMPILOT_DIR", "  ")
        assert config._app_dir().name == ".formpilot"


class TestEngineConfig:
    """YAML overrides on top of DEFAULTS; bad files never abort."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert config.load_engine_config(tmp_path / "absent.yaml") == config.DEFAULTS

    def test_overrides_and_unknown_keys(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("max_pages: 4\ntask_budget_usd: 1.25\nbogus: true\n")
        cfg = config.load_engine_config(path)

        assert cfg["max_pages"] == 4
        assert cfg["task_budget_usd"] == 1.25
        assert "bogus" not in cfg
        assert cfg["act_timeout_s"] == config.DEFAULTS["act_timeout_s"]

    def test_defaults_not_mutated(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("max_pages: 2\n")
        config.load_engine_config(path)
        assert config.DEFAULTS["max_pages"] == 15

    def test_malformed_yaml_ignored(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("max_pages: [unclosed\n")
        assert config.load_engine_config(path) == config.DEFAULTS

    def test_non_mapping_ignored(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("- just\n- a list\n")
        assert config.load_engine_config(path) == config.DEFAULTS


class TestLoadEnv:
    def test_existing_variables_win(self, monkeypatch, tmp_path):
        env = tmp_path / ".env"
        env.write_text("FORMPILOT_TEST_KEEP=from-file\nFORMPILOT_TEST_NEW=loaded\n")
        monkeypatch.setenv("FORMPILOT_TEST_KEEP", "from-env")
        # Registered with monkeypatch so the loaded value is removed afterwards.
        monkeypatch.setenv("FORMPILOT_TEST_NEW", "")
        monkeypatch.delenv("FORMPILOT_TEST_NEW")

        config.load_env(env)

        assert os.environ["FORMPILOT_TEST_KEEP"] == "from-env"
        assert os.environ["FORMPILOT_TEST_NEW"] == "loaded"

    def test_missing_env_file_is_fine(self, tmp_path):
        config.load_env(tmp_path / "missing.env")
