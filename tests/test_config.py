"""Tests for configuration loading."""

import pytest
import yaml

from webjobs.config import ConfigError, Settings, create_default_config, load_config
from webjobs.models import WebJobsConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("WEBJOBS_ROOT", raising=False)
    monkeypatch.delenv("WEBJOBS_DATA", raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config == WebJobsConfig()
        assert config.supervisor.restart_interval == 60
        assert config.shutdown.grace_period == 60

    def test_partial_file(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text(yaml.safe_dump({"supervisor": {"restart_interval": 5}}))

        config = load_config(path)
        assert config.supervisor.restart_interval == 5
        assert config.supervisor.marker_attempts == 3

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text(yaml.safe_dump({"supervisor": {"restart_interval": "soon"}}))

        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text("supervisor: [unclosed")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WEBJOBS_ROOT", str(tmp_path / "site" / "jobs"))
        monkeypatch.setenv("WEBJOBS_DATA", str(tmp_path / "site" / "data"))

        config = load_config(tmp_path / "missing.yaml")
        assert config.paths.get_jobs_root() == tmp_path / "site" / "jobs"
        assert config.paths.get_data_root() == tmp_path / "site" / "data"

    def test_create_default_config(self, tmp_path):
        path = tmp_path / "conf" / "webjobs.yaml"
        path.parent.mkdir()
        path.write_text(yaml.safe_dump({
            "paths": {"jobs_root": str(tmp_path / "jobs"), "data_root": str(tmp_path / "data")},
        }))

        assert create_default_config(path) == path
        assert (tmp_path / "jobs" / "continuous").is_dir()
        assert (tmp_path / "data").is_dir()


class TestSettings:
    """Tests for live settings."""

    def test_restart_interval_reloaded(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text(yaml.safe_dump({"supervisor": {"restart_interval": 10}}))
        settings = Settings(path)
        assert settings.get_restart_interval() == 10

        path.write_text(yaml.safe_dump({"supervisor": {"restart_interval": 2.5}}))
        assert settings.get_restart_interval() == 2.5

    def test_broken_file_keeps_previous(self, tmp_path):
        path = tmp_path / "webjobs.yaml"
        path.write_text(yaml.safe_dump({"supervisor": {"restart_interval": 30}}))
        settings = Settings(path)
        assert settings.get_restart_interval() == 30

        path.write_text("supervisor: [broken")
        assert settings.get_restart_interval() == 30
