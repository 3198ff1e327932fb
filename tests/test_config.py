"""Tests for configuration loading and path resolution."""

from pathlib import Path

import pytest
import yaml

from tickr.config import (
    default_config,
    default_config_path,
    default_db_path,
    load_config,
    resolve_db_path,
)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    """Point the XDG directories at a temporary location."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, xdg):
        """Test a missing default config yields the defaults."""
        assert load_config() == default_config()

    def test_missing_explicit_path(self, tmp_path, caplog):
        """Test a missing explicit config warns and falls back."""
        config = load_config(str(tmp_path / "nope.yaml"))
        assert config == default_config()
        assert "Config not found" in caplog.text

    def test_merges_sections(self, tmp_path):
        """Test given keys override defaults section by section."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"database": {"path": "~/work.db"}}))

        config = load_config(str(path))
        assert config["database"]["path"] == "~/work.db"
        assert config["logging"]["level"] == "WARNING"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)) == default_config()

    def test_default_location(self, xdg):
        """Test the config is read from the XDG config directory."""
        path = default_config_path()
        assert path == xdg / "config" / "tickr" / "config.yaml"
        path.parent.mkdir(parents=True)
        path.write_text("logging:\n  level: DEBUG\n")
        assert load_config()["logging"]["level"] == "DEBUG"

    @pytest.mark.parametrize("text", ["logging: DEBUG\n", "logging:\n", "database: tickr.db\n"])
    def test_scalar_section_keeps_defaults(self, tmp_path, text):
        """Test a section given as a scalar or left empty keeps its defaults."""
        path = tmp_path / "config.yaml"
        path.write_text(text)
        assert load_config(str(path)) == default_config()

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("database: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_config(str(path))


class TestResolveDbPath:
    """Tests for resolve_db_path."""

    def test_flag_wins(self, tmp_path):
        config = {"database": {"path": str(tmp_path / "config.db")}}
        assert resolve_db_path(str(tmp_path / "flag.db"), config) == str(tmp_path / "flag.db")

    def test_config_path(self, tmp_path):
        config = {"database": {"path": str(tmp_path / "config.db")}}
        assert resolve_db_path(None, config) == str(tmp_path / "config.db")

    def test_expands_user(self):
        resolved = resolve_db_path("~/tickr.db")
        assert resolved == str(Path.home() / "tickr.db")

    def test_data_dir_default(self, xdg):
        assert resolve_db_path(None, default_config()) == str(xdg / "data" / "tickr" / "tickr.db")
        assert default_db_path() == str(xdg / "data" / "tickr" / "tickr.db")
