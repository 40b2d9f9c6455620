"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from docroute.config import DocrouteConfig, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in ["DOCROUTE_CONFIG", "DOCROUTE_DATABASE_URL", "DATABASE_URL", "DOCROUTE_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_config_file():
    config = load_config()
    assert config.database_url is None
    assert config.log_level == "INFO"
    assert config.packages.version == "2.0.0"
    assert config.packages.expiration_days == 14
    assert config.packages.max_extensions == 2
    assert config.returns.integrity_policy == "reject"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "docroute.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/docroute.db
log_level: DEBUG
packages:
  expiration_days: null
  max_extensions: 5
returns:
  integrity_policy: flag
"""
    )
    monkeypatch.setenv("DOCROUTE_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///tmp/docroute.db"
    assert config.log_level == "DEBUG"
    assert config.packages.expiration_days is None
    assert config.packages.max_extensions == 5
    assert config.returns.integrity_policy == "flag"


def test_explicit_path_and_env_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("DOCROUTE_DATABASE_URL", "postgresql://localhost/docroute")
    monkeypatch.setenv("DOCROUTE_LOG_LEVEL", "WARNING")

    config = load_config(str(config_path))
    assert config.database_url == "postgresql://localhost/docroute"
    assert config.log_level == "WARNING"


def test_config_yaml_in_working_directory_is_used(tmp_path):
    (tmp_path / "config.yaml").write_text("packages:\n  expiration_days: 30\n")
    assert load_config().packages.expiration_days == 30


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        DocrouteConfig(returns={"integrity_policy": "ignore"})
    with pytest.raises(ValidationError):
        DocrouteConfig(packages={"expiration_days": 0})
