"""
Unit tests for settings loading.
"""
import sys

import pytest
import yaml

from repobundle.settings import ToolSettings, load_settings, reset_settings


class TestToolSettings:
    """Test settings construction and sources."""

    def test_defaults(self):
        """Defaults should target PyPI and bootstrap pip."""
        settings = ToolSettings.from_env({})

        assert settings.index_url == "https://pypi.org"
        assert settings.simple_index_url == "https://pypi.org/simple"
        assert settings.bootstrap_package == "pip"
        assert settings.python == sys.executable
        assert settings.http_timeout == 60.0

    def test_env_overrides(self):
        """Environment variables should override defaults."""
        settings = ToolSettings.from_env({
            'REPOBUNDLE_INDEX_URL': "https://mirror.example.org/",
            'REPOBUNDLE_BOOTSTRAP_PACKAGE': "uv",
            'REPOBUNDLE_PYTHON': "/opt/python/bin/python3",
            'REPOBUNDLE_HTTP_TIMEOUT': "5",
        })

        assert settings.index_url == "https://mirror.example.org"
        assert settings.bootstrap_package == "uv"
        assert settings.pip_command() == ["/opt/python/bin/python3", "-m", "pip"]
        assert settings.http_timeout == 5.0

    def test_invalid_timeout(self):
        """A non-numeric timeout should raise ValueError."""
        with pytest.raises(ValueError, match="http_timeout"):
            ToolSettings.from_env({'REPOBUNDLE_HTTP_TIMEOUT': "soon"})

    def test_yaml_with_env_precedence(self, tmp_path):
        """YAML values apply, but environment variables win."""
        config = tmp_path / "repobundle.yaml"
        with open(config, 'w') as f:
            yaml.dump({'index_url': "https://yaml.example.org", 'bootstrap_package': "setuptools"}, f)

        settings = ToolSettings.from_yaml(config, {'REPOBUNDLE_BOOTSTRAP_PACKAGE': "pip"})

        assert settings.index_url == "https://yaml.example.org"
        assert settings.bootstrap_package == "pip"

    def test_yaml_unknown_keys(self, tmp_path):
        """Unknown YAML keys should raise ValueError."""
        config = tmp_path / "repobundle.yaml"
        config.write_text("index: https://example.org\n")

        with pytest.raises(ValueError, match="Unknown keys"):
            ToolSettings.from_yaml(config, {})

    def test_yaml_missing_file(self, tmp_path):
        """A missing YAML file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ToolSettings.from_yaml(tmp_path / "missing.yaml", {})


class TestMemoizedSettings:
    """Test process-wide memoization and reset."""

    def test_load_is_memoized_until_reset(self, monkeypatch):
        """Environment changes should be invisible until reset."""
        monkeypatch.setenv("REPOBUNDLE_INDEX_URL", "https://first.example.org")
        first = load_settings()

        monkeypatch.setenv("REPOBUNDLE_INDEX_URL", "https://second.example.org")
        assert load_settings() is first

        reset_settings()
        assert load_settings().index_url == "https://second.example.org"

    def test_load_from_config_file(self, monkeypatch, tmp_path):
        """REPOBUNDLE_CONFIG should select a YAML settings file."""
        config = tmp_path / "repobundle.yaml"
        config.write_text("index_url: https://yaml.example.org\n")
        monkeypatch.setenv("REPOBUNDLE_CONFIG", str(config))

        assert load_settings().index_url == "https://yaml.example.org"
