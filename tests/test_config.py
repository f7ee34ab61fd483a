"""
Tests for the config module.

Tests configuration loading, validation, and generation functionality
including YAML parsing, error handling, and file operations.
"""

import os
from unittest.mock import patch

import pytest
import yaml

from outreach_sync.config.generator import generate_default_config, save_config_file
from outreach_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    resolve_api_key,
)
from outreach_sync.config.sync_policy import SyncPolicy


class TestConfigLoaderInitialization:
    """Tests for ConfigLoader initialization."""

    def test_custom_config_dir_via_argument(self, tmp_path):
        loader = ConfigLoader(config_dir=tmp_path)
        assert loader.config_dir == tmp_path.resolve()

    def test_config_dir_from_environment_variable(self, tmp_path):
        with patch.dict(os.environ, {"OUTREACH_SYNC_CONFIG_DIR": str(tmp_path)}):
            loader = ConfigLoader()
        assert loader.config_dir == tmp_path.resolve()

    def test_config_path(self, tmp_path):
        loader = ConfigLoader(config_dir=tmp_path)
        assert loader.config_path == tmp_path.resolve() / DEFAULT_CONFIG_FILE


class TestConfigLoading:
    """Tests for YAML loading."""

    @pytest.fixture
    def loader(self, tmp_path):
        return ConfigLoader(config_dir=tmp_path)

    def test_load_nonexistent_file_returns_empty_dict(self, loader):
        assert loader.load() == {}

    def test_load_valid_yaml_file(self, loader):
        loader.config_path.write_text(
            yaml.dump({"primary_api_url": "https://api.test", "verbose": True})
        )
        config = loader.load()
        assert config["primary_api_url"] == "https://api.test"
        assert config["verbose"] is True

    def test_load_yaml_with_only_comments_returns_empty_dict(self, loader):
        loader.config_path.write_text("# nothing here\n# verbose: true\n")
        assert loader.load() == {}

    def test_load_invalid_yaml_raises_config_error(self, loader):
        loader.config_path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigError, match="Failed to parse YAML"):
            loader.load()

    def test_load_non_dict_yaml_raises_config_error(self, loader):
        loader.config_path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML dictionary"):
            loader.load()

    def test_load_from_file_with_string_path(self, loader, tmp_path):
        other = tmp_path / "other.yaml"
        other.write_text("max_concurrent_syncs: 2\n")
        assert loader.load_from_file(str(other)) == {"max_concurrent_syncs": 2}

    def test_generated_template_loads_as_empty(self, loader):
        """Every option in the template is commented out."""
        loader.config_path.write_text(generate_default_config())
        assert loader.load_and_validate() == {}


class TestConfigValidation:
    """Tests for ConfigLoader.validate."""

    @pytest.fixture
    def loader(self, tmp_path):
        return ConfigLoader(config_dir=tmp_path)

    def test_validate_empty_config(self, loader):
        loader.validate({})

    def test_validate_non_dict_raises_error(self, loader):
        with pytest.raises(ConfigError, match="must be a dictionary"):
            loader.validate(["not", "a", "dict"])

    def test_unknown_keys_are_ignored(self, loader):
        loader.validate({"some_future_option": 1})

    def test_wrong_type_raises_error(self, loader):
        with pytest.raises(ConfigError, match="Invalid type for 'verbose'"):
            loader.validate({"verbose": "yes"})

    def test_bool_rejected_for_int(self, loader):
        with pytest.raises(ConfigError, match="max_concurrent_syncs"):
            loader.validate({"max_concurrent_syncs": True})

    def test_int_accepted_for_float(self, loader):
        loader.validate({"request_timeout": 10})

    def test_non_positive_values_rejected(self, loader):
        with pytest.raises(ConfigError, match="max_concurrent_syncs must be >= 1"):
            loader.validate({"max_concurrent_syncs": 0})
        with pytest.raises(ConfigError, match="request_timeout must be > 0"):
            loader.validate({"request_timeout": 0.0})

    def test_negative_log_retention_rejected(self, loader):
        with pytest.raises(ConfigError, match="log_retention_count"):
            loader.validate({"log_retention_count": -1})

    def test_policy_sections_validated(self, loader):
        with pytest.raises(ConfigError, match="Invalid sync policy"):
            loader.validate({"sync_policy": {"max_pages": 500}})

    def test_workspace_section_validated_on_top_of_global(self, loader):
        with pytest.raises(ConfigError, match="Invalid sync policy"):
            loader.validate(
                {
                    "sync_policy": {"preset": "minimal"},
                    "workspaces": {"ws": {"max_messages_per_conversation": 101}},
                }
            )

    def test_valid_policy_sections(self, loader):
        loader.validate(
            {
                "sync_policy": {"preset": "standard", "max_pages": 10},
                "workspaces": {"ws": {"preset": "minimal"}},
            }
        )


class TestResolveApiKey:
    """Tests for resolve_api_key."""

    def test_key_in_config_wins(self, monkeypatch):
        monkeypatch.setenv("OUTREACH_SYNC_PRIMARY_API_KEY", "from-env")
        assert resolve_api_key({"primary_api_key": "inline"}, "primary") == "inline"

    def test_default_env_var(self, monkeypatch):
        monkeypatch.setenv("OUTREACH_SYNC_SECONDARY_API_KEY", "from-env")
        assert resolve_api_key({}, "secondary") == "from-env"

    def test_custom_env_var(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "custom")
        assert resolve_api_key({"primary_api_key_env": "MY_KEY"}, "primary") == "custom"

    def test_missing(self, monkeypatch):
        monkeypatch.delenv("OUTREACH_SYNC_PRIMARY_API_KEY", raising=False)
        assert resolve_api_key({}, "primary") is None


class TestConfigGenerator:
    """Tests for the config template."""

    def test_template_mentions_every_section(self):
        template = generate_default_config()
        for key in (
            "database_path",
            "primary_api_url",
            "secondary_api_url",
            "sync_policy",
            "workspaces",
            "max_concurrent_syncs",
            "daemon_pid_file",
        ):
            assert key in template

    def test_uncommented_template_is_valid(self, tmp_path):
        """Uncommenting the policy example yields a valid configuration."""
        data = {"sync_policy": {"preset": "standard", "skip_unchanged": True}}
        ConfigLoader(config_dir=tmp_path).validate(data)
        assert SyncPolicy.from_dict(data["sync_policy"]).skip_unchanged

    def test_save_config_file(self, tmp_path):
        path = tmp_path / "sub" / "config.yaml"
        success, error = save_config_file(path)
        assert success and error is None
        assert path.read_text() == generate_default_config()
        assert oct(path.stat().st_mode & 0o777) == oct(0o600)

    def test_save_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("verbose: true\n")
        success, error = save_config_file(path)
        assert not success
        assert "already exists" in error
        assert path.read_text() == "verbose: true\n"

    def test_save_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("verbose: true\n")
        success, _ = save_config_file(path, overwrite=True)
        assert success
        assert path.read_text() == generate_default_config()
