# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Tests for the config loader, the entry point for all config loading.

We test:
  1. Valid YAML loads into a frozen, correct config object
  2. Unknown fields raise ConfigValidationError (extra="forbid")
  3. Broken YAML and missing files raise ConfigLoadError
  4. An empty file gives the defaults
"""

import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError

from reprobuild.config.exceptions import ConfigError, ConfigLoadError, ConfigValidationError
from reprobuild.config.loader import default_config, load_config


class TestLoadValidConfig:
    def test_loads_minimal_valid_config(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.global_config.project_name == "reprobuild-test"
        assert config.global_config.log_level == "DEBUG"
        assert config.build.output_root == "out"
        assert config.build.diagnostics is True

    def test_unspecified_build_fields_keep_defaults(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        assert config.build.digests_lock_file == "digests.lock.env"
        assert config.build.binary_prefix == "secluso"
        assert config.build.allow_container_fallback is True
        assert config.build.source_date_epoch is None

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("", encoding="utf-8")
        assert load_config(config_file) == default_config()

    def test_full_build_section(self, tmp_path: Path) -> None:
        config_file = tmp_path / "full.yaml"
        config_file.write_text(
            textwrap.dedent("""\
                build:
                  project_root: "src"
                  releases_dir: "releases"
                  source_date_epoch: 1700000000
                  canonicalize_linux_bundles: false
                  smoke_check: true
                  smoke_check_timeout_seconds: 3
            """),
            encoding="utf-8",
        )
        config = load_config(config_file)
        assert config.build.source_date_epoch == 1700000000
        assert config.build.canonicalize_linux_bundles is False
        assert config.build.smoke_check_timeout_seconds == 3


class TestLoadInvalidConfig:
    def test_unknown_field_raises_validation_error(self, invalid_config_file: Path) -> None:
        with pytest.raises(ConfigValidationError, match="colour"):
            load_config(invalid_config_file)

    def test_broken_yaml_raises_load_error(self, broken_yaml_file: Path) -> None:
        with pytest.raises(ConfigLoadError, match="Invalid YAML"):
            load_config(broken_yaml_file)

    def test_missing_file_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_directory_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not a file"):
            load_config(tmp_path)

    def test_non_mapping_raises_load_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(config_file)

    def test_negative_epoch_raises_validation_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "epoch.yaml"
        config_file.write_text("build:\n  source_date_epoch: -5\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_config(config_file)

    def test_all_errors_share_a_base_class(self, broken_yaml_file: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(broken_yaml_file)


class TestConfigImmutability:
    def test_loaded_config_is_frozen(self, tmp_config_file: Path) -> None:
        config = load_config(tmp_config_file)
        with pytest.raises(ValidationError):
            config.build.output_root = "elsewhere"  # type: ignore[misc]
