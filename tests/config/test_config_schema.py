# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""Tests for the pydantic config models."""

import pytest
from pydantic import ValidationError

from reprobuild.config.schema import BuildConfig, GlobalConfig, ReproConfig


class TestGlobalConfig:
    def test_defaults(self) -> None:
        config = GlobalConfig()
        assert config.log_level == "INFO"
        assert config.log_file is None

    def test_log_level_is_normalized_to_upper_case(self) -> None:
        assert GlobalConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="log_level"):
            GlobalConfig(log_level="VERBOSE")

    def test_extra_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig(seed=42)  # type: ignore[call-arg]


class TestBuildConfig:
    def test_defaults(self) -> None:
        config = BuildConfig()
        assert config.project_root == ".."
        assert config.releases_dir == "."
        assert config.output_root == "builds"
        assert config.builder_name == "secluso-builds"
        assert config.smoke_check is False

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            BuildConfig(smoke_check_timeout_seconds=0)

    def test_wrong_type_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BuildConfig(diagnostics="sometimes")  # type: ignore[arg-type]


class TestReproConfig:
    def test_accepts_global_alias(self) -> None:
        config = ReproConfig.model_validate({"global": {"project_name": "aliased"}})
        assert config.global_config.project_name == "aliased"

    def test_accepts_field_name(self) -> None:
        config = ReproConfig.model_validate({"global_config": {"project_name": "named"}})
        assert config.global_config.project_name == "named"

    def test_unknown_section_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ReproConfig.model_validate({"model": {}})

    def test_is_frozen(self) -> None:
        config = ReproConfig()
        with pytest.raises(ValidationError):
            config.build = BuildConfig()  # type: ignore[misc]
