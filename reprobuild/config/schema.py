# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for reprobuild.

Every config section is a frozen pydantic model. A config object never
changes once it is built, so two build steps in the same run always see the
same settings.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Every field has a default, so running without a config file gives the same
behaviour as an empty `build:` section.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to every command.

    Controls project identity and observability. Loaded before anything else
    so the logger is ready by the time the first build step runs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        default="1.0.0",
        description="Schema version for compatibility tracking, e.g. '1.0.0'",
    )
    project_name: str = Field(
        default="reprobuild", description="Human-readable project identifier"
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {', '.join(sorted(_VALID_LOG_LEVELS))}, got '{value}'"
            )
        return upper


class BuildConfig(BaseModel):
    """
    Where the sources live, where runs go, and how the build tooling is driven.

    Relative paths are resolved against the current working directory by
    the CLI. `project_root` is the source tree holding the crates and the
    desktop app. `releases_dir` holds the Dockerfiles and the digest lock.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    project_root: str = Field(
        default="..", description="Source tree containing the crates and deploy/"
    )
    releases_dir: str = Field(
        default=".", description="Directory holding Dockerfiles and the digest lock file"
    )
    digests_lock_file: str = Field(
        default="digests.lock.env",
        description="Toolchain digest lock file, relative to releases_dir",
    )
    output_root: str = Field(
        default="builds", description="Directory under which run directories are created"
    )
    binary_prefix: str = Field(
        default="secluso", description="Prefix for produced binary names"
    )
    builder_name: str = Field(
        default="secluso-builds", description="Name of the shared container builder instance"
    )
    buildkit_image: str = Field(
        default="moby/buildkit:v0.23.0",
        description="Image used by the container builder driver",
    )
    source_date_epoch: Optional[int] = Field(
        default=None,
        ge=0,
        description="Fixed timestamp for canonicalization. Derived from git when unset.",
    )
    canonicalize_linux_bundles: bool = Field(
        default=True,
        description="Rewrite deb, rpm and AppImage bundles into canonical layouts",
    )
    allow_container_fallback: bool = Field(
        default=True,
        description="Bundle in the pinned container when the host cannot bundle natively",
    )
    diagnostics: bool = Field(
        default=False,
        description="Write tool logs and tree statistics under <run>/diagnostics/",
    )
    smoke_check: bool = Field(
        default=False,
        description="Run host-native produced binaries with --version after the build",
    )
    smoke_check_timeout_seconds: int = Field(
        default=10, ge=1, description="Timeout for each smoke check invocation"
    )


class ReproConfig(BaseModel):
    """
    Root configuration object.

    `global` is a Python keyword, so the field is named `global_config` and
    aliased. Both names are accepted when validating.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        populate_by_name=True,
    )

    global_config: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    build: BuildConfig = Field(default_factory=BuildConfig)
