# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Custom exceptions for the configuration system.

They live in their own module so the CLI can catch config failures without
importing pydantic or the schema.
"""


class ConfigError(Exception):
    """Base for all configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when a config file cannot be read from disk or parsed as YAML."""


class ConfigValidationError(ConfigError):
    """
    Raised when a config file parses fine but fails schema validation.
    This covers type mismatches, out-of-range values, unknown keys and any
    other structural problem.
    """
