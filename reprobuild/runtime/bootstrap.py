# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for reprobuild.

The one-time setup that happens before any command does real work:
  1. Validate the interpreter
  2. Configure logging from the global config
  3. Log what host we're running on

Deterministic build settings (timestamps, locale, job counts) are not set
here. They are passed explicitly to each tool invocation so the parent
process environment never leaks into a build.
"""

from pathlib import Path

from reprobuild import __version__
from reprobuild.config.schema import GlobalConfig
from reprobuild.logging.logger import get_logger, set_package_log_level
from reprobuild.runtime.environment import check_minimum_python, get_system_info


def bootstrap(config: GlobalConfig, log_level_override: str | None = None) -> None:
    """
    Run the bootstrap sequence.

    Args:
        config: The validated global configuration.
        log_level_override: Level from the command line. Wins over the config.
    """
    check_minimum_python()

    log_level = log_level_override or config.log_level
    log_file = Path(config.log_file) if config.log_file is not None else None

    logger = get_logger("reprobuild.runtime", log_level=log_level, log_file=log_file)
    set_package_log_level(log_level)

    system_info = get_system_info()
    logger.info(
        "reprobuild bootstrap complete",
        extra={
            "version": __version__,
            "project_name": config.project_name,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "host_triple": system_info.host_triple,
        },
    )
