# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
CLI exit codes.

These are the only exit codes the CLI uses. Scripts wrapping reprobuild in CI
can branch on them: a comparison mismatch (VALIDATION_ERROR) is a different
outcome from a build that never finished (RUNTIME_ERROR).
"""

SUCCESS: int = 0
USER_ERROR: int = 1
CONFIG_ERROR: int = 2
RUNTIME_ERROR: int = 3
VALIDATION_ERROR: int = 4
