# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Build planning.

Subsystems:
  - platform: closed triple -> platform family classification
  - policy: per-package source, features, rename and skip rules
  - resolver: (target, profile) -> BuildPlan
"""
