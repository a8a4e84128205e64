# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Build execution.

Subsystems:
  - builder: scoped shared container builder
  - sources: source unit version and lock fingerprint
  - executor: binary plans
  - desktop: desktop bundle plans, native or containerized
  - orchestrator: one build invocation, one or two runs
  - smoke: optional --version check of host-native binaries
  - errors: the exception taxonomy
"""
