# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Release integrity subsystem.

Manifests, run comparison, single-run verification, pre-flight environment
checks and host reproducibility inputs. Everything under comparison and
verification only reads run directories.
"""
