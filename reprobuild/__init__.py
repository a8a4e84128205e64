# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
reprobuild: reproducible release builds and verification.

Turns a (target, profile) request into release artifacts built with pinned
toolchains, rewrites Linux installer formats into canonical byte layouts,
records everything in a per-run manifest, and compares two runs to decide
whether they are bit-for-bit reproducible.
"""

__version__ = "0.1.0"
