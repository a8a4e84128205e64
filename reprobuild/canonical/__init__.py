# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Deterministic canonicalization of Linux installers.

Bundlers embed timestamps, file order and ownership from the build host.
This package rewrites deb, rpm and AppImage outputs so that identical
inputs give identical bytes. Nothing here knows about build plans. The
pipeline takes a triple and a bundle directory.
"""
