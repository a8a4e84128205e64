# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Pinned toolchain identities, read from the digest lock file.
"""
