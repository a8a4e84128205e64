# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Toolchain digest registry.

Each target triple is built with a toolchain container pinned by content
digest. The pins live in a small env-style lock file kept under version
control next to the Dockerfiles:

    # Rust toolchain images
    RUST_DIGEST__X86_64_UNKNOWN_LINUX_GNU=sha256:3f1e...
    RUST_DIGEST__AARCH64_UNKNOWN_LINUX_GNU=sha256:9ab0...
    MACOS_HOST_RUSTC_VERSION=1.88.0

Only digest-form values are accepted as toolchain identities. A floating tag
such as `rust:latest` could resolve to different bytes tomorrow, which would
make the identity recorded in a manifest meaningless, so it is rejected when
the file is loaded.

The same file carries `MACOS_HOST_*_VERSION` pins for host tools used when
bundling natively on macOS.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from reprobuild.build.errors import MissingDigestError
from reprobuild.logging.logger import get_logger

_logger: logging.Logger = get_logger(__name__)

DIGEST_KEY_PREFIX = "RUST_DIGEST__"
HOST_PIN_PREFIX = "MACOS_HOST_"
HOST_PIN_SUFFIX = "_VERSION"

_DIGEST_PATTERN = re.compile(r"^(?:[A-Za-z0-9._/:-]+@)?sha256:[0-9a-f]{64}$")
_LINE_PATTERN = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def digest_key(triple: str) -> str:
    """
    Normalize a triple into its lock-file key.

    >>> digest_key("aarch64-unknown-linux-gnu")
    'RUST_DIGEST__AARCH64_UNKNOWN_LINUX_GNU'
    """
    return DIGEST_KEY_PREFIX + triple.upper().replace("-", "_")


def is_digest_identity(value: str) -> bool:
    """True for `sha256:<hex>` or `image@sha256:<hex>` references."""
    return bool(_DIGEST_PATTERN.match(value))


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_lock_text(text: str) -> dict[str, str]:
    """
    Parse KEY=VALUE lines. Blank lines and `#` comments are ignored, an
    `export ` prefix is allowed, and values may be quoted.

    Raises:
        ValueError: On a line that isn't a comment or an assignment, or a
            key assigned twice.
    """
    entries: dict[str, str] = {}
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = _LINE_PATTERN.match(line)
        if match is None:
            raise ValueError(f"line {lineno}: expected KEY=VALUE, got '{line}'")
        key, value = match.group(1), _strip_quotes(match.group(2))
        if key in entries:
            raise ValueError(f"line {lineno}: duplicate key '{key}'")
        entries[key] = value
    return entries


@dataclass(frozen=True)
class DigestRegistry:
    """
    Immutable triple -> toolchain identity mapping plus host tool pins.

    Build it with `from_lock_file` or `from_entries`.
    """

    digests: dict[str, str] = field(default_factory=dict)
    pins: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: dict[str, str]) -> "DigestRegistry":
        """
        Split raw lock entries into digests and host pins, validating digests.

        Raises:
            MissingDigestError: If any RUST_DIGEST__ value is not digest-form.
        """
        digests: dict[str, str] = {}
        pins: dict[str, str] = {}
        invalid: list[str] = []
        for key, value in entries.items():
            if key.startswith(DIGEST_KEY_PREFIX):
                if not is_digest_identity(value):
                    invalid.append(f"{key}={value or '<empty>'}")
                    continue
                digests[key] = value
            elif key.startswith(HOST_PIN_PREFIX) and key.endswith(HOST_PIN_SUFFIX):
                tool = key[len(HOST_PIN_PREFIX) : -len(HOST_PIN_SUFFIX)].lower()
                if value:
                    pins[tool] = value

        if invalid:
            raise MissingDigestError(
                invalid, reason="Toolchain identities must be sha256 digests, not tags"
            )

        return cls(digests=digests, pins=pins)

    @classmethod
    def from_lock_file(cls, path: Path) -> "DigestRegistry":
        """
        Load the registry from a lock file.

        A missing file is not an error here. It yields an empty registry,
        and `require_all` then reports every triple as missing.

        Raises:
            MissingDigestError: If the file contains a non-digest identity.
            ValueError: If the file is malformed.
        """
        if not path.is_file():
            _logger.warning("Digest lock file not found", extra={"path": str(path)})
            return cls()

        try:
            entries = parse_lock_text(path.read_text(encoding="utf-8"))
        except ValueError as err:
            raise ValueError(f"Malformed digest lock file {path}: {err}") from err

        registry = cls.from_entries(entries)
        _logger.debug(
            "Digest registry loaded",
            extra={"path": str(path), "digests": len(registry.digests), "pins": len(registry.pins)},
        )
        return registry

    def lookup(self, triple: str) -> str | None:
        """Identity for a triple, or None if the triple isn't pinned."""
        return self.digests.get(digest_key(triple))

    def require(self, triple: str) -> str:
        """
        Identity for a triple.

        Raises:
            MissingDigestError: If the triple isn't pinned.
        """
        identity = self.lookup(triple)
        if identity is None:
            raise MissingDigestError([triple])
        return identity

    def require_all(self, triples: Iterable[str]) -> dict[str, str]:
        """
        Check every triple up front and return their identities.

        All missing triples are reported together, so a plan never starts
        executing with only some of its toolchains pinned.

        Raises:
            MissingDigestError: Listing every triple without an identity.
        """
        resolved: dict[str, str] = {}
        missing: list[str] = []
        for triple in triples:
            identity = self.lookup(triple)
            if identity is None:
                missing.append(triple)
            else:
                resolved[triple] = identity

        if missing:
            _logger.error("Missing toolchain digests", extra={"triples": missing})
            raise MissingDigestError(missing)

        return resolved

    def host_pins(self) -> dict[str, str]:
        """Pinned host tool versions keyed by lowercased tool name (e.g. "rustc")."""
        return dict(self.pins)
