# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Exception taxonomy for build runs.

Every error aborts the run that raised it. Messages always name the triple
and, where there is one, the package or canonicalization step, so an operator
can find the failing unit from the log line alone.

Comparison mismatches are not exceptions. The comparator returns them as
verdicts in a report.
"""


class BuildError(Exception):
    """Base for everything that can abort a build run."""


class PlanError(BuildError):
    """Unknown (target, profile) pair, or a plan that cannot be built."""


class UnknownTripleError(PlanError):
    """A triple outside the closed platform table."""

    def __init__(self, triple: str) -> None:
        self.triple = triple
        super().__init__(f"Unknown target triple '{triple}'")


class MissingDigestError(BuildError):
    """No usable toolchain identity is registered for one or more triples."""

    def __init__(self, triples: list[str], reason: str = "No digest set") -> None:
        self.triples = list(triples)
        super().__init__(f"{reason} for: {', '.join(self.triples)}")


class ToolchainInvocationError(BuildError):
    """An external tool exited non-zero."""

    def __init__(self, tool: str, exit_code: int, context: str, output: str = "") -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.context = context
        self.output = output
        super().__init__(f"{tool} failed with exit code {exit_code} ({context})")


class MissingArtifactError(BuildError):
    """A toolchain invocation succeeded but the expected output is absent."""

    def __init__(self, triple: str, package: str, expected: str) -> None:
        self.triple = triple
        self.package = package
        self.expected = expected
        super().__init__(f"Missing artifact for {package} on {triple}: {expected}")


class SourceError(BuildError):
    """A source unit lacks its manifest or lock file, or has no readable version."""


class HostCapabilityError(BuildError):
    """The host cannot produce a required bundle and no fallback is allowed."""

    def __init__(self, triple: str, reason: str) -> None:
        self.triple = triple
        super().__init__(f"Host cannot package target {triple}: {reason}")


class HostToolchainMismatchError(BuildError):
    """A host tool's version differs from the pinned version."""

    def __init__(self, tool: str, expected: str, actual: str) -> None:
        self.tool = tool
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pinned {tool} version mismatch: expected '{expected}', got '{actual}'"
        )


class CanonicalizationError(BuildError):
    """A canonicalization step failed for a triple."""

    def __init__(self, triple: str, step: str, reason: str) -> None:
        self.triple = triple
        self.step = step
        self.reason = reason
        super().__init__(f"Canonicalization step '{step}' failed for {triple}: {reason}")


class AggregateCanonicalizationError(BuildError):
    """One or more triples failed canonicalization. Lists every failure."""

    def __init__(self, failures: list[CanonicalizationError]) -> None:
        self.failures = list(failures)
        triples = sorted({failure.triple for failure in self.failures})
        details = "; ".join(str(failure) for failure in self.failures)
        super().__init__(
            f"Canonicalization failed for {len(triples)} triple(s) "
            f"[{', '.join(triples)}]: {details}"
        )
