# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the reprobuild CLI.

Each function here corresponds to one CLI subcommand and returns an exit
code from reprobuild.cli.exit_codes. Exceptions are mapped to exit codes
here and nowhere else:

    PlanError                          -> USER_ERROR
    ConfigError, MissingDigestError    -> CONFIG_ERROR
    any other BuildError               -> RUNTIME_ERROR
    comparison or verification failure -> VALIDATION_ERROR

No print() calls. Everything goes through the structured logger.
"""

import argparse
import logging
from pathlib import Path

from reprobuild.build.errors import BuildError, MissingDigestError, PlanError
from reprobuild.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR, VALIDATION_ERROR
from reprobuild.config.exceptions import ConfigError
from reprobuild.config.loader import default_config, load_config
from reprobuild.config.schema import ReproConfig
from reprobuild.logging.logger import get_logger
from reprobuild.release.manifests.manifest import ManifestError
from reprobuild.runtime.bootstrap import bootstrap


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, ReproConfig | None, logging.Logger]:
    """
    The shared setup that every command needs: load config, run bootstrap.

    Returns a tuple of (exit_code, config, logger). If exit_code is not SUCCESS,
    the caller should return it immediately. Without --config the defaults
    are used.
    """
    logger = get_logger(f"reprobuild.cli.{command_name}", log_level=args.log_level or "INFO")

    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger
    else:
        config = default_config()
        logger.debug("No config provided, running with defaults", extra={"command": command_name})

    bootstrap(config.global_config, log_level_override=args.log_level)
    return SUCCESS, config, logger


def handle_build(args: argparse.Namespace) -> int:
    """Resolve a plan and build it, once or twice."""
    exit_code, config, logger = _load_and_bootstrap(args, "build")
    if exit_code != SUCCESS:
        return exit_code

    from reprobuild.build.orchestrator import require_plan_preflight, resolve_build_paths, run_build
    from reprobuild.plan.resolver import resolve_build_plan
    from reprobuild.release.environment.validator import require_environment, validate_environment
    from reprobuild.toolchain.digests import DigestRegistry
    from reprobuild.utils.process import CommandRunner

    try:
        plan = resolve_build_plan(args.target, args.profile)
        output_root = Path(args.output_root) if args.output_root is not None else None
        paths = resolve_build_paths(config.build, output_root=output_root)

        if args.dry_run:
            registry = DigestRegistry.from_lock_file(paths.lock_file)
            require_plan_preflight(plan, registry, config.build.allow_container_fallback)
            logger.info(
                "Dry run, plan resolved and digests checked",
                extra={**plan.as_log_fields(), "lock_file": str(paths.lock_file)},
            )
            return SUCCESS

        runner = CommandRunner()
        checks = validate_environment(
            plan,
            runner,
            check_path=paths.output_root if paths.output_root.is_dir() else None,
            canonicalize=config.build.canonicalize_linux_bundles,
        )
        require_environment(checks)

        outcome = run_build(
            plan,
            config.build,
            runner,
            paths,
            test_reproduce=args.test_reproduce,
            diagnostics=True if args.diagnostics else None,
        )

        if outcome.comparison is not None and not outcome.comparison.passed:
            logger.error(
                "Builds are not reproducible",
                extra={
                    "build_root": str(outcome.build_root),
                    "failed": len(outcome.comparison.failures),
                    "missing": len(outcome.comparison.missing_keys),
                },
            )
            return VALIDATION_ERROR

        logger.info(
            "Build complete",
            extra={
                "build_root": str(outcome.build_root),
                "manifests": [str(path) for path in outcome.manifests],
            },
        )
        return SUCCESS

    except PlanError as err:
        logger.error("Invalid build plan", extra={"error": str(err)})
        return USER_ERROR
    except MissingDigestError as err:
        logger.error("Toolchain digests missing", extra={"error": str(err), "triples": err.triples})
        return CONFIG_ERROR
    except BuildError as err:
        logger.error("Build failed", extra={"error": str(err)})
        return RUNTIME_ERROR
    except Exception as err:
        logger.error("Build failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_compare(args: argparse.Namespace) -> int:
    """Compare two run directories. Needs no build tooling."""
    exit_code, _config, logger = _load_and_bootstrap(args, "compare")
    if exit_code != SUCCESS:
        return exit_code

    from reprobuild.release.comparison.comparator import compare_runs, write_report

    try:
        report = compare_runs(Path(args.run_a), Path(args.run_b))
        if args.report is not None:
            path = write_report(report, Path(args.report))
            logger.info("Comparison report written", extra={"path": str(path)})

        if not report.passed:
            logger.error(
                "Comparison FAILED",
                extra={
                    "structural_failure": report.structural_failure,
                    "small_run_empty": report.small_run_empty,
                    "failed": len(report.failures),
                    "missing": len(report.missing_keys),
                },
            )
            return VALIDATION_ERROR

        logger.info(
            "Comparison passed",
            extra={"compared": len(report.verdicts), "extra": len(report.extra_keys)},
        )
        return SUCCESS

    except FileNotFoundError as err:
        logger.error("Compare failed, missing manifest", extra={"error": str(err)})
        return USER_ERROR
    except ManifestError as err:
        logger.error("Compare failed, invalid manifest", extra={"error": str(err)})
        return VALIDATION_ERROR
    except Exception as err:
        logger.error("Compare failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_verify(args: argparse.Namespace) -> int:
    """Check one run directory's manifest against its files."""
    exit_code, _config, logger = _load_and_bootstrap(args, "verify")
    if exit_code != SUCCESS:
        return exit_code

    from reprobuild.release.verification.verifier import verify_run

    try:
        report = verify_run(Path(args.run))
        if not report.is_valid:
            return VALIDATION_ERROR
        logger.info("Verification complete", extra={"checks": report.checks_passed})
        return SUCCESS

    except Exception as err:
        logger.error("Verification failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_plan(args: argparse.Namespace) -> int:
    """Resolve a plan and log what it would build."""
    exit_code, config, logger = _load_and_bootstrap(args, "plan")
    if exit_code != SUCCESS:
        return exit_code

    from reprobuild.plan.policy import package_policy
    from reprobuild.plan.resolver import resolve_build_plan

    try:
        plan = resolve_build_plan(args.target, args.profile)
        for triple in plan.triples:
            for package in plan.packages:
                policy = package_policy(package)
                logger.info(
                    "Planned unit",
                    extra={
                        "triple": triple,
                        "package": package,
                        "source": policy.source,
                        "bin": policy.binary_name(config.build.binary_prefix),
                        "skipped": not policy.applies_to(triple),
                    },
                )
        return SUCCESS

    except PlanError as err:
        logger.error("Invalid build plan", extra={"error": str(err)})
        return USER_ERROR
    except Exception as err:
        logger.error("Plan failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_info(args: argparse.Namespace) -> int:
    """Display environment and configuration information."""
    logger = get_logger("reprobuild.cli.info", log_level=args.log_level or "INFO")

    from reprobuild import __version__
    from reprobuild.plan.resolver import available_targets
    from reprobuild.runtime.environment import get_system_info

    system_info = get_system_info()

    logger.info(
        "System information",
        extra={
            "reprobuild_version": __version__,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "hostname": system_info.hostname,
            "host_triple": system_info.host_triple,
            "targets": {name: list(profiles) for name, profiles in available_targets().items()},
            "config": args.config,
        },
    )
    return SUCCESS
