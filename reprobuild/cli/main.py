# Author : reprobuild maintainers
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for reprobuild.

This is the single root command. Every operation is a subcommand of
`reprobuild`. The global options (--config, --log-level, --dry-run) are
inherited by every subcommand through argparse's parent parser mechanism.

Usage:
    reprobuild <subcommand> [options]
    reprobuild build --target server --profile server --test-reproduce
    reprobuild compare builds/1718000000 downloaded-release/
    reprobuild verify downloaded-release/
    reprobuild info
"""

import argparse
import sys

from reprobuild.cli.commands import (
    handle_build,
    handle_compare,
    handle_info,
    handle_plan,
    handle_verify,
)
from reprobuild.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    A separate parent parser (add_help=False) keeps help text from colliding
    between the parent and the subcommand parsers.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (overrides the config).",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Resolve and check without building.",
    )
    return parent


def _add_plan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--target", required=True, help="Product line, e.g. server, deploy.")
    parser.add_argument("--profile", required=True, help="Package selection within the target.")


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    """
    Register all subcommands with their handler functions.

    Each subcommand gets the global options from the parent parser and sets
    its handler via set_defaults(func=...).
    """
    build = subparsers.add_parser("build", parents=[parent], help="Build a target/profile.")
    _add_plan_arguments(build)
    build.add_argument(
        "--test-reproduce",
        action="store_true",
        default=False,
        dest="test_reproduce",
        help="Build twice and compare the two runs.",
    )
    build.add_argument(
        "--output-root",
        type=str,
        default=None,
        dest="output_root",
        help="Directory for run directories (overrides the config).",
    )
    build.add_argument(
        "--diagnostics",
        action="store_true",
        default=False,
        help="Write tool logs and tree statistics under <run>/diagnostics/.",
    )
    build.set_defaults(func=handle_build)

    compare = subparsers.add_parser(
        "compare", parents=[parent], help="Compare two run directories."
    )
    compare.add_argument("run_a", help="First run directory.")
    compare.add_argument("run_b", help="Second run directory.")
    compare.add_argument(
        "--report", type=str, default=None, help="Write the comparison report as JSON."
    )
    compare.set_defaults(func=handle_compare)

    verify = subparsers.add_parser(
        "verify", parents=[parent], help="Check a run directory against its manifest."
    )
    verify.add_argument("run", help="Run directory.")
    verify.set_defaults(func=handle_verify)

    plan = subparsers.add_parser("plan", parents=[parent], help="Show what a build would do.")
    _add_plan_arguments(plan)
    plan.set_defaults(func=handle_plan)

    info = subparsers.add_parser(
        "info", parents=[parent], help="Display environment and target info."
    )
    info.set_defaults(func=handle_info)


def main() -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

    If no subcommand is given, help is shown and the exit code is USER_ERROR.
    argparse usage errors exit with USER_ERROR instead of argparse's 2, which
    is CONFIG_ERROR here.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="reprobuild",
        description="reprobuild: reproducible release builds and manifest comparison.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    try:
        args = root_parser.parse_args()
    except SystemExit as exc:
        if exc.code not in (0, None):
            sys.exit(USER_ERROR)
        raise

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
