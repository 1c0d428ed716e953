"""Command-line argument parsing for bitstats."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

PR_STATES = ("MERGED", "OPEN", "DECLINED", "SUPERSEDED")
EXPORT_KINDS = ("prs", "comments", "commits", "approvals")


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Args:
        value: Raw command-line argument value.

    Returns:
        The validated positive integer.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _add_secondary_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--comments", action="store_true", help="Also fetch comments for new PRs.")
    parser.add_argument("--commits", action="store_true", help="Also fetch commits for new PRs.")
    parser.add_argument("--approvals", action="store_true", help="Also fetch approvals for new PRs.")


def _build_setup_parser(subparsers: argparse._SubParsersAction) -> None:
    setup = subparsers.add_parser("setup", help="Manage OAuth credentials and tokens.")
    actions = setup.add_subparsers(dest="action", required=True)

    creds = actions.add_parser("creds", help="Show or set the OAuth consumer credentials.")
    creds.add_argument("--set", dest="set_credentials", action="store_true", help="Prompt for new credentials.")

    actions.add_parser("token", help="Fetch a new OAuth access token.")
    actions.add_parser("clear", help="Delete stored credentials and tokens.")


def _build_repo_parser(subparsers: argparse._SubParsersAction) -> None:
    repo = subparsers.add_parser("repo", help="Repository index, listings, and repository commits.")
    actions = repo.add_subparsers(dest="action", required=True)

    index = actions.add_parser("index", help="Create, refresh, or remove the repository index.")
    mode = index.add_mutually_exclusive_group()
    mode.add_argument("--refresh", action="store_true", help="Re-fetch the repository index.")
    mode.add_argument("--clear", action="store_true", help="Remove the repository index.")

    for name, help_text in (
        ("list", "List repositories, optionally only for some projects."),
        ("projects", "List projects with sample repositories."),
    ):
        listing = actions.add_parser(name, help=help_text)
        listing.add_argument("projects", nargs="*", help="Project keys or names (case insensitive).")
        listing.add_argument("--grepable", action="store_true", help="Print '|'-separated lines.")

    commits = actions.add_parser("commits", help="Fetch all commits of a repository.")
    commits.add_argument("repo_slug", help="Repository slug.")

    export = actions.add_parser("export", help="Export repository commits to CSV.")
    export.add_argument("repo_slug", help="Repository slug.")
    export.add_argument("--file", dest="file_name", help="CSV file to write (default: <repo>-commits.csv).")


def _build_pr_parser(subparsers: argparse._SubParsersAction) -> None:
    pr = subparsers.add_parser("pr", help="Pull request cache and exports.")
    actions = pr.add_subparsers(dest="action", required=True)

    index = actions.add_parser("index", help="Fetch PRs newer than those already cached.")
    index.add_argument("repo_slug", help="Repository slug.")
    index.add_argument("--state", choices=PR_STATES, default="MERGED", help="PR state to fetch (default: MERGED).")
    _add_secondary_flags(index)

    for name in ("comments", "commits", "approvals"):
        secondary = actions.add_parser(name, help=f"Fetch {name} for cached PRs.")
        secondary.add_argument("repo_slug", help="Repository slug.")

    project = actions.add_parser("project", help="Sync every repository of one or more projects.")
    project.add_argument("projects", nargs="+", help="Project keys or names, or 'global' for all.")
    _add_secondary_flags(project)

    export = actions.add_parser("export", help="Export cached PR data to CSV.")
    export.add_argument("targets", nargs="+", help="Repository slug, or project keys with --project.")
    export.add_argument("--project", action="store_true", help="Treat targets as projects.")
    export.add_argument("--kind", choices=EXPORT_KINDS, default="prs", help="Data to export (default: prs).")
    export.add_argument("--file", dest="file_name", help="CSV file to write.")

    rmindex = actions.add_parser("rmindex", help="Remove cached PR data, including comments.")
    rmindex.add_argument("target", help="Repository slug, or project key with --project.")
    rmindex.add_argument("--project", action="store_true", help="Clear all repos for the owning project.")
    rmindex.add_argument("--force", action="store_true", help="Do not prompt to confirm deletion.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitstats",
        description=(
            "Mirror Bitbucket Cloud pull request, comment, commit, and approval "
            "data into a local cache and export it as CSV."
        ),
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--home", default=None, help="Directory holding bitstats files (default: $HOME).")
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        default=None,
        help="Per-request HTTP timeout in seconds (default: 30).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _build_setup_parser(subparsers)
    _build_repo_parser(subparsers)
    _build_pr_parser(subparsers)
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed CLI arguments with ``command`` and ``action`` selecting the
        operation to run.
    """
    return build_parser().parse_args(argv)
