"""Application entrypoint for bitstats."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .auth import TokenBroker
from .bitbucket_client import BitbucketClient
from .cache import EntityKind, RecordCache, validate_slug
from .cli import parse_args
from .config import Config, load_config
from .credentials import CredentialStore, is_valid_oauth_value, is_valid_url
from .display import format_projects, format_repositories
from .errors import BitstatsError, ConfigurationError
from .export import KIND_NAMES, Exporter, write_csv
from .models import Credentials
from .repositories import RepositoryIndex, is_global
from .sync import SyncEngine

logger = logging.getLogger(__name__)

Prompt = Callable[[str], str]


@dataclass
class Services:
    """Components wired together for one CLI invocation."""

    config: Config
    store: CredentialStore
    broker: TokenBroker
    client: BitbucketClient
    cache: RecordCache
    index: RepositoryIndex
    engine: SyncEngine
    exporter: Exporter


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


def build_services(config: Config) -> Services:
    store = CredentialStore(config)
    broker = TokenBroker(config, store)

    credentials = store.get_credentials()
    repositories_url = config.repositories_url or (credentials.repositories_url if credentials else None)

    client = BitbucketClient(config, broker, repositories_url=repositories_url)
    cache = RecordCache(config)
    index = RepositoryIndex(config, client)
    return Services(
        config=config,
        store=store,
        broker=broker,
        client=client,
        cache=cache,
        index=index,
        engine=SyncEngine(cache, client, index),
        exporter=Exporter(cache, config.ticket_pattern),
    )


def is_clean_yes(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


def _confirm_with(prompt: Prompt) -> Callable[[str], bool]:
    return lambda question: is_clean_yes(prompt(question))


def run_setup(args: argparse.Namespace, services: Services, prompt: Prompt) -> int:
    if args.action == "creds":
        if args.set_credentials:
            key = prompt("Enter your OAuth consumer key: ").strip()
            if not is_valid_oauth_value(key):
                raise ConfigurationError("Consumer key does not match known format")
            secret = prompt("Enter your OAuth secret: ").strip()
            if not is_valid_oauth_value(secret):
                raise ConfigurationError("Secret does not match known format")
            url = prompt("Enter your home URL of your repositories: ").strip()
            if not is_valid_url(url):
                raise ConfigurationError("Repositories home URL is not a valid URL")
            services.store.set_credentials(Credentials(key=key, secret=secret, repositories_url=url))
            logger.info("Credentials saved.")
            return 0

        credentials = services.store.get_credentials()
        if credentials is None:
            logger.info("No credentials found.")
        else:
            print(f"KEY={credentials.key} SECRET={credentials.secret} URL={credentials.repositories_url or ''}")
        return 0

    if args.action == "token":
        services.broker.acquire_token()
        logger.info("Token saved to '%s'.", services.store.token_file)
        return 0

    if args.action == "clear":
        services.store.clear()
        logger.info("Cleared credentials and tokens.")
        return 0

    raise ConfigurationError(f"Unknown setup action: {args.action}")


def run_repo(args: argparse.Namespace, services: Services) -> int:
    if args.action == "index":
        if args.clear:
            services.index.clear()
        elif args.refresh:
            services.index.clear()
            services.index.refresh()
        else:
            index = services.index.get_or_fetch()
            logger.info("Repository index holds %d repositories.", len(index["repos"]))
        return 0

    if args.action == "list":
        print(format_repositories(services.index.for_projects(args.projects), grepable=args.grepable))
        return 0

    if args.action == "projects":
        print(format_projects(services.index.for_projects(args.projects), grepable=args.grepable))
        return 0

    if args.action == "commits":
        services.engine.sync_repo_commits(args.repo_slug)
        return 0

    if args.action == "export":
        slug = validate_slug(args.repo_slug)
        file_name = args.file_name or f"{slug}-commits.csv"
        rows = services.exporter.collect_rows(EntityKind.REPO_COMMIT, [(slug, _project_key(services, slug))])
        if not rows:
            logger.info("No commit data to export for repo slug '%s'.", slug)
            return 0
        write_csv(rows, file_name)
        print(f"Repository commits exported to '{file_name}'.")
        return 0

    raise ConfigurationError(f"Unknown repo action: {args.action}")


def _project_key(services: Services, repo_slug: str) -> Optional[str]:
    if services.index.load() is None:
        return None
    for repository in services.index.repositories():
        if repository.slug == repo_slug:
            return repository.project_key
    return None


def _export_targets(args: argparse.Namespace, services: Services) -> Tuple[List[Tuple[str, Optional[str]]], str]:
    if args.project:
        repositories = services.index.for_projects(args.targets)
        label = "global" if is_global(args.targets) else "-".join(args.targets)
        return [(repository.slug, repository.project_key) for repository in repositories], label

    targets = [validate_slug(target) for target in args.targets]
    return [(slug, _project_key(services, slug)) for slug in targets], "-".join(targets)


def run_pr(args: argparse.Namespace, services: Services, prompt: Prompt) -> int:
    engine = services.engine

    if args.action == "index":
        engine.sync_pull_requests(args.repo_slug, state=args.state)
        if args.comments:
            engine.sync_comments(args.repo_slug)
        if args.commits:
            engine.sync_commits(args.repo_slug)
        if args.approvals:
            engine.sync_approvals(args.repo_slug)
        return 0

    if args.action == "comments":
        engine.sync_comments(args.repo_slug)
        return 0

    if args.action == "commits":
        engine.sync_commits(args.repo_slug)
        return 0

    if args.action == "approvals":
        engine.sync_approvals(args.repo_slug)
        return 0

    if args.action == "project":
        engine.sync_project(
            args.projects,
            comments=args.comments,
            commits=args.commits,
            approvals=args.approvals,
        )
        return 0

    if args.action == "export":
        repositories, label = _export_targets(args, services)
        file_name = args.file_name or f"{label}-{args.kind}.csv"
        rows = services.exporter.collect_rows(KIND_NAMES[args.kind], repositories)
        if not rows:
            logger.info("No %s to export for '%s'.", args.kind, label)
            return 0
        write_csv(rows, file_name)
        print(f"PR {args.kind} exported to '{file_name}'.")
        return 0

    if args.action == "rmindex":
        engine.clear_cache(args.target, force=args.force, project=args.project, confirm=_confirm_with(prompt))
        return 0

    raise ConfigurationError(f"Unknown pr action: {args.action}")


def orchestrate(argv: Optional[Sequence[str]] = None, prompt: Prompt = input) -> int:
    """Run bitstats end to end and map failures to process exit codes.

    Returns:
        ``0`` on success and ``1`` on any fatal error.
    """
    try:
        args = parse_args(argv)
        configure_logging(args.verbose)

        config = load_config(home=args.home, timeout_seconds=args.timeout)
        services = build_services(config)

        if args.command == "setup":
            return run_setup(args, services, prompt)
        if args.command == "repo":
            return run_repo(args, services)
        if args.command == "pr":
            return run_pr(args, services, prompt)

        raise ConfigurationError(f"Unknown command: {args.command}")
    except BitstatsError as exc:
        logger.error("%s", exc)
        return 1
    except Exception:
        logger.exception("Unexpected error while running bitstats.")
        return 1


def main() -> None:
    """Console-script entrypoint that exits with the orchestration status code."""
    sys.exit(orchestrate())


if __name__ == "__main__":
    main()
