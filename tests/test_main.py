"""Tests for command dispatch and exit codes in the main module."""

import csv
import json
import sys
from pathlib import Path
from unittest.mock import Mock, patch

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import make_pr

from bitstats.cache import EntityKind, RecordCache
from bitstats.errors import AuthExhaustedError, ConfigurationError
from bitstats.main import is_clean_yes, orchestrate
from bitstats.models import Credentials


def _prompt(*answers):
    replies = iter(answers)
    return lambda question: next(replies)


def test_is_clean_yes():
    assert is_clean_yes(" Y ")
    assert is_clean_yes("yes")
    assert not is_clean_yes("")
    assert not is_clean_yes("nope")


def test_pr_index_runs_requested_syncs_in_order(config):
    """Verify 'pr index' syncs PRs first and then each requested secondary kind."""
    services = Mock()

    with patch("bitstats.main.build_services", return_value=services):
        exit_code = orchestrate(["--home", str(config.home), "pr", "index", "repo", "--commits", "--comments"])

    assert exit_code == 0
    engine = services.engine
    engine.sync_pull_requests.assert_called_once_with("repo", state="MERGED")
    engine.sync_comments.assert_called_once_with("repo")
    engine.sync_commits.assert_called_once_with("repo")
    engine.sync_approvals.assert_not_called()
    assert [call[0] for call in engine.method_calls] == ["sync_pull_requests", "sync_comments", "sync_commits"]


def test_pr_project_passes_flags(config):
    services = Mock()

    with patch("bitstats.main.build_services", return_value=services):
        exit_code = orchestrate(["--home", str(config.home), "pr", "project", "CORE", "--approvals"])

    assert exit_code == 0
    services.engine.sync_project.assert_called_once_with(["CORE"], comments=False, commits=False, approvals=True)


def test_bitstats_errors_exit_with_status_1(config):
    """Verify expected failures are reported and mapped to exit code 1."""
    services = Mock()
    services.engine.sync_pull_requests.side_effect = AuthExhaustedError("still unauthorized")

    with patch("bitstats.main.build_services", return_value=services):
        assert orchestrate(["--home", str(config.home), "pr", "index", "repo"]) == 1


def test_unexpected_errors_exit_with_status_1(config):
    """Verify unexpected exceptions are logged and mapped to exit code 1."""
    services = Mock()
    services.engine.sync_comments.side_effect = RuntimeError("boom")

    with patch("bitstats.main.build_services", return_value=services):
        assert orchestrate(["--home", str(config.home), "pr", "comments", "repo"]) == 1


def test_rmindex_confirmation_uses_prompt(config):
    """Verify cache clearing asks through the injected prompt."""
    services = Mock()

    with patch("bitstats.main.build_services", return_value=services):
        exit_code = orchestrate(["--home", str(config.home), "pr", "rmindex", "repo"], prompt=_prompt(" y "))

    assert exit_code == 0
    call = services.engine.clear_cache.call_args
    assert call.args == ("repo",)
    assert call.kwargs["force"] is False
    assert call.kwargs["project"] is False
    assert call.kwargs["confirm"]("Delete? ") is True


def test_setup_creds_set_saves_prompted_values(config):
    """Verify 'setup creds --set' validates and stores the prompted credentials."""
    services = Mock()
    prompt = _prompt("key123", "secret456", "https://api.example.test/2.0/repositories/team")

    with patch("bitstats.main.build_services", return_value=services):
        exit_code = orchestrate(["--home", str(config.home), "setup", "creds", "--set"], prompt=prompt)

    assert exit_code == 0
    services.store.set_credentials.assert_called_once_with(
        Credentials(key="key123", secret="secret456", repositories_url="https://api.example.test/2.0/repositories/team")
    )


def test_setup_creds_set_rejects_invalid_key(config):
    """Verify malformed consumer keys are rejected without saving anything."""
    services = Mock()

    with patch("bitstats.main.build_services", return_value=services):
        exit_code = orchestrate(["--home", str(config.home), "setup", "creds", "--set"], prompt=_prompt("bad key!"))

    assert exit_code == 1
    services.store.set_credentials.assert_not_called()


def test_setup_token_acquires_token(config):
    services = Mock()

    with patch("bitstats.main.build_services", return_value=services):
        assert orchestrate(["--home", str(config.home), "setup", "token"]) == 0

    services.broker.acquire_token.assert_called_once_with()


def test_repo_list_prints_grepable_index(config, capsys):
    """Verify 'repo list' reads the local index and prints matching repositories."""
    config.repository_index_file.parent.mkdir(parents=True)
    config.repository_index_file.write_text(
        json.dumps(
            {
                "repos": [
                    {"slug": "web", "project": {"key": "WEB", "name": "Website"}, "description": "Site"},
                    {"slug": "api", "project": {"key": "CORE", "name": "Core"}, "description": None},
                ]
            }
        ),
        encoding="utf-8",
    )

    exit_code = orchestrate(["--home", str(config.home), "repo", "list", "core", "--grepable"])

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines() == ["api|CORE|"]


def test_repo_list_without_index_fails(config):
    assert orchestrate(["--home", str(config.home), "repo", "list"]) == 1


def test_pr_export_writes_csv_from_cache(config, capsys):
    """Verify 'pr export' reads cached PRs and writes them to the requested file."""
    cache = RecordCache(config)
    cache.write(EntityKind.PULL_REQUEST, "repo", 1, make_pr(1))
    cache.write(EntityKind.PULL_REQUEST, "repo", 2, make_pr(2))
    out = config.home / "prs.csv"

    exit_code = orchestrate(["--home", str(config.home), "pr", "export", "repo", "--file", str(out)])

    assert exit_code == 0
    with open(out, encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["id"] for row in rows] == ["1", "2"]
    assert rows[0]["tickets"] == "PROJ-1"
    assert str(out) in capsys.readouterr().out


def test_pr_export_with_empty_cache_writes_nothing(config):
    """Verify exporting an uncached repository succeeds without creating a file."""
    out = config.home / "empty.csv"

    assert orchestrate(["--home", str(config.home), "pr", "export", "repo", "--file", str(out)]) == 0
    assert not out.exists()


def test_configuration_errors_from_services_exit_with_status_1(config):
    with patch("bitstats.main.build_services", side_effect=ConfigurationError("bad")):
        assert orchestrate(["--home", str(config.home), "setup", "clear"]) == 1
