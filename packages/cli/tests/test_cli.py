"""Tests for the CLI entry point."""

import json
import subprocess
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from reviewrelay_cli.cli import _build_dedup_store, _build_dispatcher, _build_store, main
from reviewrelay_core.webhooks.dispatcher import DispatchOutcome
from reviewrelay_store.memory import MemoryDedupStore, MemoryStore
from reviewrelay_store.models import SuggestionRecord
from reviewrelay_store.noop import NoOpStore
from reviewrelay_store.sqlite import SQLiteDedupStore, SQLiteStore


def _make_config(store="sqlite", tokens=None):
    return {
        "store": store,
        "store_path": ".reviewrelay.db",
        "dedup_store": "memory",
        "tokens": tokens if tokens is not None else {"github": "tok"},
        "platform_urls": {"github": None},
    }


def _patch_common(mocker, config=None, token="tok"):
    """Patch load_config, resolve_platform_token, and _build_store for most tests."""
    cfg = config or _make_config()
    mocker.patch("reviewrelay_core.config.load_config", return_value=cfg)
    mocker.patch("reviewrelay_cli.auth.resolve_platform_token", return_value=token)
    # SQLiteStore spec so isinstance(store, NoOpStore) is False.
    mock_store = MagicMock(spec=SQLiteStore)
    mock_store.list_suggestions.return_value = []
    mocker.patch("reviewrelay_cli.cli._build_store", return_value=mock_store)
    return cfg, mock_store


def _make_record(pr_number=1, file="src/auth.py", severity="high", delivery_status="sent", start=10, end=12):
    return SuggestionRecord(
        platform="github",
        repository="owner/repo",
        pr_number=pr_number,
        suggestion_id=f"s{pr_number}",
        file=file,
        start_line=start,
        end_line=end,
        severity=severity,
        label="security",
        content="Validate the token",
        priority_status="sent",
        delivery_status=delivery_status,
        saved_at="2026-03-01T10:00:00+00:00",
    )


class TestMainGroup:
    def test_missing_tokens_resolved(self, mocker):
        cfg, _ = _patch_common(mocker, config=_make_config(tokens={"github": None, "gitlab": "gl"}), token="gh-tok")
        mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=MagicMock(adapters={}))

        CliRunner().invoke(main, ["serve"])

        assert cfg["tokens"] == {"github": "gh-tok", "gitlab": "gl"}

    def test_stores_closed_on_exit(self, mocker):
        _, mock_store = _patch_common(mocker)

        CliRunner().invoke(main, ["history", "--repo", "owner/repo"])

        mock_store.close.assert_called_once()


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestResolvePlatformToken:
    def test_returns_env_var_when_set(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.setenv("GITLAB_TOKEN", "gl-token")
        assert resolve_platform_token("gitlab") == "gl-token"

    def test_falls_back_to_gh_cli_for_github(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="gh-token\n")
            result = resolve_platform_token("github")
        assert result == "gh-token"

    def test_no_gh_fallback_for_other_platforms(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.delenv("FORGEJO_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            assert resolve_platform_token("forgejo") is None
        mock_run.assert_not_called()

    def test_unknown_platform(self):
        from reviewrelay_cli.auth import resolve_platform_token

        assert resolve_platform_token("sourcehut") is None

    def test_returns_none_when_gh_not_installed(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError):
            result = resolve_platform_token("github")
        assert result is None

    def test_returns_none_when_gh_times_out(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=5)):
            result = resolve_platform_token("github")
        assert result is None

    def test_returns_none_when_gh_returns_empty(self, monkeypatch):
        from reviewrelay_cli.auth import resolve_platform_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="   ")
            result = resolve_platform_token("github")
        assert result is None


# ---------------------------------------------------------------------------
# store factories
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_returns_noop_by_default(self):
        assert isinstance(_build_store({}), NoOpStore)

    def test_returns_memory_store(self):
        assert isinstance(_build_store({"store": "memory"}), MemoryStore)

    def test_returns_sqlite_store(self, tmp_path):
        store = _build_store({"store": "sqlite", "store_path": str(tmp_path / "test.db")})
        assert isinstance(store, SQLiteStore)
        store.close()

    def test_unknown_store_falls_back_to_noop(self):
        assert isinstance(_build_store({"store": "postgres"}), NoOpStore)

    def test_dedup_store_defaults_to_memory(self):
        assert isinstance(_build_dedup_store({}), MemoryDedupStore)

    def test_sqlite_dedup_store(self, tmp_path):
        store = _build_dedup_store({"dedup_store": "sqlite", "store_path": str(tmp_path / "test.db")})
        assert isinstance(store, SQLiteDedupStore)
        store.close()


class TestBuildDispatcher:
    def test_noop_store_disables_state_lookup(self):
        config = {"tokens": {}, "platform_urls": {}}
        dispatcher = _build_dispatcher(config, NoOpStore(), MemoryDedupStore())

        assert dispatcher.pull_requests is None
        assert "azure_repos" not in dispatcher.adapters
        assert "github" in dispatcher.adapters

    def test_real_store_used_for_state(self):
        store = MemoryStore()
        dispatcher = _build_dispatcher({"tokens": {}, "platform_urls": {}}, store, MemoryDedupStore())

        assert dispatcher.pull_requests is store


# ---------------------------------------------------------------------------
# history command
# ---------------------------------------------------------------------------


class TestHistoryCommand:
    def test_shows_table_when_records_exist(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = [_make_record(delivery_status="replaced")]

        result = CliRunner().invoke(main, ["history", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "#1" in result.output
        assert "replaced" in result.output
        assert "10-12" in result.output

    def test_shows_empty_message_when_no_records(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["history", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "No suggestions found" in result.output

    def test_errors_when_noop_store(self, mocker):
        mocker.patch("reviewrelay_core.config.load_config", return_value={"store": "noop"})
        mocker.patch("reviewrelay_cli.auth.resolve_platform_token", return_value="tok")
        mocker.patch("reviewrelay_cli.cli._build_store", return_value=NoOpStore())

        result = CliRunner().invoke(main, ["history", "--repo", "owner/repo"])

        assert result.exit_code != 0
        assert "No store configured" in result.output

    def test_filters_by_pr_number(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = [_make_record(pr_number=5)]

        CliRunner().invoke(main, ["history", "--repo", "owner/repo", "--pr", "5"])

        mock_store.list_suggestions.assert_called_once_with("owner/repo", pr_number=5)

    def test_limit_applied(self, mocker):
        records = [_make_record(pr_number=i) for i in range(10)]
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = records

        result = CliRunner().invoke(main, ["history", "--repo", "owner/repo", "--limit", "3"])

        assert result.exit_code == 0
        assert result.output.count("#") == 3
        assert "#9" in result.output


# ---------------------------------------------------------------------------
# stats command
# ---------------------------------------------------------------------------


class TestStatsCommand:
    def test_shows_totals(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = [_make_record(pr_number=1), _make_record(pr_number=2)]

        result = CliRunner().invoke(main, ["stats", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "Pull requests: 2" in result.output
        assert "Suggestions:   2" in result.output

    def test_shows_delivery_breakdown(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = [
            _make_record(delivery_status="failed_lines_mismatch"),
            _make_record(delivery_status=None),
        ]

        result = CliRunner().invoke(main, ["stats", "--repo", "owner/repo"])

        assert "failed_lines_mismatch" in result.output
        assert "not_sent" in result.output

    def test_shows_most_flagged_files(self, mocker):
        _, mock_store = _patch_common(mocker)
        mock_store.list_suggestions.return_value = [_make_record(file="src/session.py")]

        result = CliRunner().invoke(main, ["stats", "--repo", "owner/repo"])

        assert "src/session.py" in result.output

    def test_empty_message_when_no_records(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["stats", "--repo", "owner/repo"])

        assert result.exit_code == 0
        assert "No suggestions found" in result.output

    def test_errors_when_noop_store(self, mocker):
        mocker.patch("reviewrelay_core.config.load_config", return_value={"store": "noop"})
        mocker.patch("reviewrelay_cli.auth.resolve_platform_token", return_value="tok")
        mocker.patch("reviewrelay_cli.cli._build_store", return_value=NoOpStore())

        result = CliRunner().invoke(main, ["stats", "--repo", "owner/repo"])

        assert result.exit_code != 0
        assert "No store configured" in result.output


# ---------------------------------------------------------------------------
# replay command
# ---------------------------------------------------------------------------


def _mock_dispatcher(outcome=DispatchOutcome.TRIGGERED):
    dispatcher = MagicMock()
    dispatcher.adapters = {"github": MagicMock(event_header="x-github-event")}
    dispatcher.dispatch.return_value = outcome
    return dispatcher


class TestReplayCommand:
    def test_dispatches_payload_with_event_header(self, mocker, tmp_path):
        _patch_common(mocker)
        dispatcher = _mock_dispatcher()
        build = mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=dispatcher)
        payload = tmp_path / "payload.json"
        payload.write_text(json.dumps({"action": "opened", "number": 3}))

        result = CliRunner().invoke(main, ["replay", "--platform", "github", "--event", "pull_request", str(payload)])

        assert result.exit_code == 0
        assert "Webhook triggered" in result.output
        webhook = dispatcher.dispatch.call_args.args[0]
        assert webhook.platform == "github"
        assert webhook.payload["number"] == 3
        assert webhook.headers["x-github-event"] == "pull_request"
        assert build.call_args.args[2] is not None

    def test_no_dedup_passes_no_dedup_store(self, mocker, tmp_path):
        _patch_common(mocker)
        build = mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=_mock_dispatcher())
        payload = tmp_path / "payload.json"
        payload.write_text("{}")

        CliRunner().invoke(main, ["replay", "--platform", "github", "--no-dedup", str(payload)])

        assert build.call_args.args[2] is None

    def test_invalid_json_rejected(self, mocker, tmp_path):
        _patch_common(mocker)
        dispatcher = _mock_dispatcher()
        mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=dispatcher)
        payload = tmp_path / "payload.json"
        payload.write_text("{not json")

        result = CliRunner().invoke(main, ["replay", "--platform", "github", str(payload)])

        assert result.exit_code != 0
        assert "Invalid JSON" in result.output
        dispatcher.dispatch.assert_not_called()

    def test_unconfigured_platform(self, mocker, tmp_path):
        _patch_common(mocker)
        mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=_mock_dispatcher())
        payload = tmp_path / "payload.json"
        payload.write_text("{}")

        result = CliRunner().invoke(main, ["replay", "--platform", "azure_repos", str(payload)])

        assert result.exit_code != 0
        assert "not configured" in result.output


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------


class TestServeCommand:
    def test_runs_server(self, mocker):
        _patch_common(mocker)
        dispatcher = _mock_dispatcher()
        mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=dispatcher)
        run = mocker.patch("reviewrelay_cli.server.run_http_server")

        result = CliRunner().invoke(main, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        run.assert_called_once_with(dispatcher, host="0.0.0.0", port=9000)

    def test_errors_without_platforms(self, mocker):
        _patch_common(mocker)
        mocker.patch("reviewrelay_cli.cli._build_dispatcher", return_value=MagicMock(adapters={}))
        run = mocker.patch("reviewrelay_cli.server.run_http_server")

        result = CliRunner().invoke(main, ["serve"])

        assert result.exit_code != 0
        run.assert_not_called()
