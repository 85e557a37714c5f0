"""Unit tests for the puter CLI commands."""

import json
import os
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from pyputer.cli import main
from pyputer.config import Config
from pyputer.exceptions import PuterAuthenticationError


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_config(temp_dir, monkeypatch):
    """A configured Config in a temporary directory, used by the CLI."""
    for name in ["PUTER_AUTH_TOKEN", "PUTER_USERNAME", "PUTER_API_BASE"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PYPUTER_CONFIG_DIR", str(temp_dir / "cfg"))
    cfg = Config(config_dir=temp_dir / "cfg")
    with patch("pyputer.cli.config", cfg):
        yield cfg


@pytest.fixture
def configured(cli_config, client):
    """Logged-in CLI talking to the fake server."""
    cli_config.save_credentials("test-token", "alice")
    with patch("pyputer.cli.PuterClient", return_value=client):
        yield cli_config


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ["init", "ls", "cd", "push", "pull", "sync", "rm", "df"]:
            assert command in result.output

    def test_requires_token(self, runner, cli_config):
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 1
        assert "Auth token not configured" in result.output


class TestInitCommand:
    """Tests for the init command."""

    def test_init_with_valid_token(self, runner, cli_config):
        mock_client = Mock()
        mock_client.whoami.return_value = {"username": "alice"}
        with patch("pyputer.cli.PuterClient", return_value=mock_client):
            result = runner.invoke(main, ["init", "--token", "tok"])

        assert result.exit_code == 0
        assert cli_config.auth_token == "tok"
        assert cli_config.username == "alice"
        assert cli_config.cwd == "/alice"

    def test_init_invalid_token_declined(self, runner, cli_config):
        mock_client = Mock()
        mock_client.whoami.side_effect = PuterAuthenticationError("bad token")
        with patch("pyputer.cli.PuterClient", return_value=mock_client):
            result = runner.invoke(main, ["init", "--token", "tok"], input="n\n")

        assert result.exit_code == 1
        assert cli_config.auth_token is None


class TestNavigation:
    """Tests for pwd, cd and ls."""

    def test_pwd(self, runner, configured):
        result = runner.invoke(main, ["pwd"])
        assert result.exit_code == 0
        assert result.output.strip() == "/alice"

    def test_cd_into_directory(self, runner, configured, server):
        server.add_file("/alice/docs/a.txt")
        result = runner.invoke(main, ["cd", "docs"])
        assert result.exit_code == 0
        assert configured.cwd == "/alice/docs"

        result = runner.invoke(main, ["cd", ".."])
        assert configured.cwd == "/alice"

    def test_cd_missing(self, runner, configured):
        result = runner.invoke(main, ["cd", "nowhere"])
        assert result.exit_code == 1
        assert configured.cwd == "/alice"

    def test_cd_file(self, runner, configured, server):
        server.add_file("/alice/a.txt")
        result = runner.invoke(main, ["cd", "a.txt"])
        assert result.exit_code == 1
        assert "not a directory" in result.output

    def test_ls(self, runner, configured, server):
        server.add_file("/alice/notes.txt", b"abc")
        server.add_file("/alice/pics/cat.png")
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 0
        assert "notes.txt" in result.output
        assert "pics/" in result.output

    def test_ls_json(self, runner, configured, server):
        server.add_file("/alice/notes.txt", b"abc")
        result = runner.invoke(main, ["--json", "ls"])
        assert result.exit_code == 0
        names = [e["name"] for e in json.loads(result.output)]
        assert "notes.txt" in names


class TestFileCommands:
    """Tests for commands that change remote files."""

    def test_touch_and_cat(self, runner, configured, server):
        result = runner.invoke(main, ["touch", "app/index.html", "hello", "world"])
        assert result.exit_code == 0
        assert server.files["/alice/app/index.html"]["content"] == b"hello world"

        result = runner.invoke(main, ["cat", "app/index.html"])
        assert result.exit_code == 0
        assert "hello world" in result.output

    def test_touch_full_disk(self, runner, configured, server):
        server.used = server.capacity
        result = runner.invoke(main, ["touch", "a.txt"])
        assert result.exit_code == 1
        assert "Not enough disk space" in result.output
        assert "Used:" in result.output

    def test_mkdir(self, runner, configured, server):
        result = runner.invoke(main, ["mkdir", "-p", "a/b"])
        assert result.exit_code == 0
        assert "/alice/a/b" in server.dirs

    def test_mv_rename(self, runner, configured, server):
        server.add_file("/alice/a.txt", b"x")
        result = runner.invoke(main, ["mv", "a.txt", "b.txt"])
        assert result.exit_code == 0
        assert "/alice/b.txt" in server.files
        assert server.calls("/rename") == 1

    def test_mv_into_directory(self, runner, configured, server):
        server.add_file("/alice/a.txt", b"x")
        server.add_file("/alice/docs/.keep")
        result = runner.invoke(main, ["mv", "a.txt", "docs"])
        assert result.exit_code == 0
        assert "/alice/docs/a.txt" in server.files

    def test_cp(self, runner, configured, server):
        server.add_file("/alice/a.txt", b"x")
        server.add_file("/alice/backup/.keep")
        result = runner.invoke(main, ["cp", "a.txt", "backup"])
        assert result.exit_code == 0
        assert "/alice/backup/a.txt" in server.files

    def test_rm_force(self, runner, configured, server):
        record = server.add_file("/alice/a.txt", b"x")
        result = runner.invoke(main, ["rm", "-f", "a.txt"])
        assert result.exit_code == 0
        assert f"/alice/Trash/{record['uid']}" in server.files

    def test_rm_wildcard(self, runner, configured, server):
        server.add_file("/alice/one.log")
        server.add_file("/alice/two.log")
        server.add_file("/alice/keep.txt")
        result = runner.invoke(main, ["rm", "-f", "*.log"])
        assert result.exit_code == 0
        assert len([p for p in server.files if p.startswith("/alice/Trash/")]) == 2
        assert "/alice/keep.txt" in server.files
        assert "/alice/one.log" not in server.files

    def test_rm_cancelled(self, runner, configured, server):
        server.add_file("/alice/a.txt", b"x")
        result = runner.invoke(main, ["rm", "a.txt"], input="n\n")
        assert "/alice/a.txt" in server.files
        assert "cancelled" in result.output

    def test_rm_no_match(self, runner, configured):
        result = runner.invoke(main, ["rm", "-f", "ghost"])
        assert result.exit_code == 1

    def test_clean(self, runner, configured, server):
        server.add_file("/alice/Trash/uid-x", b"x")
        result = runner.invoke(main, ["clean"])
        assert result.exit_code == 0
        assert "/alice/Trash" in server.dirs
        assert "/alice/Trash/uid-x" not in server.files

    def test_df(self, runner, configured, server):
        server.used = 1024
        result = runner.invoke(main, ["df"])
        assert result.exit_code == 0
        assert "Used: 1.0 KB" in result.output


class TestTransferCommands:
    """Tests for push and pull."""

    def test_push(self, runner, configured, server, temp_dir):
        path = temp_dir / "report.txt"
        path.write_bytes(b"report")
        result = runner.invoke(main, ["push", str(path)])
        assert result.exit_code == 0
        assert server.files["/alice/report.txt"]["content"] == b"report"

    def test_pull_into_directory(self, runner, configured, server, temp_dir):
        server.add_file("/alice/report.txt", b"report")
        result = runner.invoke(main, ["pull", "report.txt", str(temp_dir)])
        assert result.exit_code == 0
        assert (temp_dir / "report.txt").read_bytes() == b"report"

    def test_pull_existing_needs_overwrite(self, runner, configured, server, temp_dir):
        server.add_file("/alice/report.txt", b"new")
        (temp_dir / "report.txt").write_bytes(b"old")

        result = runner.invoke(main, ["pull", "report.txt", str(temp_dir)])
        assert result.exit_code == 1
        assert (temp_dir / "report.txt").read_bytes() == b"old"

        result = runner.invoke(
            main, ["pull", "report.txt", str(temp_dir), "--overwrite"]
        )
        assert result.exit_code == 0
        assert (temp_dir / "report.txt").read_bytes() == b"new"


class TestSyncCommand:
    """Tests for the sync command."""

    @pytest.fixture
    def local_dir(self, temp_dir):
        local = temp_dir / "site"
        local.mkdir()
        (local / "index.html").write_bytes(b"<html>")
        return local

    def test_sync_uploads(self, runner, configured, server, local_dir):
        result = runner.invoke(main, ["sync", str(local_dir), "site", "--no-state"])
        assert result.exit_code == 0
        assert server.files["/alice/site/index.html"]["content"] == b"<html>"

    def test_sync_dry_run(self, runner, configured, server, local_dir):
        result = runner.invoke(main, ["sync", str(local_dir), "site", "--dry-run"])
        assert result.exit_code == 0
        assert server.calls("/batch") == 0
        assert "Dry run complete!" in result.output

    def test_sync_json(self, runner, configured, server, local_dir):
        result = runner.invoke(
            main, ["--json", "sync", str(local_dir), "~/site", "--no-state"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["uploaded"] == ["index.html"]

    def test_sync_invalid_local(self, runner, configured, temp_dir):
        result = runner.invoke(main, ["sync", str(temp_dir / "missing"), "site"])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def make_conflict(self, runner, server, local_dir):
        """Sync once, then change index.html on both sides."""
        runner.invoke(main, ["sync", str(local_dir), "site"])
        synced = server.files["/alice/site/index.html"]["modified"]

        server.files["/alice/site/index.html"]["content"] = b"remote"
        server.files["/alice/site/index.html"]["modified"] = synced + 20
        (local_dir / "index.html").write_bytes(b"local")
        os.utime(local_dir / "index.html", (synced + 5, synced + 5))

    def test_sync_overwrite_resolves_conflicts(
        self, runner, configured, server, local_dir
    ):
        """--overwrite keeps local versions of files changed on both sides."""
        self.make_conflict(runner, server, local_dir)

        result = runner.invoke(main, ["sync", str(local_dir), "site", "--overwrite"])
        assert result.exit_code == 0
        assert server.files["/alice/site/index.html"]["content"] == b"local"

    def test_sync_json_does_not_prompt(self, runner, configured, server, local_dir):
        """With --json an unanswered conflict is skipped instead of prompted."""
        self.make_conflict(runner, server, local_dir)

        result = runner.invoke(main, ["--json", "sync", str(local_dir), "site"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["conflicts"] == ["index.html"]
        assert data["resolution"] == "skip"
        assert (local_dir / "index.html").read_bytes() == b"local"
        assert server.files["/alice/site/index.html"]["content"] == b"remote"

    def test_sync_reset_state(self, runner, configured, server, local_dir):
        """Without the baseline the newer remote copy simply wins."""
        self.make_conflict(runner, server, local_dir)

        result = runner.invoke(
            main,
            ["sync", str(local_dir), "site", "--reset-state", "--on-conflict", "skip"],
        )
        assert result.exit_code == 0
        assert "Cleared the last-sync baseline" in result.output
        assert (local_dir / "index.html").read_bytes() == b"remote"
