"""
Tests for CLI commands.

Uses typer's CliRunner; remote calls go to an in-memory provider.
"""

import json

import pytest
from typer.testing import CliRunner

from hubsync import __version__
from hubsync.cli.main import app
from hubsync.config.pairing import export_pairing_code
from hubsync.config.sync_config import CredentialStore, ProviderKind, SyncConfiguration
from hubsync.providers import MemoryProvider
from hubsync.sync import SyncEngine

runner = CliRunner()


@pytest.fixture
def project(tmp_path):
    (tmp_path / "hubsync.yaml").write_text("name: test-school\nadmin: Operator\n")
    return tmp_path


@pytest.fixture
def remote(monkeypatch):
    """Route every engine built by the CLI to one shared in-memory provider."""
    provider = MemoryProvider()
    original = SyncEngine.from_config.__func__

    def from_config(cls, config, credentials, store=None, **kwargs):
        return original(cls, config, credentials, store=store, provider=provider, **kwargs)

    monkeypatch.setattr(SyncEngine, "from_config", classmethod(from_config))
    return provider


def write_submission(path, name="Budi Santoso"):
    path.write_text(
        json.dumps({"kind": "admission", "full_name": name, "submitted_at": "2024-05-01T08:00:00Z"}),
        encoding="utf-8",
    )
    return path


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"hubsync version {__version__}" in result.output


class TestHelp:
    """Tests for help output."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "hubsync" in result.output.lower()

    @pytest.mark.parametrize(
        "command",
        [
            ["push"],
            ["pull"],
            ["status"],
            ["auth", "begin"],
            ["pair", "import"],
            ["inbox", "poll"],
            ["inbox", "merge"],
            ["inbox", "upload"],
        ],
    )
    def test_command_help(self, command):
        result = runner.invoke(app, [*command, "--help"])
        assert result.exit_code == 0


class TestNotConfigured:
    def test_push_reports_remediation(self, project):
        result = runner.invoke(app, ["push", "--project-dir", str(project)])
        assert result.exit_code == 1
        assert "Sync is not configured" in result.output

    def test_pair_export_requires_connection(self, project):
        result = runner.invoke(app, ["pair", "export", "--project-dir", str(project)])
        assert result.exit_code == 1

    def test_invalid_config_file(self, tmp_path):
        (tmp_path / "hubsync.yaml").write_text("remote: [\n")
        result = runner.invoke(app, ["status", "--project-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "not configured" in result.output


class TestPair:
    def test_export_then_import(self, project, tmp_path_factory):
        source = SyncConfiguration(
            provider=ProviderKind.FILE_PROTOCOL, base_url="https://dav.example.com", username="u", password="p"
        )
        CredentialStore(project / ".hubsync").save(source)

        exported = runner.invoke(app, ["pair", "export", "--project-dir", str(project)])
        assert exported.exit_code == 0
        code = exported.output.strip().splitlines()[-1]
        assert code == export_pairing_code(source)

        other = tmp_path_factory.mktemp("other")
        imported = runner.invoke(app, ["pair", "import", code, "--project-dir", str(other)])
        assert imported.exit_code == 0
        loaded = CredentialStore(other / ".hubsync").load()
        assert (loaded.provider, loaded.base_url, loaded.password) == (ProviderKind.FILE_PROTOCOL, "https://dav.example.com", "p")

    def test_import_garbage(self, project):
        result = runner.invoke(app, ["pair", "import", "HUBSYNC-CLOUD-%%%", "--project-dir", str(project)])
        assert result.exit_code == 1
        assert not (project / ".hubsync" / "credentials.yaml").exists()


class TestAuth:
    def test_begin_prints_url(self, project):
        result = runner.invoke(app, ["auth", "begin", "--app-key", "app-key", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "https://www.dropbox.com/oauth2/authorize" in result.output
        assert (project / ".hubsync" / "pending_authorization.json").exists()

    def test_begin_without_app_key(self, project):
        result = runner.invoke(app, ["auth", "begin", "--project-dir", str(project)])
        assert result.exit_code == 1


class TestSnapshotCommands:
    def test_push_status_pull(self, project, remote):
        pushed = runner.invoke(app, ["push", "--project-dir", str(project)])
        assert pushed.exit_code == 0
        assert "Snapshot pushed" in pushed.output
        assert "/hubsync/master_data.json" in remote.files()

        status = runner.invoke(app, ["status", "--project-dir", str(project)])
        assert status.exit_code == 0
        assert "persons" in status.output

        pulled = runner.invoke(app, ["pull", "--yes", "--project-dir", str(project)])
        assert pulled.exit_code == 0
        assert "Snapshot pulled" in pulled.output

    def test_status_without_snapshot(self, project, remote):
        result = runner.invoke(app, ["status", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "No snapshot" in result.output

    def test_pull_without_snapshot(self, project, remote):
        result = runner.invoke(app, ["pull", "--yes", "--project-dir", str(project)])
        assert result.exit_code == 1
        assert "Remote data missing" in result.output

    def test_pull_asks_for_confirmation(self, project, remote):
        result = runner.invoke(app, ["pull", "--project-dir", str(project)], input="n\n")
        assert result.exit_code == 1

    def test_pull_if_auto_sync_off(self, project, remote):
        result = runner.invoke(app, ["pull", "--if-auto-sync", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "Automatic sync is off" in result.output

    def test_pull_if_auto_sync_on(self, project, remote):
        CredentialStore(project / ".hubsync").save(SyncConfiguration(auto_sync=True))
        runner.invoke(app, ["push", "--project-dir", str(project)])
        result = runner.invoke(app, ["pull", "--if-auto-sync", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "Snapshot pulled" in result.output


class TestInboxCommands:
    def test_submit_poll_merge_list_purge(self, project, remote, tmp_path):
        submission = write_submission(tmp_path / "form.json")

        submitted = runner.invoke(
            app, ["inbox", "submit", str(submission), "--sender", "Guru A", "--project-dir", str(project)]
        )
        assert submitted.exit_code == 0
        assert len(remote.files()) == 1

        polled = runner.invoke(app, ["inbox", "poll", "--project-dir", str(project)])
        assert polled.exit_code == 0
        assert "Consumed (1)" in polled.output

        (processed_path,) = remote.files()
        assert "/processed/" in processed_path

        listed = runner.invoke(app, ["inbox", "list", "--project-dir", str(project)])
        assert listed.exit_code == 0
        assert "Inbox (1)" in listed.output

        merged = runner.invoke(app, ["inbox", "merge", processed_path, "--project-dir", str(project)])
        assert merged.exit_code == 0
        assert "1 inserted" in merged.output

        again = runner.invoke(app, ["inbox", "merge", processed_path, "--project-dir", str(project)])
        assert "Already merged" in again.output

        purged = runner.invoke(app, ["inbox", "purge", "--yes", "--project-dir", str(project)])
        assert purged.exit_code == 0
        assert "Deleted 1" in purged.output
        assert remote.files() == {}

    def test_poll_empty(self, project, remote):
        result = runner.invoke(app, ["inbox", "poll", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "No new submissions" in result.output

    def test_poll_and_merge(self, project, remote, tmp_path):
        submission = write_submission(tmp_path / "form.json")
        runner.invoke(app, ["inbox", "submit", str(submission), "--project-dir", str(project)])
        result = runner.invoke(app, ["inbox", "poll", "--merge", "--project-dir", str(project)])
        assert result.exit_code == 0
        assert "1 inserted" in result.output

    def test_submit_invalid_file(self, project, remote, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{nope")
        result = runner.invoke(app, ["inbox", "submit", str(bad), "--project-dir", str(project)])
        assert result.exit_code == 1
        assert "Data format mismatch" in result.output
        assert remote.files() == {}

    def test_submit_rejected_payload(self, project, remote, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"kind": "admission"}))
        result = runner.invoke(app, ["inbox", "submit", str(bad), "--project-dir", str(project)])
        assert result.exit_code == 1
        assert remote.files() == {}

    def test_upload_staff_changes(self, project, remote):
        result = runner.invoke(app, ["inbox", "upload", "--sender", "Bendahara", "--project-dir", str(project)])
        assert result.exit_code == 0
        (path,) = remote.files()
        assert path.endswith("_Bendahara.json")
        assert json.loads(remote.files()[path])["kind"] == "staff_update"
