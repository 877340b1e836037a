"""Tests for the click entry point"""

import json

import pytest
from click.testing import CliRunner
from unittest.mock import patch

import main
from crmsync.cli.runner import SyncRunner


CONFIG = {
    "two_way_sync": True,
    "mappings": [
        {"key": "lead", "target": "Leads", "fields": [["email", "Email"], ["name", "Last_Name"]]},
    ],
}


@pytest.fixture
def sync_runner(app_config, store, registry):
    return SyncRunner(app_config, store, registry)


@pytest.fixture
def invoke(sync_runner):
    def run(*args):
        with patch.object(main.SyncRunner, "from_config", return_value=sync_runner):
            return CliRunner().invoke(main.cli, list(args))
    return run


@pytest.fixture
def files(tmp_path):
    config_file = tmp_path / "mappings.json"
    config_file.write_text(json.dumps(CONFIG))
    record_file = tmp_path / "record.json"
    record_file.write_text(json.dumps({"record_id": "1", "email": "a@b.com", "name": "Jo"}))
    return config_file, record_file


class TestCommands:

    def test_import_config(self, invoke, files, sync_runner):
        result = invoke("import-config", "7", str(files[0]))

        assert result.exit_code == 0
        assert "Saved 1 mappings" in result.output
        assert sync_runner.configs.load("7").two_way_sync

    def test_push_creates_and_links(self, invoke, files, sync_runner, crm_client):
        invoke("import-config", "7", str(files[0]))

        result = invoke("push", "7", str(files[1]))

        assert result.exit_code == 0
        assert "SYNC RESULTS" in result.output
        assert crm_client.writes()[0] == ("create", "Leads", {"Email": "a@b.com", "Last_Name": "Jo"})
        assert sync_runner.records.get("7", "1").record.fields == {"email": "a@b.com", "name": "Jo"}

        links = invoke("links", "7")
        assert "crm/Leads:" in links.output

        history = invoke("history")
        assert "success" in history.output

    def test_push_without_config_fails(self, invoke, files):
        result = invoke("push", "99", str(files[1]))

        assert result.exit_code == 1
        assert "No mapping configuration" in result.output

    def test_failed_mapping_exit_code(self, invoke, files, crm_client):
        invoke("import-config", "7", str(files[0]))
        crm_client.fail_on.add(("create", "Leads"))

        result = invoke("push", "7", str(files[1]))

        assert result.exit_code == 1

    def test_reconcile(self, invoke, files, crm_client):
        invoke("import-config", "7", str(files[0]))
        crm_client.modified["Leads"] = [{"id": "900", "Email": "z@b.com", "Last_Name": "Zed"}]

        result = invoke("reconcile", "7", "--days", "2")

        assert result.exit_code == 0
        assert "RECONCILIATION SUMMARY" in result.output
        assert "Cursor advanced" in result.output
