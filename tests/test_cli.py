"""
Tests for the command line interface.
"""

import json

import pytest

import cli


@pytest.fixture
def run(tmp_path, monkeypatch, capsys):
    """Invoke the CLI against a temporary data directory at low difficulty."""
    monkeypatch.setenv("ODOLEDGER_DIFFICULTY", "1")
    data_dir = str(tmp_path / "data")

    def invoke(*argv):
        code = cli.main(["--data-dir", data_dir, *argv])
        out = capsys.readouterr().out
        return code, out

    return invoke


class TestCommands:
    """Tests for individual commands."""

    def test_create_and_summary(self, run):
        """Test a created chain shows up in its summary."""
        code, out = run("create-chain", "DEMO4774", "owner-1")
        assert code == 0
        assert json.loads(out)["vehicle_id"] == "DEMO4774"

        code, out = run("summary", "DEMO4774")
        assert code == 0
        assert json.loads(out)["total_blocks"] == 1

    def test_submit_and_verify(self, run):
        """Test an accepted reading persists and verifies."""
        run("create-chain", "DEMO1", "owner-1")

        code, out = run("submit-reading", "DEMO1", "15000", "--submitter", "app-a")
        assert code == 0
        assert json.loads(out)["accepted"] is True

        code, out = run("verify", "DEMO1")
        assert code == 0
        assert json.loads(out)["valid"] is True

    def test_rejected_reading_exit_code(self, run):
        """Test a rejected reading exits non-zero."""
        run("create-chain", "DEMO1", "owner-1")
        run("submit-reading", "DEMO1", "15000")

        code, out = run("submit-reading", "DEMO1", "14000")

        assert code == 1
        assert json.loads(out)["error"] == "validation_rejected"

    def test_duplicate_create(self, run):
        """Test registering twice reports the stoprule."""
        run("create-chain", "DEMO1", "owner-1")

        code, out = run("create-chain", "DEMO1", "owner-1")

        assert code == 2
        assert json.loads(out)["error"] == "already_exists"

    def test_export_and_list(self, run):
        """Test export and list output."""
        run("create-chain", "DEMO1", "owner-1")

        code, out = run("export", "DEMO1")
        assert json.loads(out)["blocks"][0]["index"] == 0

        code, out = run("list")
        assert json.loads(out) == {"vehicles": ["DEMO1"]}

    def test_unknown_vehicle(self, run):
        """Test summary of an unknown vehicle."""
        code, out = run("summary", "NOPE")

        assert code == 1
        assert json.loads(out)["error"] == "not_found"

    def test_no_command(self, run):
        """Test bare invocation prints help."""
        code, _ = run()
        assert code == 1

    def test_selftest(self, run):
        """Test verification protocol passes."""
        code, out = run("selftest")

        assert code == 0
        assert "Verification complete." in out

    def test_data_dir_help_warns_single_process(self, monkeypatch, capsys):
        """Test --data-dir help states the directory is not shared."""
        monkeypatch.setenv("COLUMNS", "400")
        with pytest.raises(SystemExit):
            cli.main(["--help"])

        assert "one process at a time" in capsys.readouterr().out
