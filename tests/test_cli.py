"""
Tests for the civic-requests command line interface.
"""

import re

import pytest
from click.testing import CliRunner

from civic_requests.cli import cli


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    monkeypatch.delenv("CIVIC_DB_URL", raising=False)
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _run(db_url, *args):
    result = CliRunner().invoke(cli, ["--db", db_url, *args])
    return result


def _submit(db_url, citizen="citizen-1", *extra):
    result = _run(db_url, "submit", "-c", citizen, "-d", "Health", "-m", "Clinic closed", *extra)
    assert result.exit_code == 0, result.output
    return re.search(r"APP-\d{4}-\d{6}", result.output).group(0)


class TestCli:
    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "civic-requests" in result.output

    def test_submit_and_show(self, db_url):
        code = _submit(db_url)
        result = _run(db_url, "show", code)
        assert result.exit_code == 0
        assert "Status:       Submitted" in result.output
        assert "Official:     -" in result.output

    def test_queue(self, db_url):
        assert "No unassigned applications." in _run(db_url, "queue").output
        first = _submit(db_url)
        second = _submit(db_url, "citizen-2")
        output = _run(db_url, "queue", "-d", "Health").output
        assert output.index(first) < output.index(second)

    def test_full_lifecycle(self, db_url):
        code = _submit(db_url)
        assert _run(db_url, "official", "add", "official-1", "-d", "Health").exit_code == 0
        assert _run(db_url, "official", "add", "official-2", "-d", "Health", "--level", "2").exit_code == 0

        result = _run(db_url, "accept", code, "-o", "official-1")
        assert result.exit_code == 0, result.output
        assert "assigned to official-1" in result.output

        result = _run(db_url, "update-status", code, "Approved", "-a", "official-1", "-m", "Done")
        assert result.exit_code == 0, result.output
        assert "Approved" in result.output

        result = _run(db_url, "feedback", code, "-c", "citizen-1", "--unsolved", "-r", "2")
        assert result.exit_code == 0, result.output
        assert "reopened at escalation level 1" in result.output
        assert "official-2" in result.output

        history = _run(db_url, "history", code).output
        assert "#4" in history
        assert "by citizen-1" in history

        notes = _run(db_url, "notifications", "citizen-1").output
        assert "[approval]" in notes
        assert "Application Reopened" in notes

    def test_accept_twice_fails(self, db_url):
        code = _submit(db_url)
        assert _run(db_url, "accept", code, "-o", "official-1").exit_code == 0
        result = _run(db_url, "accept", code, "-o", "official-2")
        assert result.exit_code == 1
        assert "already_taken" in result.output
        assert "official=official-1" in result.output

    def test_invalid_transition_fails(self, db_url):
        code = _submit(db_url)
        result = _run(db_url, "update-status", code, "Approved", "-a", "official-1")
        assert result.exit_code == 1
        assert "invalid_transition" in result.output

    def test_unknown_application(self, db_url):
        result = _run(db_url, "show", "APP-2000-000001")
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_rating_range_enforced(self, db_url):
        code = _submit(db_url)
        result = _run(db_url, "feedback", code, "-c", "citizen-1", "--solved", "-r", "9")
        assert result.exit_code == 2

    def test_feedback_and_report(self, db_url):
        code = _submit(db_url)
        _run(db_url, "official", "add", "official-1", "-d", "Health")
        _run(db_url, "accept", code, "-o", "official-1")
        _run(db_url, "update-status", code, "Rejected", "-a", "official-1")
        result = _run(db_url, "feedback", code, "-c", "citizen-1", "--solved", "-r", "4")
        feedback_id = re.search(r"id ([0-9a-f-]{36})", result.output).group(1)

        assert _run(db_url, "verify-feedback", feedback_id).exit_code == 0
        report = _run(db_url, "official", "report", "official-1")
        assert report.exit_code == 0
        assert "4.00 (1 verified)" in report.output

    def test_sweep_with_nothing_due(self, db_url):
        _submit(db_url)
        result = _run(db_url, "sweep")
        assert result.exit_code == 0
        assert "Examined:      0" in result.output

    def test_stats_with_alerts(self, db_url):
        _submit(db_url, "citizen-1", "-p", "High")
        result = _run(db_url, "stats", "--alerts")
        assert result.exit_code == 0
        assert "Total applications: 1" in result.output
        assert "Submitted" in result.output
        assert "[WARNING]" in result.output

    def test_verify_documents(self, db_url):
        code = _submit(db_url)
        assert _run(db_url, "verify-documents", code).exit_code == 0
        assert "Documents:    verified" in _run(db_url, "show", code).output
