"""
Unit tests for the command-line entry point.
"""
import pytest
from click.testing import CliRunner

from main import cli


@pytest.mark.unit
class TestCli:
    """Tests for commands that stop before touching the store."""

    @pytest.fixture
    def runner(self, test_config) -> CliRunner:
        return CliRunner()

    def test_check_without_credentials(self, runner):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 1
        assert "(not set)" in result.output
        assert "SUPABASE_URL" in result.output

    def test_recurring_rejects_bad_date(self, runner):
        result = runner.invoke(cli, ["recurring", "comp-1", "--date", "19/10/2026"])
        assert result.exit_code == 2

    def test_load_without_credentials(self, runner):
        result = runner.invoke(cli, ["load", "comp-1"])
        assert result.exit_code == 2
