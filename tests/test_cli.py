"""Tests for the command-line interface."""

import json

from click.testing import CliRunner

from mcp_conformance.cli import cli

UNREACHABLE_URL = "http://127.0.0.1:1/mcp"


class TestListCommand:
    def test_lists_both_kinds(self):
        result = CliRunner().invoke(cli, ["list"])

        assert result.exit_code == 0
        assert "Client Scenarios (23 total)" in result.output
        assert "Server Scenarios (12 total)" in result.output

    def test_server_only(self):
        result = CliRunner().invoke(cli, ["list", "--server"])

        assert result.exit_code == 0
        assert "Client Scenarios" not in result.output


class TestServerCommand:
    """Test exit codes of server runs."""

    def test_unknown_scenario(self, tmp_path):
        result = CliRunner().invoke(
            cli, ["server", "--url", UNREACHABLE_URL, "-s", "nope", "--output-dir", str(tmp_path)]
        )

        assert result.exit_code == 1
        assert "Unknown scenario: nope" in result.output

    def test_wrong_kind(self, tmp_path):
        result = CliRunner().invoke(
            cli, ["server", "--url", UNREACHABLE_URL, "-s", "auth/basic-dcr", "--output-dir", str(tmp_path)]
        )

        assert result.exit_code == 2

    def test_failing_scenario_saves_results(self, tmp_path):
        result = CliRunner().invoke(
            cli,
            ["server", "--url", UNREACHABLE_URL, "-s", "server/auth-prm-discovery", "--output-dir", str(tmp_path)],
        )

        assert result.exit_code == 1
        [result_dir] = list(tmp_path.iterdir())
        assert result_dir.name.startswith("server-auth-prm-discovery-")
        checks = json.loads((result_dir / "checks.json").read_text())
        assert checks[0]["id"] == "auth-prm-endpoint-exists"
        assert checks[0]["status"] == "FAILURE"

    def test_baseline_accepts_expected_failure(self, tmp_path):
        baseline = tmp_path / "expected.yml"
        baseline.write_text("server:\n  - server/auth-prm-discovery\n")

        result = CliRunner().invoke(
            cli,
            [
                "server",
                "--url", UNREACHABLE_URL,
                "-s", "server/auth-prm-discovery",
                "--expected-failures", str(baseline),
                "--output-dir", str(tmp_path / "results"),
            ],
        )

        assert result.exit_code == 0

    def test_skipped_only_passes(self, tmp_path):
        result = CliRunner().invoke(
            cli,
            ["server", "--url", UNREACHABLE_URL, "-s", "server/auth-as-grant-types", "--output-dir", str(tmp_path)],
        )

        assert result.exit_code == 0

    def test_stale_baseline_fails(self, tmp_path):
        baseline = tmp_path / "expected.yml"
        baseline.write_text("server:\n  - server/auth-as-grant-types\n")

        result = CliRunner().invoke(
            cli,
            [
                "server",
                "--url", UNREACHABLE_URL,
                "-s", "server/auth-as-grant-types",
                "--expected-failures", str(baseline),
                "--output-dir", str(tmp_path / "results"),
            ],
        )

        assert result.exit_code == 1

    def test_invalid_baseline(self, tmp_path):
        baseline = tmp_path / "expected.yml"
        baseline.write_text("- a\n")

        result = CliRunner().invoke(
            cli,
            [
                "server",
                "--url", UNREACHABLE_URL,
                "--expected-failures", str(baseline),
                "--output-dir", str(tmp_path / "results"),
            ],
        )

        assert result.exit_code == 1
        assert "expected an object" in result.output

    def test_malformed_baseline_yaml(self, tmp_path):
        baseline = tmp_path / "expected.yml"
        baseline.write_text("server: [unclosed\n")

        result = CliRunner().invoke(
            cli,
            [
                "server",
                "--url", UNREACHABLE_URL,
                "--expected-failures", str(baseline),
                "--output-dir", str(tmp_path / "results"),
            ],
        )

        assert result.exit_code == 1
        assert "Invalid expected-failures file" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)
