"""Tests for expected-failures baseline loading and reconciliation."""

import pytest

from mcp_conformance.baseline import evaluate_baseline, load_expected_failures
from mcp_conformance.exceptions import BaselineError
from mcp_conformance.models import CheckStatus, ConformanceCheck, ScenarioRunResult


def result(name: str, *statuses: CheckStatus) -> ScenarioRunResult:
    checks = [
        ConformanceCheck(id=f"c{i}", name="c", description="c", status=status)
        for i, status in enumerate(statuses)
    ]
    return ScenarioRunResult(scenario_name=name, checks=checks)


class TestLoadExpectedFailures:
    """Test baseline file parsing."""

    def test_lists(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("server:\n  - a\n  - b\nclient:\n  - auth/basic-cimd\n")

        baseline = load_expected_failures(path)

        assert baseline.server == ["a", "b"]
        assert baseline.client == ["auth/basic-cimd"]

    def test_missing_key_is_none(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("server:\n  - a\n")

        assert load_expected_failures(path).client is None

    def test_empty_document(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("")

        baseline = load_expected_failures(path)

        assert baseline.server is None
        assert baseline.client is None

    def test_top_level_sequence_rejected(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("- a\n- b\n")

        with pytest.raises(BaselineError, match="expected an object"):
            load_expected_failures(path)

    def test_non_list_value_rejected(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("server: a\n")

        with pytest.raises(BaselineError, match="'server' must be an array"):
            load_expected_failures(path)

    def test_malformed_yaml_rejected(self, tmp_path):
        path = tmp_path / "baseline.yml"
        path.write_text("server: [unclosed\n")

        with pytest.raises(BaselineError, match="Invalid expected-failures file"):
            load_expected_failures(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_expected_failures(tmp_path / "absent.yml")


class TestEvaluateBaseline:
    """Test the four reconciliation outcomes."""

    def test_expected_failure_passes(self):
        evaluation = evaluate_baseline([result("a", CheckStatus.FAILURE)], ["a"])

        assert evaluation.expected_failures == ["a"]
        assert evaluation.exit_code == 0

    def test_warning_counts_as_failure(self):
        evaluation = evaluate_baseline([result("a", CheckStatus.SUCCESS, CheckStatus.WARNING)], [])

        assert evaluation.unexpected_failures == ["a"]
        assert evaluation.exit_code == 1

    def test_stale_entry_fails(self):
        evaluation = evaluate_baseline([result("a", CheckStatus.SUCCESS, CheckStatus.INFO)], ["a"])

        assert evaluation.stale_entries == ["a"]
        assert evaluation.exit_code == 1

    def test_clean_run(self):
        evaluation = evaluate_baseline([result("a", CheckStatus.SUCCESS, CheckStatus.SKIPPED)], [])

        assert evaluation.expected_failures == []
        assert evaluation.unexpected_failures == []
        assert evaluation.stale_entries == []
        assert evaluation.exit_code == 0

    def test_entries_for_scenarios_not_run_are_ignored(self):
        evaluation = evaluate_baseline([result("a", CheckStatus.SUCCESS)], ["not-run"])

        assert evaluation.stale_entries == []
        assert evaluation.exit_code == 0

    def test_mixed(self):
        evaluation = evaluate_baseline(
            [
                result("expected", CheckStatus.FAILURE),
                result("new", CheckStatus.FAILURE),
                result("fixed", CheckStatus.SUCCESS),
            ],
            ["expected", "fixed"],
        )

        assert evaluation.expected_failures == ["expected"]
        assert evaluation.unexpected_failures == ["new"]
        assert evaluation.stale_entries == ["fixed"]
        assert evaluation.exit_code == 1
