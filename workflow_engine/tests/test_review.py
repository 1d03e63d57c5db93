"""
Tests for review models and aggregation.
"""

import pytest
from pydantic import ValidationError

from workflow_engine.review import (
    Assessment,
    ReviewResult,
    Severity,
    aggregate_gate_results,
    named_output_schema,
)


def review(assessment="approved", issues=None, strengths=None, actionable=False):
    return ReviewResult.model_validate(
        {
            "assessment": assessment,
            "issues": issues or [],
            "strengths": strengths or [],
            "hasActionableIssues": actionable,
        }
    )


def issue(severity, description="problem", **extra):
    return {"severity": severity, "description": description, "fixInstructions": "fix it", **extra}


class TestReviewResult:
    """Tests for ReviewResult validation"""

    def test_camel_case_fields(self):
        result = ReviewResult.model_validate(
            {
                "assessment": "needs_revision",
                "issues": [issue("critical", file="a.py", line=3)],
                "hasActionableIssues": True,
                "testCoverage": {"adequate": False, "notes": "no tests"},
            }
        )

        assert result.assessment == Assessment.NEEDS_REVISION
        assert result.issues[0].fix_instructions == "fix it"
        assert result.issues[0].line == 3
        assert result.test_coverage.adequate is False

    @pytest.mark.parametrize(
        "bad_issue",
        [
            {"severity": "blocker", "description": "x", "fixInstructions": "y"},
            {"severity": "minor", "description": "", "fixInstructions": "y"},
            {"severity": "minor", "description": "x"},
            {"severity": "minor", "description": "x", "fixInstructions": "y", "line": 0},
        ],
    )
    def test_invalid_issue(self, bad_issue):
        with pytest.raises(ValidationError):
            ReviewResult.model_validate(
                {"assessment": "approved", "issues": [bad_issue], "hasActionableIssues": False}
            )

    def test_missing_actionable_flag(self):
        with pytest.raises(ValidationError):
            ReviewResult.model_validate({"assessment": "approved"})


class TestAggregate:
    """Tests for aggregate_gate_results"""

    def test_all_approved(self):
        aggregated = aggregate_gate_results(
            [("code", review(strengths=["clean"])), ("spec", review(strengths=["complete"]))]
        )

        assert aggregated.assessment == Assessment.APPROVED
        assert aggregated.has_actionable_issues is False
        assert aggregated.strengths == ["clean", "complete"]
        assert [g.gate for g in aggregated.gate_results] == ["code", "spec"]

    def test_important_issue_is_actionable(self):
        aggregated = aggregate_gate_results(
            [("code", review("needs_revision", [issue("important")], actionable=True)), ("spec", review())]
        )

        assert aggregated.assessment == Assessment.NEEDS_REVISION
        assert aggregated.has_actionable_issues is True
        assert aggregated.gate_results[0].issue_count == 1

    def test_minor_issues_kept_but_not_actionable(self):
        aggregated = aggregate_gate_results([("code", review(issues=[issue("minor")]))])

        assert len(aggregated.issues) == 1
        assert aggregated.has_actionable_issues is False
        assert aggregated.assessment == Assessment.APPROVED

    def test_min_severity(self):
        gates = [("code", review(issues=[issue("important")]))]

        assert aggregate_gate_results(gates, Severity.CRITICAL).has_actionable_issues is False
        assert aggregate_gate_results(gates, "minor").has_actionable_issues is True

    def test_gate_flag_does_not_override_issues(self):
        """Actionability comes from issue severities, not the gates' own flags"""
        aggregated = aggregate_gate_results([("code", review(actionable=True))])
        assert aggregated.has_actionable_issues is False

    def test_no_gates(self):
        aggregated = aggregate_gate_results([])
        assert aggregated.assessment == Assessment.APPROVED
        assert aggregated.issues == []

    def test_to_output(self):
        output = aggregate_gate_results([("code", review(issues=[issue("critical")]))]).to_output()

        assert output["hasActionableIssues"] is True
        assert output["assessment"] == "needs_revision"
        assert output["issues"][0]["fixInstructions"] == "fix it"
        assert output["gateResults"] == [{"gate": "code", "assessment": "approved", "issueCount": 1}]


class TestNamedSchemas:
    def test_known_and_unknown(self):
        schema = named_output_schema("review-result")
        assert set(schema["required"]) >= {"assessment", "hasActionableIssues"}
        assert named_output_schema("ReviewResult") == schema
        assert named_output_schema("other") is None
