"""
Review result models and aggregation.

Each review gate (an agent step producing a review) returns a ReviewResult.
Results from several gates are merged into one AggregatedReviewResult whose
hasActionableIssues flag drives review/fix loops.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    MINOR = "minor"


class Assessment(str, Enum):
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


# Higher rank is more severe.
SEVERITY_RANK: Dict[Severity, int] = {
    Severity.CRITICAL: 3,
    Severity.IMPORTANT: 2,
    Severity.MINOR: 1,
}


class ReviewIssue(BaseModel):
    """A single issue found by a review gate."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    severity: Severity
    description: str = Field(min_length=1)
    file: Optional[str] = None
    line: Optional[int] = Field(default=None, gt=0)
    fix_instructions: str = Field(min_length=1, alias="fixInstructions")
    found_by: Optional[str] = Field(default=None, alias="foundBy")


class TestCoverageAssessment(BaseModel):
    __test__ = False

    adequate: bool
    notes: Optional[str] = None


class ReviewResult(BaseModel):
    """Structured output of one review gate."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    assessment: Assessment
    issues: List[ReviewIssue] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    has_actionable_issues: bool = Field(alias="hasActionableIssues")
    test_coverage: Optional[TestCoverageAssessment] = Field(default=None, alias="testCoverage")


class GateSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gate: str
    assessment: Assessment
    issue_count: int = Field(ge=0, alias="issueCount")


class AggregatedReviewResult(BaseModel):
    """Merged review across all gates."""

    model_config = ConfigDict(populate_by_name=True)

    assessment: Assessment
    issues: List[ReviewIssue] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    has_actionable_issues: bool = Field(alias="hasActionableIssues")
    gate_results: List[GateSummary] = Field(default_factory=list, alias="gateResults")

    def to_output(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys, as stored in the context."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def aggregate_gate_results(
    gate_results: Iterable[Tuple[str, ReviewResult]],
    min_severity: Union[Severity, str] = Severity.IMPORTANT,
) -> AggregatedReviewResult:
    """
    Aggregate multiple gate results into a unified review result.

    Issues below min_severity are kept in the result but do not make it
    actionable.

    Args:
        gate_results: (gate name, result) pairs in gate order
        min_severity: Lowest severity that counts as actionable

    Returns:
        AggregatedReviewResult
    """
    min_rank = SEVERITY_RANK[Severity(min_severity)]
    issues: List[ReviewIssue] = []
    strengths: List[str] = []
    summaries: List[GateSummary] = []

    for gate, result in gate_results:
        issues.extend(result.issues)
        strengths.extend(result.strengths)
        summaries.append(
            GateSummary(gate=gate, assessment=result.assessment, issue_count=len(result.issues))
        )

    actionable = any(SEVERITY_RANK[issue.severity] >= min_rank for issue in issues)

    return AggregatedReviewResult(
        assessment=Assessment.NEEDS_REVISION if actionable else Assessment.APPROVED,
        issues=issues,
        strengths=strengths,
        has_actionable_issues=actionable,
        gate_results=summaries,
    )


# Named schemas an agent file may reference via ``outputSchema: <name>``.
NAMED_OUTPUT_SCHEMAS = {
    "review-result": ReviewResult,
    "ReviewResult": ReviewResult,
}


def named_output_schema(name: str) -> Optional[Dict[str, Any]]:
    """JSON schema for a named output model, or None if the name is unknown."""
    model = NAMED_OUTPUT_SCHEMAS.get(name)
    if model is None:
        return None
    return model.model_json_schema(by_alias=True)
