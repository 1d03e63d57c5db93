"""
Tests for the condition evaluator.
"""

import pytest

from workflow_engine.conditions import (
    UNDEFINED,
    evaluate_condition,
    lookup_path,
    parse_condition,
    resolve_path,
)
from workflow_engine.errors import ConditionSyntaxError, ValidationError


VARIABLES = {
    "review": {"hasActionableIssues": True, "issues": [{"severity": "critical"}], "score": "7"},
    "verification": {"testSuite": {"exitCode": 0}},
    "analysis": {"blocked": False, "tasks": [{"id": "task-001", "status": "done"}]},
    "task": {"title": "Add auth middleware", "id": "task-002", "tags": ["api", "auth"]},
    "count": 3,
    "empty": "",
    "nothing": None,
}


class TestPathLookup:
    """Tests for dotted path resolution"""

    def test_nested_and_list_index(self):
        assert lookup_path("analysis.tasks.0.id", VARIABLES) == "task-001"

    def test_missing_is_undefined(self):
        assert lookup_path("review.missing.deeper", VARIABLES) is UNDEFINED
        assert resolve_path("review.missing", VARIABLES) is None

    def test_read_through_null(self):
        assert lookup_path("nothing.field", VARIABLES) is UNDEFINED

    def test_disallowed_keys(self):
        variables = {"constructor": {"x": 1}, "__class__": 1}
        assert lookup_path("constructor.x", variables) is UNDEFINED
        assert lookup_path("__class__", variables) is UNDEFINED

    def test_list_index_out_of_range(self):
        assert lookup_path("analysis.tasks.5", VARIABLES) is UNDEFINED


class TestEvaluate:
    """Tests for evaluate_condition"""

    @pytest.mark.parametrize(
        "condition, expected",
        [
            ("review.hasActionableIssues", True),
            ("!review.hasActionableIssues", False),
            ("analysis.blocked == true", False),
            ("analysis.blocked == false", True),
            ("verification.testSuite.exitCode != 0", False),
            ("verification.testSuite.exitCode == 0", True),
            ("count > 2", True),
            ("count >= 3 && count <= 3", True),
            ("count < 3 || review.hasActionableIssues", True),
            ("review.score == 7", True),
            ("review.score === 7", False),
            ("count === 3", True),
            ("review.score > 6.5", True),
            ('analysis.tasks.0.status == "done"', True),
            ("task.title contains 'auth'", True),
            ('task.tags contains "api"', True),
            ('task.tags contains "db"', False),
            ("task.id starts-with 'task-00'", True),
            ("task.id startsWith 'x'", False),
            ("not (count > 5) and task.id", True),
            ("review.issues", True),
            ("empty", False),
            ("nothing == null", True),
            ("missing == null", True),
            ("missing === undefined", True),
            ("missing.deep > 0", False),
            ("missing.deep < 0", False),
            ("missing != 1", True),
        ],
    )
    def test_expressions(self, condition, expected):
        assert evaluate_condition(condition, VARIABLES) is expected

    def test_missing_data_never_raises(self):
        assert evaluate_condition("a.b.c.d == 1", {}) is False
        assert evaluate_condition("a.b.c.d", {"a": None}) is False

    def test_precedence(self):
        """and binds tighter than or"""
        assert evaluate_condition("true || false && false", {}) is True
        assert evaluate_condition("(true || false) && false", {}) is False

    def test_accepts_parsed_tree(self):
        tree = parse_condition("count == 3")
        assert evaluate_condition(tree, VARIABLES) is True


class TestParse:
    """Tests for syntax errors"""

    @pytest.mark.parametrize(
        "condition",
        ["", "   ", "a ==", "(a == 1", "a == 1)", "a && || b", "a # b", "== 1"],
    )
    def test_syntax_errors(self, condition):
        with pytest.raises(ConditionSyntaxError):
            parse_condition(condition)

    def test_syntax_error_is_validation_error(self):
        with pytest.raises(ValidationError):
            evaluate_condition("a ==", {})

    def test_non_string(self):
        with pytest.raises(ConditionSyntaxError, match="must be a string"):
            parse_condition(42)
