"""
Condition Evaluator

A deliberately small expression language for loop conditions, step
conditions and failWhen checks:

    review.hasActionableIssues
    verification.testSuite.exitCode != 0
    analysis.tasks.0.status == "done" && !review.approved
    task.title contains "auth" or task.id starts-with 'task-00'

Expressions are parsed once when the workflow is loaded (syntax errors are
raised there) and evaluated against the context variables at run time.
Evaluation never raises for missing data: any missing path resolves to
undefined and comparisons against it are false.
"""

import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional, Tuple, Union

from .errors import ConditionSyntaxError

logger = logging.getLogger(__name__)

# Property names that are never traversed.
DISALLOWED_KEYS = frozenset(["__proto__", "constructor", "prototype"])


class _Undefined:
    """Marker for a missing value (distinct from an explicit null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "undefined"


UNDEFINED = _Undefined()


def lookup_path(expr: str, variables: Any) -> Any:
    """
    Resolve a dotted path, returning UNDEFINED when any segment is missing.

    Mapping keys and list indices are supported; dunder names and the
    DISALLOWED_KEYS set always resolve to UNDEFINED.
    """
    current = variables
    for part in expr.split("."):
        if current is None or current is UNDEFINED:
            return UNDEFINED
        if part in DISALLOWED_KEYS or (part.startswith("__") and part.endswith("__")):
            return UNDEFINED
        if isinstance(current, dict):
            if part not in current:
                return UNDEFINED
            current = current[part]
        elif isinstance(current, (list, tuple)):
            if not part.isdigit() or int(part) >= len(current):
                return UNDEFINED
            current = current[int(part)]
        else:
            return UNDEFINED
    return current


def resolve_path(expr: str, variables: Any) -> Any:
    """Resolve a dotted path, returning None when it is missing."""
    value = lookup_path(expr, variables)
    return None if value is UNDEFINED else value


# --- AST ---


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class PathRef:
    path: str


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class And:
    operands: Tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple["Node", ...]


Node = Union[Literal, PathRef, Compare, Not, And, Or]


# --- Tokenizer ---

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>-?\d+(?:\.\d+)?(?![\w.]))
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>===|!==|==|!=|>=|<=|&&|\|\||[><!()])
  | (?P<word>[A-Za-z_$@][\w$@-]*(?:\.[\w$@-]+)*)
    """,
    re.VERBOSE,
)

COMPARATORS = ("==", "!=", "===", "!==", ">", "<", ">=", "<=", "contains", "starts-with")

_KEYWORDS = {
    "and": "&&",
    "AND": "&&",
    "or": "||",
    "OR": "||",
    "not": "!",
    "NOT": "!",
    "contains": "contains",
    "starts-with": "starts-with",
    "startsWith": "starts-with",
}

_LITERALS = {"true": True, "false": False, "null": None, "undefined": UNDEFINED}


@dataclass(frozen=True)
class _Token:
    kind: str  # "op", "number", "string", "word"
    text: str
    pos: int


def _tokenize(text: str) -> List[_Token]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise ConditionSyntaxError(
                f'Unexpected character {text[pos]!r} at position {pos} in condition "{text}"'
            )
        kind = match.lastgroup
        value = match.group(kind)
        if kind != "ws":
            if kind == "word" and value in _KEYWORDS:
                tokens.append(_Token("op", _KEYWORDS[value], pos))
            else:
                tokens.append(_Token(kind, value, pos))
        pos = match.end()
    return tokens


# --- Parser ---


class _Parser:
    """Recursive-descent parser: or > and > not > comparison > operand."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError("Condition must not be empty")
        node = self._or()
        if self.index < len(self.tokens):
            token = self.tokens[self.index]
            raise ConditionSyntaxError(
                f'Unexpected token "{token.text}" at position {token.pos} in condition "{self.text}"'
            )
        return node

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _accept_op(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text in ops:
            self.index += 1
            return token.text
        return None

    def _or(self) -> Node:
        operands = [self._and()]
        while self._accept_op("||"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> Node:
        operands = [self._not()]
        while self._accept_op("&&"):
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _not(self) -> Node:
        if self._accept_op("!"):
            return Not(self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        if self._accept_op("("):
            node = self._or()
            if not self._accept_op(")"):
                raise ConditionSyntaxError(
                    f'Unbalanced parentheses in condition "{self.text}"'
                )
            return node

        left = self._operand()
        op = self._accept_op(*COMPARATORS)
        if op is None:
            return left
        return Compare(op, left, self._operand())

    def _operand(self) -> Node:
        token = self._peek()
        if token is None:
            raise ConditionSyntaxError(
                f'Unexpected end of condition "{self.text}"'
            )
        if token.kind == "op":
            raise ConditionSyntaxError(
                f'Expected a value but found "{token.text}" at position {token.pos} '
                f'in condition "{self.text}"'
            )
        self.index += 1

        if token.kind == "number":
            number = float(token.text)
            return Literal(int(number) if number.is_integer() and "." not in token.text else number)
        if token.kind == "string":
            return Literal(_unquote(token.text))
        if token.text in _LITERALS:
            return Literal(_LITERALS[token.text])
        return PathRef(token.text)


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


@lru_cache(maxsize=512)
def parse_condition(text: str) -> Node:
    """
    Parse a condition expression.

    Args:
        text: Condition source text

    Returns:
        Parsed expression tree

    Raises:
        ConditionSyntaxError: If the expression is malformed
    """
    if not isinstance(text, str):
        raise ConditionSyntaxError(f"Condition must be a string, got {type(text).__name__}")
    return _Parser(text.strip()).parse()


# --- Evaluation ---


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if _is_number(value):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _loose_equals(left: Any, right: Any) -> bool:
    left_missing = left is None or left is UNDEFINED
    right_missing = right is None or right is UNDEFINED
    if left_missing or right_missing:
        return left_missing and right_missing
    if isinstance(left, str) and not isinstance(right, str):
        number = _to_number(left)
        return number is not None and number == _to_number(right)
    if isinstance(right, str) and not isinstance(left, str):
        number = _to_number(right)
        return number is not None and number == _to_number(left)
    return left == right


def _type_family(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    return type(value).__name__


def _strict_equals(left: Any, right: Any) -> bool:
    return _type_family(left) == _type_family(right) and left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "==":
        return _loose_equals(left, right)
    if op == "!=":
        return not _loose_equals(left, right)
    if op == "===":
        return _strict_equals(left, right)
    if op == "!==":
        return not _strict_equals(left, right)
    if op == "contains":
        if isinstance(left, str):
            return isinstance(right, str) and right in left
        if isinstance(left, (list, tuple)):
            return any(_strict_equals(item, right) for item in left)
        if isinstance(left, dict):
            return isinstance(right, str) and right in left
        return False
    if op == "starts-with":
        return isinstance(left, str) and isinstance(right, str) and left.startswith(right)

    # Relational comparisons: both sides must be numeric.
    a, b = _to_number(left), _to_number(right)
    if a is None or b is None:
        return False
    if op == ">":
        return a > b
    if op == "<":
        return a < b
    if op == ">=":
        return a >= b
    if op == "<=":
        return a <= b
    return False


def _value(node: Node, variables: Any) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, PathRef):
        return lookup_path(node.path, variables)
    return _truth(node, variables)


def _truth(node: Node, variables: Any) -> bool:
    if isinstance(node, Or):
        return any(_truth(operand, variables) for operand in node.operands)
    if isinstance(node, And):
        return all(_truth(operand, variables) for operand in node.operands)
    if isinstance(node, Not):
        return not _truth(node.operand, variables)
    if isinstance(node, Compare):
        return _compare(node.op, _value(node.left, variables), _value(node.right, variables))
    return bool(_value(node, variables))


def evaluate_condition(condition: Union[str, Node], variables: Any) -> bool:
    """
    Evaluate a condition against a variable mapping.

    Missing data is falsy: a reference to an absent path, or a property
    read through a missing value, yields False rather than raising.

    Args:
        condition: Condition source text or an already parsed tree
        variables: Variable mapping to resolve paths against

    Returns:
        Boolean result

    Raises:
        ConditionSyntaxError: If a string condition is malformed
    """
    node = parse_condition(condition) if isinstance(condition, str) else condition
    result = _truth(node, variables)
    logger.debug(f"Condition {condition!r} evaluated to {result}")
    return result
