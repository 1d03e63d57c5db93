"""
Handler: aggregate-reviews

Merges the outputs of parallel review gates into one review result.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..context import ExecutionContext
from ..errors import StepExecutionError
from ..review import ReviewResult, Severity, aggregate_gate_results
from .registry import HandlerDeps

logger = logging.getLogger(__name__)


def _collect_gates(input: Any) -> List[Tuple[str, Any]]:
    if isinstance(input, dict):
        # Explicit options form: {"reviews": ..., "minSeverity": ...}
        if "reviews" in input:
            return _collect_gates(input["reviews"])
        return list(input.items())
    if isinstance(input, list):
        return [(f"gate-{i + 1}", item) for i, item in enumerate(input)]
    raise StepExecutionError(
        "aggregate-reviews", f"expected a mapping or list of review results, got {type(input).__name__}"
    )


async def aggregate_reviews_handler(
    context: ExecutionContext,
    input: Any = None,
    deps: Optional[HandlerDeps] = None,
) -> Dict[str, Any]:
    """
    Aggregate review gate outputs.

    Args:
        context: Execution context
        input: Mapping of gate name to review result, a list of review results,
               or {"reviews": ..., "minSeverity": ...}

    Returns:
        Aggregated review with camelCase keys

    Raises:
        StepExecutionError: If the input is missing or a review is malformed
    """
    if input is None:
        raise StepExecutionError("aggregate-reviews", "aggregate-reviews handler requires review results as input")

    min_severity = Severity.IMPORTANT
    if isinstance(input, dict) and input.get("minSeverity"):
        try:
            min_severity = Severity(input["minSeverity"])
        except ValueError as e:
            raise StepExecutionError("aggregate-reviews", f"unknown severity: {input['minSeverity']}") from e

    gates = []
    for gate, raw in _collect_gates(input):
        if raw is None:
            logger.warning(f"Review gate {gate} produced no result, skipping")
            continue
        try:
            gates.append((gate, ReviewResult.model_validate(raw)))
        except PydanticValidationError as e:
            raise StepExecutionError("aggregate-reviews", f"invalid review from gate {gate}: {e}") from e

    aggregated = aggregate_gate_results(gates, min_severity)
    logger.info(
        f"Aggregated {len(gates)} review gates: {aggregated.assessment.value}, "
        f"{len(aggregated.issues)} issues"
    )
    return aggregated.to_output()
