from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from devops_workflows.engine.models import Condition, StepAction

logger = logging.getLogger(__name__)


def condition_matches(condition: Condition, output: str, exit_code: int) -> bool:
    """Check one condition against a step's captured output and exit code.

    ``contains`` and ``regex`` look at the raw output; ``equals``,
    ``starts_with`` and ``ends_with`` compare against the whitespace-trimmed
    output. An invalid regex or an unknown condition type never matches.
    """

    kind = condition.type
    if kind == "contains":
        return condition.value in output
    if kind == "equals":
        return output.strip() == condition.value
    if kind == "starts_with":
        return output.strip().startswith(condition.value)
    if kind == "ends_with":
        return output.strip().endswith(condition.value)
    if kind == "regex":
        try:
            return re.search(condition.value, output) is not None
        except re.error as e:
            logger.warning(
                "Invalid condition regex",
                extra={"pattern": condition.value, "error": str(e)},
            )
            return False
    if kind == "exit_code":
        return str(exit_code) == condition.value.strip()

    logger.warning("Unknown condition type", extra={"condition_type": kind})
    return False


def evaluate_conditions(
    conditions: Sequence[Condition], output: str, exit_code: int
) -> StepAction | None:
    """Return the action of the first matching condition, if any."""

    for condition in conditions:
        if condition_matches(condition, output, exit_code):
            return condition.action
    return None
