"""Command templates with ``{NAME}`` placeholders.

Example::

    aws ec2 run-instances --image-id {AMI_ID} --instance-type {INSTANCE_TYPE}

Only ``UPPER_SNAKE_CASE`` names count as required placeholders. Substitution is
a single pass, so a substituted value is never scanned again for placeholders,
and anything that has no value stays in the text verbatim.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

VARIABLE_PATTERN = re.compile(r"\{([A-Z_][A-Z0-9_]*)\}")

# Any key of the value mapping may be substituted, including names like
# `aws-region` that never count as required placeholders.
_SUBSTITUTION_PATTERN = re.compile(r"\{([^{}]+)\}")


def extract_variables(command: str) -> list[str]:
    """Return placeholder names in order of first appearance, without duplicates."""

    seen: dict[str, None] = {}
    for match in VARIABLE_PATTERN.finditer(command):
        seen.setdefault(match.group(1), None)
    return list(seen)


def substitute(command: str, values: Mapping[str, str]) -> str:
    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return _SUBSTITUTION_PATTERN.sub(_replace, command)


def missing_variables(command: str, values: Mapping[str, str]) -> list[str]:
    """Return required placeholder names that have no entry in ``values``."""

    return [name for name in extract_variables(command) if name not in values]


def preview(command: str, values: Mapping[str, str]) -> str:
    """Substitute only non-empty values so blanks stay visible as placeholders."""

    return substitute(command, {k: v for k, v in values.items() if v != ""})
