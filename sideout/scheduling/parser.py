"""Rule-string parser: "max_18,min_12,even" -> constraint values.

Tokens are combined with AND. There is no textual form for OR/NOT; build those
with the helpers in ``sideout.scheduling.constraints``.

Stored rule strings are parsed leniently (unknown tokens are dropped and logged
as a configuration-integrity problem). New strings are validated strictly
before they are written, so a typo never reaches the database.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from sideout.scheduling.constraints import (
    Constraint,
    DivisibleBy,
    Even,
    Max,
    Min,
    PerField,
    all_of,
)

logger = logging.getLogger("sideout.constraints")

RULE_STRING_PATTERN = re.compile(r"^[a-z_0-9]+(,[a-z_0-9]+)*$")

_VALUE_TOKENS = {
    "max": Max,
    "min": Min,
    "per_field": PerField,
    "divisible_by": DivisibleBy,
}
_TOKEN_RE = re.compile(r"^(max|min|per_field|divisible_by)_(\d+)$")


class ConstraintParseError(ValueError):
    """Rule string (or one of its tokens) is not valid."""

    def __init__(self, message: str, tokens: Optional[list[str]] = None):
        super().__init__(message)
        self.tokens = tokens or []


def parse_token(token: str, fields_available: int = 1) -> Optional[Constraint]:
    """Parse one token. Returns None for unknown or malformed tokens."""
    if token == "even":
        return Even()
    m = _TOKEN_RE.match(token)
    if not m:
        return None
    kind, value = m.group(1), int(m.group(2))
    if kind == "divisible_by" and value == 0:
        return None
    return _VALUE_TOKENS[kind](value)


def _split(rule_string: str) -> list[str]:
    return [t.strip() for t in (rule_string or "").split(",") if t.strip()]


def parse_constraints(
    rule_string: str, fields_available: int = 1, strict: bool = False
) -> list[Constraint]:
    """Parse a rule string into its list of constraints (one per token, not composed).

    fields_available is accepted as context for per-field rules; the per-field
    limit itself is evaluated against the occupancy snapshot.
    In lenient mode bad tokens are dropped and logged; with strict=True they raise.
    """
    constraints: list[Constraint] = []
    bad: list[str] = []
    for token in _split(rule_string):
        spec = parse_token(token, fields_available)
        if spec is None:
            bad.append(token)
        else:
            constraints.append(spec)
    if bad:
        if strict:
            raise ConstraintParseError(
                f"Unknown constraint(s): {', '.join(bad)}", tokens=bad
            )
        logger.error(
            "Capacity rules %r contain unparseable token(s) %s; they are ignored",
            rule_string,
            bad,
        )
    return constraints


def parse_to_specification(
    rule_string: str, fields_available: int = 1, strict: bool = False
) -> Optional[Constraint]:
    """Parse and AND-compose. Returns None when nothing parses."""
    return all_of(parse_constraints(rule_string, fields_available, strict=strict))


def validate_rule_string(rule_string: Optional[str]) -> list[str]:
    """Write-time validation. Returns a list of error messages (empty when valid)."""
    if rule_string is None or not rule_string.strip():
        return ["cannot be empty"]
    if not RULE_STRING_PATTERN.match(rule_string):
        return ["must be comma-separated constraint names (e.g. 'max_18,min_12')"]
    try:
        parse_constraints(rule_string, strict=True)
    except ConstraintParseError as e:
        return [str(e)]
    return []


def available_constraints() -> list[dict]:
    """Supported constraint tokens, for building rule selectors in a UI."""
    return [
        {
            "name": "max_capacity",
            "description": "Maximum number of players allowed",
            "example": "max_18",
            "format": "max_N (where N is a number)",
        },
        {
            "name": "min_capacity",
            "description": "Minimum number of players required",
            "example": "min_12",
            "format": "min_N (where N is a number)",
        },
        {
            "name": "even_number",
            "description": "Require even number of players",
            "example": "even",
            "format": "even",
        },
        {
            "name": "per_field",
            "description": "Players per field (capacity scales with fields available)",
            "example": "per_field_9",
            "format": "per_field_N (where N is players per field)",
        },
        {
            "name": "divisible_by",
            "description": "Number must be divisible by value",
            "example": "divisible_by_6",
            "format": "divisible_by_N (where N is the divisor)",
        },
    ]
