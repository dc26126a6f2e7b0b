"""Capacity evaluation: can one more player be confirmed, and are the rules met now."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sideout.scheduling.constraints import (
    Constraint,
    Max,
    Occupancy,
    describe,
    flatten_and,
    is_satisfied_by,
    serialize,
)
from sideout.scheduling.parser import parse_constraints

logger = logging.getLogger("sideout.constraints")

# Reported by max_capacity() when no Max rule exists
UNLIMITED_CAPACITY = 999
INVALID_RULES_DESCRIPTION = "Invalid capacity rules"


@dataclass
class CapacityEvaluator:
    """Evaluates a session's top-level AND-branches against occupancy snapshots.

    ``valid`` is False when the stored rule string produced no constraints at
    all; such a session admits nobody until its rules are fixed.
    """

    constraints: list[Constraint] = field(default_factory=list)
    valid: bool = True

    @classmethod
    def from_rule_string(cls, rule_string: str, fields_available: int = 1) -> "CapacityEvaluator":
        constraints = parse_constraints(rule_string, fields_available)
        if not constraints:
            logger.error("Capacity rules %r yield no constraints; admission is closed", rule_string)
            return cls(constraints=[], valid=False)
        return cls(constraints=constraints)

    @classmethod
    def from_specification(cls, spec: Constraint) -> "CapacityEvaluator":
        """Evaluator for a directly-built specification (e.g. one using OR/NOT)."""
        return cls(constraints=flatten_and(spec))

    def all_satisfied(self, occupancy: Occupancy) -> bool:
        if not self.valid:
            return False
        return all(is_satisfied_by(c, occupancy) for c in self.constraints)

    def can_add_player(self, occupancy: Occupancy) -> bool:
        """One-step lookahead: are the rules met with one more confirmed player?

        Only the next state is checked, so e.g. divisible_by_6 at 11 confirmed
        still admits the 12th player.
        """
        return self.all_satisfied(occupancy.with_one_more())

    def unsatisfied(self, occupancy: Occupancy) -> list[Constraint]:
        return [c for c in self.constraints if not is_satisfied_by(c, occupancy)]

    def describe(self) -> str:
        if not self.valid:
            return INVALID_RULES_DESCRIPTION
        return ", ".join(describe(c, nested=True) for c in self.constraints)

    def max_capacity(self) -> int:
        for c in self.constraints:
            if isinstance(c, Max):
                return c.value
        return UNLIMITED_CAPACITY

    def status(self, occupancy: Occupancy) -> dict:
        """Capacity status payload: counts, admission, satisfaction and description."""
        return {
            "confirmed": occupancy.confirmed_count,
            "waitlist": occupancy.waitlist_count,
            "can_add_player": self.can_add_player(occupancy),
            "constraints_satisfied": self.all_satisfied(occupancy),
            "unsatisfied_constraints": [serialize(c) for c in self.unsatisfied(occupancy)],
            "description": self.describe(),
        }


def evaluator_for(rule_string: Optional[str], fields_available: int = 1) -> CapacityEvaluator:
    return CapacityEvaluator.from_rule_string(rule_string or "", fields_available)
