"""Capacity rules, waitlist priority and tokens. Pure functions, no database access."""
from sideout.scheduling.capacity import CapacityEvaluator, evaluator_for
from sideout.scheduling.constraints import Occupancy
from sideout.scheduling.events import ChangeEvent, EventKind
from sideout.scheduling.parser import ConstraintParseError, parse_constraints, parse_to_specification

__all__ = [
    "CapacityEvaluator",
    "ChangeEvent",
    "ConstraintParseError",
    "EventKind",
    "Occupancy",
    "evaluator_for",
    "parse_constraints",
    "parse_to_specification",
]
