"""Capacity constraints as composable specifications.

A constraint is a small immutable value evaluated against an occupancy
snapshot (confirmed count, waitlist count, fields available). The set of
variants is closed: five atomic rules plus the boolean combinators And, Or and
Not. Evaluation, description and naming are single functions that match on
the variant, so adding a variant means touching them in one place.

    spec = and_spec(Max(18), Min(12))
    spec = and_spec(spec, Even())
    is_satisfied_by(spec, Occupancy(confirmed_count=14))   # True

Rule strings (``"max_18,min_12,even"``) are turned into these values by
``sideout.scheduling.parser``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Optional, Union


@dataclass(frozen=True)
class Occupancy:
    """Snapshot of a session's registrations that constraints are evaluated against."""

    confirmed_count: int = 0
    waitlist_count: int = 0
    fields_available: int = 1

    def with_one_more(self) -> "Occupancy":
        """Hypothetical state after confirming one more player."""
        return replace(self, confirmed_count=self.confirmed_count + 1)


@dataclass(frozen=True)
class Max:
    value: int


@dataclass(frozen=True)
class Min:
    value: int


@dataclass(frozen=True)
class Even:
    pass


@dataclass(frozen=True)
class PerField:
    players_per_field: int


@dataclass(frozen=True)
class DivisibleBy:
    divisor: int


@dataclass(frozen=True)
class And:
    left: "Constraint"
    right: "Constraint"


@dataclass(frozen=True)
class Or:
    left: "Constraint"
    right: "Constraint"


@dataclass(frozen=True)
class Not:
    spec: "Constraint"


Atomic = Union[Max, Min, Even, PerField, DivisibleBy]
Constraint = Union[Max, Min, Even, PerField, DivisibleBy, And, Or, Not]

ATOMIC_TYPES = (Max, Min, Even, PerField, DivisibleBy)


def is_satisfied_by(spec: Constraint, occupancy: Occupancy) -> bool:
    """Evaluate a constraint against an occupancy snapshot."""
    count = occupancy.confirmed_count
    match spec:
        case Max(value=n):
            return count <= n
        case Min(value=n):
            return count >= n
        case Even():
            return count % 2 == 0
        case PerField(players_per_field=k):
            return count <= k * occupancy.fields_available
        case DivisibleBy(divisor=d):
            return count % d == 0
        case And(left=a, right=b):
            return is_satisfied_by(a, occupancy) and is_satisfied_by(b, occupancy)
        case Or(left=a, right=b):
            return is_satisfied_by(a, occupancy) or is_satisfied_by(b, occupancy)
        case Not(spec=inner):
            return not is_satisfied_by(inner, occupancy)
    raise TypeError(f"Not a constraint: {spec!r}")


def describe(spec: Constraint, nested: bool = False) -> str:
    """Human-readable description. Top-level AND lists read as "A, B, C"."""
    match spec:
        case Max(value=n):
            return f"Maximum {n} players"
        case Min(value=n):
            return f"Minimum {n} players required"
        case Even():
            return "Must have even number of players"
        case PerField(players_per_field=k):
            return f"{k} players per field"
        case DivisibleBy(divisor=d):
            return f"Number of players must be divisible by {d}"
        case And():
            parts = [describe(s, nested=True) for s in flatten_and(spec)]
            if nested:
                return "(" + " AND ".join(parts) + ")"
            return ", ".join(parts)
        case Or(left=a, right=b):
            return f"({describe(a, nested=True)} OR {describe(b, nested=True)})"
        case Not(spec=inner):
            return f"NOT ({describe(inner)})"
    raise TypeError(f"Not a constraint: {spec!r}")


def name(spec: Constraint) -> str:
    """Stable identifier used when serializing constraints (API, logs)."""
    match spec:
        case Max():
            return "max_capacity"
        case Min():
            return "min_capacity"
        case Even():
            return "even_number"
        case PerField():
            return "per_field"
        case DivisibleBy():
            return "divisible_by"
        case And():
            return "and"
        case Or():
            return "or"
        case Not():
            return "not"
    raise TypeError(f"Not a constraint: {spec!r}")


def to_token(spec: Atomic) -> str:
    """Render an atomic constraint back to its rule-string token."""
    match spec:
        case Max(value=n):
            return f"max_{n}"
        case Min(value=n):
            return f"min_{n}"
        case Even():
            return "even"
        case PerField(players_per_field=k):
            return f"per_field_{k}"
        case DivisibleBy(divisor=d):
            return f"divisible_by_{d}"
    raise ValueError(f"{name(spec)} has no rule-string form")


def to_rule_string(spec: Constraint) -> str:
    """Render an AND-list of atomic constraints as a rule string ("max_18,min_12")."""
    return ",".join(to_token(s) for s in flatten_and(spec))


def flatten_and(spec: Constraint) -> list[Constraint]:
    """Top-level AND branches, left to right. Anything else is a single branch."""
    if isinstance(spec, And):
        return flatten_and(spec.left) + flatten_and(spec.right)
    return [spec]


def serialize(spec: Constraint) -> dict:
    return {"name": name(spec), "description": describe(spec)}


# --- Composition ---


def and_spec(spec: Constraint, other: Constraint) -> And:
    return And(spec, other)


def or_spec(spec: Constraint, other: Constraint) -> Or:
    return Or(spec, other)


def not_spec(spec: Constraint) -> Not:
    return Not(spec)


def and_not(spec: Constraint, other: Constraint) -> And:
    """spec AND NOT other, e.g. and_not(Max(18), Even()) allows odd counts up to 18."""
    return And(spec, Not(other))


def or_not(spec: Constraint, other: Constraint) -> Or:
    return Or(spec, Not(other))


def all_of(specs: Iterable[Constraint]) -> Optional[Constraint]:
    """Left-fold a list with AND. Returns None for an empty list, the item itself for one."""
    result: Optional[Constraint] = None
    for spec in specs:
        result = spec if result is None else And(result, spec)
    return result
