"""Change events returned by registration operations for an external relay."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    PLAYER_REGISTERED = "player_registered"
    PLAYER_CANCELLED = "player_cancelled"
    PLAYER_PROMOTED = "player_promoted"
    ATTENDANCE_MARKED = "attendance_marked"


@dataclass(frozen=True)
class ChangeEvent:
    session_id: int
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "eventKind": self.kind.value, "payload": self.payload}
