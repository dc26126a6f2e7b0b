"""Database models."""
from sideout.models.base import Base, get_async_session, init_db
from sideout.models.player import Player
from sideout.models.session import TrainingSession
from sideout.models.registration import Registration
from sideout.models.user import User  # noqa: F401 - for metadata

__all__ = [
    "Base",
    "Player",
    "TrainingSession",
    "Registration",
    "User",
    "get_async_session",
    "init_db",
]
