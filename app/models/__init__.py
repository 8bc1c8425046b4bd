"""
DevMatch — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.profile import Profile
from app.models.match import Match, Swipe
from app.models.message import Message

__all__ = [
    "Profile",
    "Swipe",
    "Match",
    "Message",
]
