"""
Drift Engine - ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from drift_engine.models.user import User
from drift_engine.models.profile import Profile
from drift_engine.models.match import Match, Swipe
from drift_engine.models.social import Block, FriendRequest
from drift_engine.models.conversation import Conversation, ConversationParticipant, Message
from drift_engine.models.report import Report

__all__ = [
    "User",
    "Profile",
    "Match",
    "Swipe",
    "FriendRequest",
    "Block",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Report",
]
