"""
Drift Engine - Enumerations shared by models and schemas.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Enum as SAEnum


class Mode(str, Enum):
    """Relationship namespace.  Dating and friends are independent graphs."""

    DATING = "dating"
    FRIENDS = "friends"


class LookingFor(str, Enum):
    DATING = "dating"
    FRIENDS = "friends"
    BOTH = "both"

    def accepts(self, mode: Mode) -> bool:
        return self is LookingFor.BOTH or self.value == mode.value

    @classmethod
    def compatible_with(cls, mode: Mode) -> list["LookingFor"]:
        return [lf for lf in cls if lf.accepts(mode)]


class SwipeDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"  # super like

    @property
    def is_like(self) -> bool:
        return self in (SwipeDirection.RIGHT, SwipeDirection.UP)


LIKE_DIRECTIONS: tuple[SwipeDirection, ...] = (SwipeDirection.RIGHT, SwipeDirection.UP)


class ConversationType(str, Enum):
    DATING = "dating"
    FRIENDS = "friends"
    ACTIVITY = "activity"

    @classmethod
    def for_mode(cls, mode: Mode) -> "ConversationType":
        return cls(mode.value)


class FriendRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ParticipantState(str, Enum):
    ACTIVE = "active"
    HIDDEN = "hidden"
    LEFT = "left"


class ReportCategory(str, Enum):
    SPAM = "spam"
    HARASSMENT = "harassment"
    INAPPROPRIATE = "inappropriate"
    SCAM = "scam"
    OTHER = "other"


class ReportContentType(str, Enum):
    PROFILE = "profile"
    MESSAGE = "message"


def enum_column(enum_cls: type[Enum]) -> SAEnum:
    """Store the enum's *value* as a short VARCHAR (no native DB enum)."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )
