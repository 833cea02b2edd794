"""ORM models for database persistence."""

from .base import Base, SqlalchemyBase
from .mention import MergeRequestMention, UnfurlState
from .user import SlackAppUser

__all__ = [
    "Base",
    "SqlalchemyBase",
    "MergeRequestMention",
    "SlackAppUser",
    "UnfurlState",
]
