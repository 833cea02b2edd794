"""Service layer for business logic and database operations."""

from .database import DatabaseService, init_db_service
from .gitlab_service import GitLabService, MembershipResult, MergeRequestDetails
from .mention_service import MentionService
from .user_service import UserService
from .unfurl_service import UnfurlService
from .event_router import MentionEventRouter

__all__ = [
    "DatabaseService",
    "GitLabService",
    "MembershipResult",
    "MentionEventRouter",
    "MentionService",
    "MergeRequestDetails",
    "UnfurlService",
    "UserService",
    "init_db_service",
]
