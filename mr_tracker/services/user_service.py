"""Service for managing Slack users and their auto-assignment preferences."""

import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateUser, UnresolvedIdentity
from ..orm.user import SlackAppUser
from .database import DatabaseService

if TYPE_CHECKING:
    from ..slack_client import SlackClient
    from .gitlab_service import GitLabService, GitLabUser

logger = logging.getLogger(__name__)


class UserService:
    """Preference store keyed by Slack user id, with lazy GitLab identity resolution."""

    def __init__(
        self,
        db_service: DatabaseService,
        slack_client: "SlackClient",
        gitlab_service: "GitLabService",
    ):
        self.db_service = db_service
        self.slack_client = slack_client
        self.gitlab_service = gitlab_service

    async def find(self, slack_user_id: str) -> Optional[SlackAppUser]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SlackAppUser).where(SlackAppUser.slack_user_id == slack_user_id)
            )
            return result.scalar_one_or_none()

    async def create(
        self,
        slack_user_id: str,
        slack_username: str,
        gitlab_user: "GitLabUser",
        auto_assign_as_reviewer: Optional[bool] = None,
        auto_assign_as_assignee: Optional[bool] = None,
    ) -> SlackAppUser:
        """
        Store a new Slack user bound to a GitLab user.

        Raises:
            DuplicateUser: If the Slack user, Slack username, GitLab user id or
                GitLab username is already taken.
        """
        user = SlackAppUser(
            slack_user_id=slack_user_id,
            slack_username=slack_username,
            gitlab_user_id=gitlab_user.id,
            gitlab_name=gitlab_user.name,
            gitlab_username=gitlab_user.username,
            auto_assign_as_reviewer=auto_assign_as_reviewer,
            auto_assign_as_assignee=auto_assign_as_assignee,
        )
        try:
            async with self.db_service.session() as session:
                session.add(user)
        except IntegrityError as e:
            raise DuplicateUser(slack_user_id, gitlab_user.id) from e

        logger.debug(
            "User created for slack user %s bound to gitlab user %s",
            slack_user_id,
            gitlab_user.username,
        )
        return user

    async def set_auto_assign_reviewer(
        self, slack_user_id: str, value: Optional[bool]
    ) -> Optional[SlackAppUser]:
        return await self._set_preference(slack_user_id, "auto_assign_as_reviewer", value)

    async def set_auto_assign_assignee(
        self, slack_user_id: str, value: Optional[bool]
    ) -> Optional[SlackAppUser]:
        return await self._set_preference(slack_user_id, "auto_assign_as_assignee", value)

    async def _set_preference(
        self, slack_user_id: str, field: str, value: Optional[bool]
    ) -> Optional[SlackAppUser]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(SlackAppUser).where(SlackAppUser.slack_user_id == slack_user_id)
            )
            user = result.scalar_one_or_none()
            if user is None:
                logger.warning(
                    "Cannot set %s for slack user %s, the user does not exist", field, slack_user_id
                )
                return None
            setattr(user, field, value)

        logger.info("Set %s=%s for slack user %s", field, value, slack_user_id)
        return user

    async def resolve_user(self, slack_user_id: str, project_path: str) -> SlackAppUser:
        """
        Get the stored user, creating it on first sight.

        A new user is matched by Slack username against the members of the
        merge request's GitLab project.

        Args:
            slack_user_id: Slack user that triggered the event.
            project_path: Un-encoded GitLab project path used for the member lookup.

        Returns:
            The stored or newly created user.

        Raises:
            UnresolvedIdentity: If no GitLab project member matches the Slack user.
        """
        user = await self.find(slack_user_id)
        if user is not None:
            return user

        slack_user = await self.slack_client.fetch_user(slack_user_id)
        if not slack_user:
            raise UnresolvedIdentity(slack_user_id, "user not found in Slack")

        slack_username = slack_user.get("name")
        if not slack_username:
            raise UnresolvedIdentity(slack_user_id, "Slack user has no username")

        gitlab_user = await self.gitlab_service.find_project_member(project_path, slack_username)
        if gitlab_user is None:
            raise UnresolvedIdentity(
                slack_user_id,
                f"no member named '{slack_username}' in GitLab project {project_path}",
            )

        try:
            return await self.create(slack_user_id, slack_username, gitlab_user)
        except DuplicateUser:
            # Another event for the same user won the insert
            user = await self.find(slack_user_id)
            if user is None:
                raise UnresolvedIdentity(
                    slack_user_id,
                    f"GitLab user {gitlab_user.username} is already linked to another Slack user",
                )
            return user
