"""SlackAppUser model linking a Slack user to a GitLab user and their preferences."""

from typing import Optional

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class SlackAppUser(SqlalchemyBase):
    """A Slack user bound to exactly one GitLab user."""

    __tablename__ = "slack_app_users"
    __table_args__ = (
        UniqueConstraint("slack_user_id", "gitlab_user_id", name="uq_slack_app_user_identity"),
    )

    slack_user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    slack_username: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    gitlab_user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    gitlab_name: Mapped[str] = mapped_column(String, nullable=False)
    gitlab_username: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    # Preferences, None until the user answers a prompt
    auto_assign_as_reviewer: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    auto_assign_as_assignee: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<SlackAppUser(slack_user_id={self.slack_user_id}, "
            f"gitlab_username={self.gitlab_username}, "
            f"reviewer={self.auto_assign_as_reviewer}, assignee={self.auto_assign_as_assignee})>"
        )
