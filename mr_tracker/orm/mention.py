"""MergeRequestMention model for tracking merge request links posted in Slack."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import SqlalchemyBase


class UnfurlState(enum.Enum):
    """Lifecycle of the status unfurl attached to a mentioning message."""

    NEVER_APPLIED = "never_applied"
    APPLIED = "applied"
    REFRESHED = "refreshed"


class MergeRequestMention(SqlalchemyBase):
    """A merge request link observed in a specific Slack message."""

    __tablename__ = "merge_request_mentions"
    __table_args__ = (
        UniqueConstraint(
            "merge_request_link", "slack_message_ts", name="uq_mention_link_message_ts"
        ),
        Index("idx_mention_merge_request", "project_path", "merge_request_id", "slack_message_ts"),
        Index("idx_mention_message_ts", "slack_message_ts"),
        Index("idx_mention_created_at", "created_at"),
    )

    # Merge request identity
    merge_request_id: Mapped[str] = mapped_column(String, nullable=False)
    merge_request_link: Mapped[str] = mapped_column(String, nullable=False)
    project_path: Mapped[str] = mapped_column(String, nullable=False)

    # Slack message identity
    slack_message_ts: Mapped[str] = mapped_column(String, nullable=False)
    slack_channel: Mapped[str] = mapped_column(String, nullable=False)

    # Unfurl outcome
    unfurl_state: Mapped[UnfurlState] = mapped_column(
        Enum(UnfurlState, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UnfurlState.NEVER_APPLIED,
    )
    unfurl_applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    unfurl_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def unfurl_applied(self) -> bool:
        """True once a channel unfurl has been pushed for this message."""
        return self.unfurl_state is not None and self.unfurl_state != UnfurlState.NEVER_APPLIED

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<MergeRequestMention(id={self.id}, project={self.project_path}, "
            f"mr={self.merge_request_id}, channel={self.slack_channel}, "
            f"ts={self.slack_message_ts}, unfurl={self.unfurl_state})>"
        )
