"""Service for managing merge request mentions in Slack messages."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateMention
from ..orm.base import utcnow
from ..orm.mention import MergeRequestMention, UnfurlState
from .database import DatabaseService

logger = logging.getLogger(__name__)


class MentionService:
    """Durable mapping between Slack messages and merge requests."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def record_mention(
        self,
        merge_request_id: str,
        merge_request_link: str,
        project_path: str,
        slack_message_ts: str,
        slack_channel: str,
        created_at: Optional[datetime] = None,
    ) -> MergeRequestMention:
        """
        Record that a merge request link was posted in a Slack message.

        Raises:
            DuplicateMention: If the link was already recorded for this message.
        """
        mention = MergeRequestMention(
            merge_request_id=merge_request_id,
            merge_request_link=merge_request_link,
            project_path=project_path,
            slack_message_ts=slack_message_ts,
            slack_channel=slack_channel,
            created_at=created_at or utcnow(),
            unfurl_state=UnfurlState.NEVER_APPLIED,
        )
        try:
            async with self.db_service.session() as session:
                session.add(mention)
        except IntegrityError as e:
            raise DuplicateMention(merge_request_link, slack_message_ts) from e

        logger.debug("Recorded mention %r", mention)
        return mention

    async def find_mentions_for_merge_request(
        self, merge_request_id: str, project_path: str
    ) -> list[MergeRequestMention]:
        """Get all mentions of a merge request, in no particular order."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(MergeRequestMention).where(
                    MergeRequestMention.project_path == project_path,
                    MergeRequestMention.merge_request_id == str(merge_request_id),
                )
            )
            return list(result.scalars().all())

    async def find_mention_by_message(self, slack_message_ts: str) -> Optional[MergeRequestMention]:
        """Get the mention recorded for a Slack message, if any."""
        async with self.db_service.session() as session:
            result = await session.execute(
                select(MergeRequestMention)
                .where(MergeRequestMention.slack_message_ts == slack_message_ts)
                .limit(1)
            )
            return result.scalars().first()

    async def find_all_mentions(self) -> list[MergeRequestMention]:
        async with self.db_service.session() as session:
            result = await session.execute(
                select(MergeRequestMention).order_by(MergeRequestMention.created_at)
            )
            return list(result.scalars().all())

    async def purge_older_than(self, cutoff: datetime) -> int:
        """
        Delete mentions created strictly before the cutoff.

        Returns:
            Number of deleted mentions.
        """
        async with self.db_service.session() as session:
            result = await session.execute(
                delete(MergeRequestMention).where(MergeRequestMention.created_at < cutoff)
            )
            return result.rowcount or 0

    async def mark_unfurl_applied(
        self, mention: MergeRequestMention
    ) -> Optional[MergeRequestMention]:
        """
        Record a successful unfurl push for a mention.

        The first push moves the mention from never applied to applied, any
        later push only bumps the update timestamp. A mention deleted in the
        meantime is skipped.

        Returns:
            The updated mention, or None if it no longer exists.
        """
        async with self.db_service.session() as session:
            result = await session.execute(
                select(MergeRequestMention).where(
                    MergeRequestMention.merge_request_link == mention.merge_request_link,
                    MergeRequestMention.slack_message_ts == mention.slack_message_ts,
                )
            )
            stored = result.scalar_one_or_none()
            if stored is None:
                logger.info(
                    "Skip marking unfurl applied, mention of %s in message %s no longer exists",
                    mention.merge_request_link,
                    mention.slack_message_ts,
                )
                return None

            now = utcnow()
            if stored.unfurl_applied:
                stored.unfurl_state = UnfurlState.REFRESHED
                stored.unfurl_updated_at = now
            else:
                stored.unfurl_state = UnfurlState.APPLIED
                stored.unfurl_applied_at = now

        mention.unfurl_state = stored.unfurl_state
        mention.unfurl_applied_at = stored.unfurl_applied_at
        mention.unfurl_updated_at = stored.unfurl_updated_at
        return stored
