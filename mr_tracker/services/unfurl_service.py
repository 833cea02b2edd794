"""Service keeping merge request unfurls in Slack messages up to date."""

import logging
from typing import Any, Optional

from ..orm.mention import MergeRequestMention
from ..slack_client import SlackClient
from ..unfurl import build_channel_unfurl_blocks, build_composer_unfurl_blocks
from .gitlab_service import GitLabService, MergeRequestDetails
from .mention_service import MentionService

logger = logging.getLogger(__name__)


def has_unfurl_attachment(message: Optional[dict[str, Any]], link: str) -> bool:
    """Check whether a message still carries the app unfurl for ``link``."""
    if not message:
        return False
    return any(
        attachment.get("is_app_unfurl") and attachment.get("app_unfurl_url") == link
        for attachment in message.get("attachments") or []
    )


class UnfurlService:
    """Renders, pushes and records merge request status unfurls."""

    def __init__(
        self,
        slack_client: SlackClient,
        gitlab_service: GitLabService,
        mention_service: MentionService,
        reviewer_reaction: str = "eyes",
    ):
        self.slack_client = slack_client
        self.gitlab_service = gitlab_service
        self.mention_service = mention_service
        self.reviewer_reaction = reviewer_reaction

    async def push_channel_unfurl(
        self, mention: MergeRequestMention, details: MergeRequestDetails
    ) -> bool:
        """
        Attach or replace the status unfurl on the mentioning message.

        On success the mention moves out of the never applied state, which
        is what makes it eligible for later refreshes.

        Returns:
            True if Slack accepted the unfurl.
        """
        blocks = build_channel_unfurl_blocks(
            mention.merge_request_link, details, self.reviewer_reaction
        )
        ok = await self.slack_client.unfurl_message(
            mention.slack_channel,
            mention.slack_message_ts,
            {mention.merge_request_link: {"blocks": blocks}},
        )
        if not ok:
            logger.warning(
                "Unfurl of %s in message %s was not applied",
                mention.merge_request_link,
                mention.slack_message_ts,
            )
            return False

        first_time = not mention.unfurl_applied
        await self.mention_service.mark_unfurl_applied(mention)
        logger.info(
            "%s unfurl of %s in message %s",
            "Added" if first_time else "Updated",
            mention.merge_request_link,
            mention.slack_message_ts,
        )
        return True

    async def push_composer_unfurl(self, unfurl_id: str, link: str, title: str) -> bool:
        """Preview a merge request in the message composer. Nothing is stored."""
        return await self.slack_client.unfurl_composer(
            unfurl_id, {link: {"blocks": build_composer_unfurl_blocks(link, title)}}
        )

    async def reconcile(self, mention: MergeRequestMention) -> bool:
        """
        Refresh the unfurl of a mention with the current merge request state.

        Skipped when no unfurl was ever applied, when the unfurl was removed
        from the message, or when the merge request cannot be fetched.

        Returns:
            True if an updated unfurl was pushed.
        """
        if not mention.unfurl_applied:
            logger.debug(
                "Skip refreshing unfurl in message %s, it was never unfurled",
                mention.slack_message_ts,
            )
            return False

        message = await self.slack_client.fetch_message(
            mention.slack_channel, mention.slack_message_ts
        )
        if not has_unfurl_attachment(message, mention.merge_request_link):
            logger.debug(
                "Skip refreshing unfurl in message %s because attachment not found",
                mention.slack_message_ts,
            )
            return False

        details = await self.gitlab_service.fetch_merge_request(
            mention.project_path, mention.merge_request_id
        )
        if details is None:
            logger.debug(
                "Skip refreshing unfurl of %s, merge request details unavailable",
                mention.merge_request_link,
            )
            return False

        return await self.push_channel_unfurl(mention, details)
