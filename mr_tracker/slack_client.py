"""Slack Web API wrapper for the mention tracker."""

import logging
from typing import Any, Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.webhook.async_client import AsyncWebhookClient

logger = logging.getLogger(__name__)

# Reaction errors that mean the message already has the desired state
IDEMPOTENT_REACTION_ERRORS = {"already_reacted", "no_reaction"}


def _error_code(error: SlackApiError) -> str:
    response = getattr(error, "response", None)
    if response is None:
        return str(error)
    return response.get("error", str(error))


class SlackClient:
    """Thin async wrapper around the Slack Web API calls the tracker needs.

    Every method logs and swallows ``SlackApiError`` so callers only see a
    negative result (``None`` or ``False``).
    """

    def __init__(self, token: str, client: Optional[AsyncWebClient] = None) -> None:
        self.client = client or AsyncWebClient(token=token)

    async def fetch_message(self, channel: str, message_ts: str) -> Optional[dict[str, Any]]:
        """Fetch the single message at ``message_ts`` from channel history."""
        try:
            response = await self.client.conversations_history(
                channel=channel, latest=message_ts, inclusive=True, limit=1
            )
        except SlackApiError as e:
            logger.error(
                "Failed to fetch message %s in channel %s: %s", message_ts, channel, _error_code(e)
            )
            return None

        messages = response.get("messages") or []
        if not messages:
            logger.debug("Message %s not found in channel %s", message_ts, channel)
            return None
        return messages[0]

    async def fetch_user(self, user_id: str) -> Optional[dict[str, Any]]:
        """Fetch a Slack user profile (``users.info``)."""
        try:
            response = await self.client.users_info(user=user_id)
        except SlackApiError as e:
            logger.error("Cannot find Slack user %s: %s", user_id, _error_code(e))
            return None
        return response.get("user")

    async def post_ephemeral(
        self,
        channel: str,
        user: str,
        text: str,
        attachments: Optional[list[dict[str, Any]]] = None,
    ) -> bool:
        """Post a message only visible to ``user``."""
        try:
            await self.client.chat_postEphemeral(
                channel=channel, user=user, text=text, attachments=attachments
            )
        except SlackApiError as e:
            logger.error(
                "Failed to post ephemeral message to %s in %s: %s", user, channel, _error_code(e)
            )
            return False
        return True

    async def add_reaction(self, channel: str, message_ts: str, name: str) -> bool:
        try:
            await self.client.reactions_add(channel=channel, timestamp=message_ts, name=name)
        except SlackApiError as e:
            code = _error_code(e)
            if code in IDEMPOTENT_REACTION_ERRORS:
                logger.debug("Reaction :%s: already on message %s", name, message_ts)
                return True
            logger.error(
                "Failed to add reaction :%s: to message %s in %s: %s", name, message_ts, channel, code
            )
            return False
        logger.debug("Added reaction :%s: to message %s in channel %s", name, message_ts, channel)
        return True

    async def remove_reaction(self, channel: str, message_ts: str, name: str) -> bool:
        try:
            await self.client.reactions_remove(channel=channel, timestamp=message_ts, name=name)
        except SlackApiError as e:
            code = _error_code(e)
            if code in IDEMPOTENT_REACTION_ERRORS:
                logger.debug("Reaction :%s: not on message %s", name, message_ts)
                return True
            logger.error(
                "Failed to remove reaction :%s: from message %s in %s: %s",
                name,
                message_ts,
                channel,
                code,
            )
            return False
        logger.debug("Removed reaction :%s: from message %s in channel %s", name, message_ts, channel)
        return True

    async def unfurl_message(
        self, channel: str, message_ts: str, unfurls: dict[str, Any]
    ) -> bool:
        """Attach unfurls to a message posted in a channel."""
        try:
            response = await self.client.chat_unfurl(channel=channel, ts=message_ts, unfurls=unfurls)
        except SlackApiError as e:
            logger.error(
                "Error unfurling links in message %s in channel %s: %s",
                message_ts,
                channel,
                _error_code(e),
            )
            return False
        return bool(response.get("ok"))

    async def unfurl_composer(self, unfurl_id: str, unfurls: dict[str, Any]) -> bool:
        """Attach unfurls to a message draft in the composer."""
        try:
            response = await self.client.chat_unfurl(
                source="composer", unfurl_id=unfurl_id, unfurls=unfurls
            )
        except SlackApiError as e:
            logger.error("Error unfurling links in composer %s: %s", unfurl_id, _error_code(e))
            return False
        return bool(response.get("ok"))

    async def respond(self, response_url: str, **body: Any) -> bool:
        """Reply to an interaction through its ``response_url``."""
        webhook = AsyncWebhookClient(response_url)
        response = await webhook.send_dict(body)
        if response.status_code != 200:
            logger.warning(
                "Failed to respond to interaction (HTTP %d): %s", response.status_code, response.body
            )
            return False
        return True
