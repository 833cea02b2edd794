"""Routes Slack events, interactions and GitLab merge request webhooks."""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..config import FeaturesConfig
from ..errors import DuplicateMention, UnresolvedIdentity
from ..link_parser import MergeRequestRef, parse_merge_request_url
from ..orm.mention import MergeRequestMention
from ..orm.user import SlackAppUser
from ..slack_client import SlackClient
from ..tasks import TaskTracker
from .gitlab_service import GitLabService, MergeRequestHook
from .mention_service import MentionService
from .unfurl_service import UnfurlService
from .user_service import UserService

logger = logging.getLogger(__name__)

REVIEWER_PREFERENCE_CALLBACK = "select_default_app_behaviour_reviewer"
ASSIGNEE_PREFERENCE_CALLBACK = "select_default_app_behaviour_assignee"
UPDATE_UNFURL_SHORTCUT = "msg_shortcut_update_mr_link_unfurl"

# Button value -> stored preference
PREFERENCE_VALUES = {"auto": True, "never": False}


def _preference_prompt(
    callback_id: str, auto_text: str, confirm_text: str
) -> list[dict[str, Any]]:
    return [
        {
            "text": "Would you like to change the default behaviour of this?",
            "fallback": "You are unable to choose a default behaviour",
            "callback_id": callback_id,
            "color": "#3AA3E3",
            "actions": [
                {
                    "name": "default",
                    "text": auto_text,
                    "type": "button",
                    "style": "primary",
                    "value": "auto",
                },
                {
                    "name": "default",
                    "text": "Do nothing (never assign me)",
                    "type": "button",
                    "style": "danger",
                    "value": "never",
                    "confirm": {
                        "title": "Are you sure?",
                        "text": confirm_text,
                        "ok_text": "Yes",
                        "dismiss_text": "No",
                    },
                },
                {
                    "name": "default",
                    "text": "Ask me later",
                    "type": "button",
                    "value": "ask_later",
                },
            ],
        }
    ]


def reviewer_prompt_attachments(reaction: str) -> list[dict[str, Any]]:
    return _preference_prompt(
        REVIEWER_PREFERENCE_CALLBACK,
        f"Assign me on :{reaction}: reaction (always)",
        "Wouldn't you prefer to be assigned as reviewer automatically?",
    )


def assignee_prompt_attachments() -> list[dict[str, Any]]:
    return _preference_prompt(
        ASSIGNEE_PREFERENCE_CALLBACK,
        "Assign me (always)",
        "Please note that it's recommended to choose someone who takes responsibility "
        "(e.g., developing the code, ensuring all review steps are followed, merging the MR). "
        "This is usually the author of the merge request. Are you sure to be *not* assigned "
        "as *Assignee* automatically if you share your own merge request link?",
    )


class MentionEventRouter:
    """Stateless handlers for every inbound event kind.

    All state lives in the mention and user stores. Side effects that do not
    influence the handler's outcome (reactions, unfurls, auto-assignment) are
    spawned on the task tracker and never awaited by the handler.
    """

    def __init__(
        self,
        features: FeaturesConfig,
        mention_service: MentionService,
        user_service: UserService,
        gitlab_service: GitLabService,
        unfurl_service: UnfurlService,
        slack_client: SlackClient,
        tasks: TaskTracker,
    ):
        self.features = features
        self.mention_service = mention_service
        self.user_service = user_service
        self.gitlab_service = gitlab_service
        self.unfurl_service = unfurl_service
        self.slack_client = slack_client
        self.tasks = tasks

    # Slack events

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Route a Slack Events API event to its handler.

        Args:
            event: The ``event`` object of an ``event_callback`` envelope.
        """
        event_type = event.get("type")
        try:
            if event_type == "link_shared":
                await self._handle_link_shared(event)
            elif event_type == "reaction_added":
                await self._handle_reaction_added(event)
            elif event_type == "reaction_removed":
                await self._handle_reaction_removed(event)
            else:
                logger.debug("Ignoring unhandled Slack event type: %s", event_type)
        except Exception as e:
            logger.error("Error processing Slack event %s: %s", event_type, e, exc_info=True)

    async def _handle_link_shared(self, event: dict[str, Any]) -> None:
        logger.debug("Received event link_shared: %s", event)

        unfurl_id = event.get("unfurl_id")
        if not unfurl_id:
            logger.debug("Skip processing link shared event because unfurl_id is missing")
            return

        channel = event.get("channel")
        if not self.features.is_channel_allowed(channel):
            logger.debug("Skip processing link shared event, not enabled for channel %s", channel)
            return

        links = event.get("links") or []
        if len(links) != 1:
            logger.debug(
                "Skip processing link shared event because it has %d links instead of one",
                len(links),
            )
            return

        link_url = links[0].get("url")
        ref = parse_merge_request_url(link_url)
        if ref is None:
            logger.debug("Shared link %s is not a merge request", link_url)
            return

        if event.get("source") == "composer":
            if self.features.on_link_shared.unfurl_link_in_composer:
                self.tasks.spawn(
                    self._unfurl_in_composer(unfurl_id, link_url, ref),
                    name=f"composer-unfurl-{unfurl_id}",
                )
            return

        message_ts = event.get("message_ts")
        try:
            mention = await self.mention_service.record_mention(
                merge_request_id=ref.merge_request_id,
                merge_request_link=link_url,
                project_path=ref.project_path,
                slack_message_ts=message_ts,
                slack_channel=channel,
            )
        except DuplicateMention:
            logger.debug("Mention of %s in message %s already recorded", link_url, message_ts)
            return

        user_id = event.get("user")
        try:
            user = await self.user_service.resolve_user(user_id, ref.project_path)
        except UnresolvedIdentity as e:
            logger.warning("Skip link shared side effects: %s", e)
            return

        if self.features.on_link_shared.auto_assign_author_as_assignee:
            self.tasks.spawn(
                self._assign_author_as_assignee(channel, user, mention),
                name=f"assign-author-{message_ts}",
            )
        if self.features.on_link_shared.unfurl_link_in_messages:
            self.tasks.spawn(self._unfurl_in_channel(mention), name=f"unfurl-{message_ts}")

    async def _unfurl_in_composer(self, unfurl_id: str, link_url: str, ref: MergeRequestRef) -> None:
        details = await self.gitlab_service.fetch_merge_request(
            ref.project_path, ref.merge_request_id
        )
        if details is None:
            return
        await self.unfurl_service.push_composer_unfurl(unfurl_id, link_url, details.title)

    async def _unfurl_in_channel(self, mention: MergeRequestMention) -> None:
        details = await self.gitlab_service.fetch_merge_request(
            mention.project_path, mention.merge_request_id
        )
        if details is None:
            return
        await self.unfurl_service.push_channel_unfurl(mention, details)

    async def _assign_author_as_assignee(
        self, channel: str, user: SlackAppUser, mention: MergeRequestMention
    ) -> None:
        if user.auto_assign_as_assignee is False:
            logger.debug("Skip assigning %s as assignee, user asked for never", user.slack_user_id)
            return

        details = await self.gitlab_service.fetch_merge_request(
            mention.project_path, mention.merge_request_id
        )
        if details is None or details.assignees:
            return
        if details.author is None or details.author.id != user.gitlab_user_id:
            return

        result = await self.gitlab_service.add_assignee(
            mention.project_path, mention.merge_request_id, user.gitlab_user_id
        )
        if result.applied and user.auto_assign_as_assignee is None:
            await self.slack_client.post_ephemeral(
                channel,
                user.slack_user_id,
                "You have been automatically assigned as *Assignee* to the Merge Request that "
                "you shared in this channel because you are the author of the merge request.",
                attachments=assignee_prompt_attachments(),
            )

    async def _find_reacted_mention(
        self, event: dict[str, Any], enabled: bool, trigger: str
    ) -> Optional[MergeRequestMention]:
        if not enabled or event.get("reaction") != trigger:
            return None

        item = event.get("item") or {}
        if item.get("type", "message") != "message":
            return None

        channel = item.get("channel")
        if not self.features.is_channel_allowed(channel):
            logger.debug("Skip processing reaction event, not enabled for channel %s", channel)
            return None

        message_ts = item.get("ts")
        mention = await self.mention_service.find_mention_by_message(message_ts)
        if mention is None:
            logger.info("Skip: message %s not found in mentioning messages lookup", message_ts)
        return mention

    async def _handle_reaction_added(self, event: dict[str, Any]) -> None:
        logger.debug("Received event reaction_added: %s", event)
        trigger = self.features.on_reaction_added
        mention = await self._find_reacted_mention(event, trigger.enabled, trigger.reaction)
        if mention is None:
            return

        user_id = event.get("user")
        try:
            user = await self.user_service.resolve_user(user_id, mention.project_path)
        except UnresolvedIdentity as e:
            logger.warning("Skip assigning reviewer: %s", e)
            return

        if user.auto_assign_as_reviewer is False:
            logger.debug("Skip reaction added, user %s asked for never assign", user_id)
            return

        result = await self.gitlab_service.add_reviewer(
            mention.project_path, mention.merge_request_id, user.gitlab_user_id
        )
        if result.applied and user.auto_assign_as_reviewer is None:
            await self.slack_client.post_ephemeral(
                mention.slack_channel,
                user_id,
                "You have been automatically assigned as *Reviewer* to the Merge Request in "
                f"this channel with your :{event.get('reaction')}: reaction.",
                attachments=reviewer_prompt_attachments(trigger.reaction),
            )

    async def _handle_reaction_removed(self, event: dict[str, Any]) -> None:
        logger.debug("Received event reaction_removed: %s", event)
        trigger = self.features.on_reaction_removed
        mention = await self._find_reacted_mention(event, trigger.enabled, trigger.reaction)
        if mention is None:
            return

        user_id = event.get("user")
        try:
            user = await self.user_service.resolve_user(user_id, mention.project_path)
        except UnresolvedIdentity as e:
            logger.warning("Skip unassigning reviewer: %s", e)
            return

        if user.auto_assign_as_reviewer is False:
            logger.debug(
                "Skip reaction removed, user %s asked for never assign as reviewer", user_id
            )
            return

        await self.gitlab_service.remove_reviewer(
            mention.project_path, mention.merge_request_id, user.gitlab_user_id
        )

    # Slack interactions

    async def handle_interaction(self, payload: dict[str, Any]) -> None:
        """Handle preference buttons and the refresh-unfurl message shortcut."""
        interaction_type = payload.get("type")
        callback_id = payload.get("callback_id")
        try:
            if interaction_type == "interactive_message" and callback_id in (
                REVIEWER_PREFERENCE_CALLBACK,
                ASSIGNEE_PREFERENCE_CALLBACK,
            ):
                await self._handle_preference_choice(payload)
            elif interaction_type == "message_action" and callback_id == UPDATE_UNFURL_SHORTCUT:
                await self._handle_update_unfurl_shortcut(payload)
            else:
                logger.debug(
                    "Ignoring unhandled interaction type=%s callback_id=%s",
                    interaction_type,
                    callback_id,
                )
        except Exception as e:
            logger.error("Error processing interaction %s: %s", callback_id, e, exc_info=True)

    async def _handle_preference_choice(self, payload: dict[str, Any]) -> None:
        callback_id = payload["callback_id"]
        user_id = (payload.get("user") or {}).get("id")
        actions = payload.get("actions") or []
        value = actions[0].get("value") if actions else None
        response_url = payload.get("response_url")
        as_reviewer = callback_id == REVIEWER_PREFERENCE_CALLBACK
        role = "reviewer" if as_reviewer else "assignee"

        if value == "ask_later":
            if response_url:
                await self.slack_client.respond(
                    response_url, response_type="ephemeral", text="", delete_original=True
                )
            return

        if value not in PREFERENCE_VALUES:
            logger.warning("Not supported callback '%s' action value '%s'", callback_id, value)
            return

        enabled = PREFERENCE_VALUES[value]
        if as_reviewer:
            user = await self.user_service.set_auto_assign_reviewer(user_id, enabled)
        else:
            user = await self.user_service.set_auto_assign_assignee(user_id, enabled)
        if user is None:
            return

        if enabled and as_reviewer:
            text = (
                "The default behaviour has been set to auto assign you as *Reviewer* whenever "
                f"you react with :{self.features.on_reaction_added.reaction}: on a message "
                "containing a merge request link in GitLab! :+1:"
            )
        elif enabled:
            text = (
                "The default behaviour has been set to auto assign you as *Assignee* whenever "
                "you post a merge request link in a message that has no assignee, but you are "
                "the author of it!"
            )
        else:
            text = (
                f"The default behaviour has been set to *never* assign you automatically as "
                f"{role}! Sorry for bothering you."
            )

        if response_url:
            await self.slack_client.respond(
                response_url,
                response_type="ephemeral",
                text=text,
                replace_original=True,
                delete_original=True,
            )

    async def _handle_update_unfurl_shortcut(self, payload: dict[str, Any]) -> None:
        message_ts = payload.get("message_ts") or (payload.get("message") or {}).get("ts")
        mention = await self.mention_service.find_mention_by_message(message_ts)
        if mention is None:
            logger.info("Shortcut used on message %s that mentions no merge request", message_ts)
            return
        self.tasks.spawn(self.unfurl_service.reconcile(mention), name=f"refresh-{message_ts}")

    # GitLab webhooks

    async def handle_merge_request_hook(
        self, payload: dict[str, Any], event_uuid: Optional[str] = None
    ) -> None:
        """React to a merge request webhook on every message mentioning the merge request.

        Called after the webhook has been acknowledged, so nothing here can
        change the HTTP response.
        """
        try:
            await self._handle_merge_request_hook(payload, event_uuid)
        except Exception as e:
            logger.error(
                "Error processing GitLab webhook with event uuid %s: %s", event_uuid, e, exc_info=True
            )

    async def _handle_merge_request_hook(
        self, payload: dict[str, Any], event_uuid: Optional[str]
    ) -> None:
        if payload.get("object_kind") != "merge_request" and payload.get("event_type") != "merge_request":
            logger.debug(
                "Skip webhook %s, not merge request related (object_kind=%s, event_type=%s)",
                event_uuid,
                payload.get("object_kind"),
                payload.get("event_type"),
            )
            return

        try:
            hook = MergeRequestHook.model_validate(payload)
        except ValidationError as e:
            logger.warning("Skip webhook %s with invalid merge request payload: %s", event_uuid, e)
            return

        merge_request_id = str(hook.object_attributes.iid)
        project_path = hook.project.path_with_namespace
        action = hook.object_attributes.action

        mentions = await self.mention_service.find_mentions_for_merge_request(
            merge_request_id, project_path
        )
        if not mentions:
            logger.debug(
                "Skipping webhook for merge request %s of %s, it was not mentioned in Slack",
                merge_request_id,
                project_path,
            )
            return

        logger.info(
            "Webhook %s: action '%s' on merge request %s of %s mentioned in %d message(s)",
            event_uuid,
            action,
            merge_request_id,
            project_path,
            len(mentions),
        )

        webhook_config = self.features.gitlab_webhooks.merge_request
        for mention in mentions:
            if not self.features.is_channel_allowed(mention.slack_channel):
                logger.debug("Skip webhook for mention in channel %s", mention.slack_channel)
                continue

            self._react_to_action(action, mention, hook)

            if webhook_config.update_unfurls:
                self.tasks.spawn(
                    self.unfurl_service.reconcile(mention),
                    name=f"refresh-{mention.slack_message_ts}",
                )

    def _react_to_action(
        self, action: Optional[str], mention: MergeRequestMention, hook: MergeRequestHook
    ) -> None:
        webhook_config = self.features.gitlab_webhooks.merge_request
        reactions = webhook_config.use_reactions

        # action -> (add?, reaction name)
        reaction_changes = {
            "approved": (True, reactions.on_approved),
            "unapproved": (False, reactions.on_approved),
            "merge": (True, reactions.on_merged),
            "close": (True, reactions.on_closed),
            "reopen": (False, reactions.on_closed),
        }

        if action == "update":
            if "reviewers" in hook.changes:
                logger.debug("Reviewers of merge request %s were updated", mention.merge_request_id)
            return
        if action not in reaction_changes:
            logger.warning(
                "Unsupported merge request action '%s'. No reactions will be added or removed", action
            )
            return
        if not webhook_config.add_reactions:
            return

        add, name = reaction_changes[action]
        if add:
            coro = self.slack_client.add_reaction(mention.slack_channel, mention.slack_message_ts, name)
        else:
            coro = self.slack_client.remove_reaction(
                mention.slack_channel, mention.slack_message_ts, name
            )
        self.tasks.spawn(coro, name=f"{action}-reaction-{mention.slack_message_ts}")
