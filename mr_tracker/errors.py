"""Exceptions raised by the mention tracker stores and services."""


class MentionTrackerError(Exception):
    """Base class for all mention tracker errors."""


class DuplicateMention(MentionTrackerError):
    """The merge request link was already recorded for this Slack message."""

    def __init__(self, link: str, message_ts: str):
        self.link = link
        self.message_ts = message_ts
        super().__init__(f"Mention of {link} in message {message_ts} already recorded")


class DuplicateUser(MentionTrackerError):
    """A user with the same Slack or GitLab identity already exists."""

    def __init__(self, slack_user_id: str, gitlab_user_id: int | None = None):
        self.slack_user_id = slack_user_id
        self.gitlab_user_id = gitlab_user_id
        super().__init__(
            f"User for slack user {slack_user_id} (gitlab user {gitlab_user_id}) already exists"
        )


class UnresolvedIdentity(MentionTrackerError):
    """A Slack user could not be matched to a GitLab project member."""

    def __init__(self, slack_user_id: str, reason: str):
        self.slack_user_id = slack_user_id
        self.reason = reason
        super().__init__(f"Cannot resolve GitLab user for slack user {slack_user_id}: {reason}")
