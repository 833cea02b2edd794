"""Block Kit rendering of merge request status unfurls."""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .services.gitlab_service import GitLabUser, MergeRequestDetails

GITLAB_LOGO_URL = "https://about.gitlab.com/images/press/logo/png/gitlab-logo-500.png"

CHECKING_TEXT = "_GitLab is checking if merge request can be merged..._"

# GitLab detailed_merge_status -> text shown in the Status field
DETAILED_MERGE_STATUS_TEXT = {
    "conflict": "Conflict - _Cannot be merged until conflicts resolved._",
    "draft_status": "Draft - _Cannot be merged until marked ready._",
    "checking": CHECKING_TEXT,
    "approvals_syncing": CHECKING_TEXT,
    "mergeable": "Ready to merge!",
    "ci_still_running": "_GitLab CI pipeline is still running..._",
    "ci_must_pass": "_Merge blocked: Pipeline must succeed._",
    "not_approved": "Requires approval!",
    "requested_changes": "_The change requests must be completed or resolved._",
}


def human_readable_status(detailed_merge_status: Optional[str], state: Optional[str]) -> str:
    """
    Describe where a merge request stands.

    Terminal states win over the detailed merge status, unknown detailed
    statuses are shown as they are.

    Examples:
        >>> human_readable_status("mergeable", "merged")
        'Merged :tada:'
        >>> human_readable_status("unknown_code", "opened")
        'unknown_code'
    """
    if state == "merged":
        return "Merged :tada:"
    if state == "closed":
        return "Closed (the changes were not merged) :octagonal_sign:"
    if not detailed_merge_status:
        return ""
    return DETAILED_MERGE_STATUS_TEXT.get(detailed_merge_status, detailed_merge_status)


def format_people(users: list["GitLabUser"], empty_text: str) -> str:
    """Render a user list as ``first``, ``first (+N)`` or ``empty_text``."""
    if not users:
        return empty_text
    if len(users) == 1:
        return users[0].username
    return f"{users[0].username} (+{len(users) - 1})"


def build_channel_unfurl_blocks(
    link: str, details: "MergeRequestDetails", reviewer_reaction: str = "eyes"
) -> list[dict[str, Any]]:
    """Blocks for the unfurl attached to a message posted in a channel."""
    author = details.author.username if details.author else "unknown"
    assignees = format_people(
        details.assignees,
        f":exclamation: None - _the author ({author}) of this merge request should set the "
        "responsible person(s) for e.g. developing the code, merging the MR._",
    )
    reviewers = format_people(
        details.reviewers,
        f":exclamation: None - _assign yourself with the :{reviewer_reaction}: reaction "
        "to participate in giving peer review._",
    )

    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f":merge-request: *<{link}|{details.title}>*"},
        },
        {
            "type": "section",
            "accessory": {"type": "image", "image_url": GITLAB_LOGO_URL, "alt_text": "GitLab logo"},
            "fields": [
                {"type": "mrkdwn", "text": f"*Assignee* :technologist:\n {assignees}"},
                {"type": "mrkdwn", "text": f"*Changes* :ocean:\n {details.changes_count or 0}"},
                {"type": "mrkdwn", "text": f"*Reviewers* :eyes:\n {reviewers}"},
                {
                    "type": "mrkdwn",
                    "text": "*Status* :vertical_traffic_light:\n "
                    + human_readable_status(details.detailed_merge_status, details.state),
                },
            ],
        },
    ]


def build_composer_unfurl_blocks(link: str, title: str) -> list[dict[str, Any]]:
    """Blocks for the preview shown while a message is being written."""
    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"<{link}|{title}>"},
            "accessory": {"type": "image", "image_url": GITLAB_LOGO_URL, "alt_text": "GitLab logo"},
        }
    ]
