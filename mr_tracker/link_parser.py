"""Parser for GitLab merge request web URLs."""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

# Match: scheme and host, project path, then /-/merge_requests/<iid> at the end
MERGE_REQUEST_URL_PATTERN = re.compile(
    r"^https?://[^/\s]+/([^\s]+?)/-/merge_requests/(\d+)$"
)


@dataclass(frozen=True)
class MergeRequestRef:
    """Identity of a merge request extracted from its web URL."""

    merge_request_id: str
    project_path: str
    project_path_encoded: str


def remove_trailing_slash(uri: str) -> str:
    """Remove a single trailing slash, e.g. ``example.com/api/`` -> ``example.com/api``."""
    return uri[:-1] if uri.endswith("/") else uri


def encode_project_path(project_path: str) -> str:
    """Percent-encode a project path for the GitLab API (``/`` becomes ``%2F``)."""
    return quote(project_path, safe="")


def parse_merge_request_url(url: Optional[str]) -> Optional[MergeRequestRef]:
    """
    Extract the merge request id and project path from a merge request web URL.

    Args:
        url: Any URL, typically a link shared in a Slack message.

    Returns:
        MergeRequestRef if the URL points at a merge request, else None.

    Examples:
        >>> ref = parse_merge_request_url("https://gitlab.com/group/project/-/merge_requests/42")
        >>> ref.project_path, ref.merge_request_id
        ('group/project', '42')
        >>> ref.project_path_encoded
        'group%2Fproject'
    """
    if not url:
        return None

    match = MERGE_REQUEST_URL_PATTERN.match(url.strip())
    if not match:
        return None

    project_path = remove_trailing_slash(match.group(1))
    if not project_path:
        return None

    return MergeRequestRef(
        merge_request_id=match.group(2),
        project_path=project_path,
        project_path_encoded=encode_project_path(project_path),
    )
