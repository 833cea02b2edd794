"""GitLab API service for merge request details and reviewer/assignee updates."""

import enum
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..link_parser import encode_project_path

logger = logging.getLogger(__name__)


class GitLabUser(BaseModel):
    """A GitLab user as embedded in merge request and member responses."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    username: str


class MergeRequestDetails(BaseModel):
    """Snapshot of a merge request as returned by the merge requests API."""

    model_config = ConfigDict(extra="ignore")

    iid: Optional[int] = None
    title: str = ""
    web_url: Optional[str] = None
    author: Optional[GitLabUser] = None
    state: str = ""
    draft: bool = False
    work_in_progress: bool = False
    merge_status: Optional[str] = None
    detailed_merge_status: Optional[str] = None
    head_pipeline_id: Optional[int] = None
    changes_count: Optional[str] = None
    reviewers: list[GitLabUser] = Field(default_factory=list)
    assignees: list[GitLabUser] = Field(default_factory=list)

    @field_validator("changes_count", mode="before")
    @classmethod
    def _changes_count_as_text(cls, value: Any) -> Optional[str]:
        # The API reports large diffs as e.g. "1000+"
        return None if value is None else str(value)

    @property
    def reviewer_ids(self) -> list[int]:
        return [user.id for user in self.reviewers]

    @property
    def assignee_ids(self) -> list[int]:
        return [user.id for user in self.assignees]


class MergeRequestHookAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    iid: int
    action: Optional[str] = None
    state: Optional[str] = None


class MergeRequestHookProject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path_with_namespace: str


class MergeRequestHook(BaseModel):
    """Payload of a GitLab ``Merge Request Hook`` webhook."""

    model_config = ConfigDict(extra="ignore")

    object_kind: Optional[str] = None
    event_type: Optional[str] = None
    object_attributes: MergeRequestHookAttributes
    project: MergeRequestHookProject
    changes: dict[str, Any] = Field(default_factory=dict)


class MembershipResult(enum.Enum):
    """Outcome of a reviewer or assignee update."""

    UPDATED = "updated"
    ALREADY_PRESENT = "already_present"
    NOT_PRESENT = "not_present"
    FAILED = "failed"

    @property
    def applied(self) -> bool:
        return self is MembershipResult.UPDATED


def _unique(ids: list[int]) -> list[int]:
    return list(dict.fromkeys(ids))


class GitLabService:
    """GitLab REST API interactions authenticated with a private token."""

    GITLAB_API_BASE = "https://gitlab.com/api/v4"

    def __init__(
        self,
        private_token: str,
        api_url: str = GITLAB_API_BASE,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize GitLab service.

        Args:
            private_token: Personal, project or group access token.
            api_url: Base URL of the v4 API.
            timeout: Request timeout in seconds.
            client: Preconfigured client, mainly for tests. Its base URL and
                headers are used as they are.
        """
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.api_url,
            headers={"PRIVATE-TOKEN": private_token},
            timeout=timeout,
        )
        logger.debug("GitLabService initialized for %s", self.api_url)

    async def close(self) -> None:
        await self._client.aclose()

    def _merge_request_path(self, project_path: str, merge_request_id: str | int) -> str:
        return f"/projects/{encode_project_path(project_path)}/merge_requests/{merge_request_id}"

    async def fetch_merge_request(
        self, project_path: str, merge_request_id: str | int
    ) -> Optional[MergeRequestDetails]:
        """
        Get merge request details.

        Args:
            project_path: Un-encoded project path, e.g. "group/project".
            merge_request_id: Project-scoped merge request iid.

        Returns:
            MergeRequestDetails, or None if not found or the request failed.
        """
        path = self._merge_request_path(project_path, merge_request_id)
        logger.debug("Fetching merge request at %s", path)

        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            logger.error("Failed to fetch merge request %s: %s", path, e)
            return None

        if response.status_code == 404:
            logger.info("Merge request %s not found", path)
            return None
        if response.status_code != 200:
            logger.warning(
                "Could not get merge request %s (HTTP %d): %s",
                path,
                response.status_code,
                response.text,
            )
            return None

        try:
            return MergeRequestDetails.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("Invalid merge request response for %s: %s", path, e)
            return None

    async def find_project_member(self, project_path: str, username: str) -> Optional[GitLabUser]:
        """
        Find a project member (including inherited members) by username.

        Returns:
            The matching GitLabUser, or None if there is no match.
        """
        path = f"/projects/{encode_project_path(project_path)}/members/all"
        logger.debug("Searching members of %s for username '%s'", project_path, username)

        try:
            response = await self._client.get(path, params={"query": username})
        except httpx.HTTPError as e:
            logger.error("Failed to search project members of %s: %s", project_path, e)
            return None

        if response.status_code != 200:
            logger.warning(
                "Could not get project members of %s (HTTP %d): %s",
                project_path,
                response.status_code,
                response.text,
            )
            return None

        try:
            members = [GitLabUser.model_validate(item) for item in response.json()]
        except (ValueError, TypeError, ValidationError) as e:
            logger.error("Invalid project members response for %s: %s", project_path, e)
            return None

        if not members:
            logger.warning("Could not find GitLab user for username '%s' in %s", username, project_path)
            return None

        if len(members) > 1:
            logger.warning(
                "There were %d user matches for username '%s' among the members of %s",
                len(members),
                username,
                project_path,
            )

        for member in members:
            if member.username.lower() == username.lower():
                return member

        logger.warning(
            "No exact username match for '%s' among the members of %s, using '%s'",
            username,
            project_path,
            members[0].username,
        )
        return members[0]

    async def _update_merge_request(
        self, project_path: str, merge_request_id: str | int, payload: dict[str, Any]
    ) -> bool:
        path = self._merge_request_path(project_path, merge_request_id)
        logger.debug("Updating merge request %s with %s", path, payload)

        try:
            response = await self._client.put(path, json=payload)
        except httpx.HTTPError as e:
            logger.error("Failed to update merge request %s: %s", path, e)
            return False

        if response.status_code != 200:
            logger.warning(
                "Could not update merge request %s (HTTP %d): %s",
                path,
                response.status_code,
                response.text,
            )
            return False

        logger.info("Updated merge request %s: %s", path, payload)
        return True

    async def add_reviewer(
        self, project_path: str, merge_request_id: str | int, user_id: int
    ) -> MembershipResult:
        """Add a user to the reviewers, doing nothing if already a reviewer."""
        details = await self.fetch_merge_request(project_path, merge_request_id)
        if details is None:
            return MembershipResult.FAILED

        reviewer_ids = details.reviewer_ids
        if user_id in reviewer_ids:
            logger.debug("Skip adding reviewer %s, already among the reviewers", user_id)
            return MembershipResult.ALREADY_PRESENT

        updated = await self._update_merge_request(
            project_path, merge_request_id, {"reviewer_ids": _unique(reviewer_ids + [user_id])}
        )
        return MembershipResult.UPDATED if updated else MembershipResult.FAILED

    async def remove_reviewer(
        self, project_path: str, merge_request_id: str | int, user_id: int
    ) -> MembershipResult:
        """Remove a user from the reviewers, doing nothing if not a reviewer."""
        details = await self.fetch_merge_request(project_path, merge_request_id)
        if details is None:
            return MembershipResult.FAILED

        reviewer_ids = details.reviewer_ids
        if user_id not in reviewer_ids:
            logger.debug(
                "Skip removing reviewer %s, not among the reviewers %s", user_id, reviewer_ids
            )
            return MembershipResult.NOT_PRESENT

        remaining = _unique([rid for rid in reviewer_ids if rid != user_id])
        updated = await self._update_merge_request(
            project_path, merge_request_id, {"reviewer_ids": remaining}
        )
        return MembershipResult.UPDATED if updated else MembershipResult.FAILED

    async def add_assignee(
        self, project_path: str, merge_request_id: str | int, user_id: int
    ) -> MembershipResult:
        """Add a user to the assignees, doing nothing if already assigned."""
        details = await self.fetch_merge_request(project_path, merge_request_id)
        if details is None:
            return MembershipResult.FAILED

        assignee_ids = details.assignee_ids
        if user_id in assignee_ids:
            logger.debug("Skip adding assignee %s, already among the assignees", user_id)
            return MembershipResult.ALREADY_PRESENT

        updated = await self._update_merge_request(
            project_path, merge_request_id, {"assignee_ids": _unique(assignee_ids + [user_id])}
        )
        return MembershipResult.UPDATED if updated else MembershipResult.FAILED
