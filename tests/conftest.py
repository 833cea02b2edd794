"""Shared test fixtures and in-memory fakes for Slack and GitLab."""

from typing import Any, Optional

import pytest

from mr_tracker.config import FeaturesConfig
from mr_tracker.services.database import DatabaseService
from mr_tracker.services.gitlab_service import (
    GitLabUser,
    MembershipResult,
    MergeRequestDetails,
)
from mr_tracker.services.mention_service import MentionService
from mr_tracker.services.unfurl_service import UnfurlService
from mr_tracker.services.user_service import UserService
from mr_tracker.tasks import TaskTracker

PROJECT_PATH = "techcorp/platform/slack-integration-tool"
MR_LINK = f"https://gitlab.com/{PROJECT_PATH}/-/merge_requests/11"

ALICE = GitLabUser(id=101, name="Alice", username="alice")
BOB = GitLabUser(id=102, name="Bob", username="bob")


class FakeSlackClient:
    """Records every Slack call instead of sending it."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.messages: dict[tuple[str, str], dict[str, Any]] = {}
        self.unfurl_ok = True
        self.calls: list[tuple] = []

    def calls_to(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def fetch_message(self, channel: str, message_ts: str) -> Optional[dict[str, Any]]:
        self.calls.append(("fetch_message", channel, message_ts))
        return self.messages.get((channel, message_ts))

    async def fetch_user(self, user_id: str) -> Optional[dict[str, Any]]:
        self.calls.append(("fetch_user", user_id))
        return self.users.get(user_id)

    async def post_ephemeral(self, channel, user, text, attachments=None) -> bool:
        self.calls.append(("post_ephemeral", channel, user, attachments[0]["callback_id"]))
        return True

    async def add_reaction(self, channel: str, message_ts: str, name: str) -> bool:
        self.calls.append(("add_reaction", channel, message_ts, name))
        return True

    async def remove_reaction(self, channel: str, message_ts: str, name: str) -> bool:
        self.calls.append(("remove_reaction", channel, message_ts, name))
        return True

    async def unfurl_message(self, channel: str, message_ts: str, unfurls: dict) -> bool:
        self.calls.append(("unfurl_message", channel, message_ts, unfurls))
        return self.unfurl_ok

    async def unfurl_composer(self, unfurl_id: str, unfurls: dict) -> bool:
        self.calls.append(("unfurl_composer", unfurl_id, unfurls))
        return self.unfurl_ok

    async def respond(self, response_url: str, **body: Any) -> bool:
        self.calls.append(("respond", response_url, body))
        return True


class FakeGitLabService:
    """In-memory GitLab holding merge requests and project members."""

    def __init__(self) -> None:
        self.merge_requests: dict[tuple[str, str], MergeRequestDetails] = {}
        self.members: dict[str, GitLabUser] = {}
        self.calls: list[tuple] = []

    def calls_to(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def fetch_merge_request(self, project_path, merge_request_id):
        self.calls.append(("fetch_merge_request", project_path, str(merge_request_id)))
        return self.merge_requests.get((project_path, str(merge_request_id)))

    async def find_project_member(self, project_path, username):
        self.calls.append(("find_project_member", project_path, username))
        return self.members.get(username)

    async def _update(self, method, field, project_path, merge_request_id, user_id, add):
        self.calls.append((method, project_path, str(merge_request_id), user_id))
        details = self.merge_requests.get((project_path, str(merge_request_id)))
        if details is None:
            return MembershipResult.FAILED
        users = getattr(details, field)
        present = any(user.id == user_id for user in users)
        if add and present:
            return MembershipResult.ALREADY_PRESENT
        if not add and not present:
            return MembershipResult.NOT_PRESENT
        if add:
            users.append(GitLabUser(id=user_id, name=f"user{user_id}", username=f"user{user_id}"))
        else:
            setattr(details, field, [user for user in users if user.id != user_id])
        return MembershipResult.UPDATED

    async def add_reviewer(self, project_path, merge_request_id, user_id):
        return await self._update("add_reviewer", "reviewers", project_path, merge_request_id, user_id, True)

    async def remove_reviewer(self, project_path, merge_request_id, user_id):
        return await self._update(
            "remove_reviewer", "reviewers", project_path, merge_request_id, user_id, False
        )

    async def add_assignee(self, project_path, merge_request_id, user_id):
        return await self._update("add_assignee", "assignees", project_path, merge_request_id, user_id, True)


def make_merge_request(**overrides: Any) -> MergeRequestDetails:
    data: dict[str, Any] = {
        "iid": 11,
        "title": "Add Slack integration",
        "web_url": MR_LINK,
        "author": ALICE.model_dump(),
        "state": "opened",
        "detailed_merge_status": "mergeable",
        "changes_count": "4",
        "reviewers": [],
        "assignees": [],
    }
    data.update(overrides)
    return MergeRequestDetails.model_validate(data)


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    service = DatabaseService(tmp_path / "test.db")
    await service.initialize()
    yield service
    await service.close()


@pytest.fixture
def mention_service(db) -> MentionService:
    return MentionService(db)


@pytest.fixture
def slack() -> FakeSlackClient:
    return FakeSlackClient()


@pytest.fixture
def gitlab() -> FakeGitLabService:
    return FakeGitLabService()


@pytest.fixture
def user_service(db, slack, gitlab) -> UserService:
    return UserService(db, slack, gitlab)


@pytest.fixture
def unfurl_service(slack, gitlab, mention_service) -> UnfurlService:
    return UnfurlService(slack, gitlab, mention_service)


@pytest.fixture
def tasks() -> TaskTracker:
    return TaskTracker()


@pytest.fixture
def features() -> FeaturesConfig:
    return FeaturesConfig()
