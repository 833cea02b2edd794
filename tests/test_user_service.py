"""Tests for the user preference store and identity resolution."""

import pytest

from mr_tracker.errors import DuplicateUser, UnresolvedIdentity
from mr_tracker.services.gitlab_service import GitLabUser

from .conftest import ALICE, BOB, PROJECT_PATH


class TestCreateAndFind:
    """Test creating and finding users."""

    async def test_create_and_find(self, user_service):
        """Test that a created user can be found with unset preferences."""
        await user_service.create("U1", "alice", ALICE)

        user = await user_service.find("U1")
        assert user is not None
        assert user.gitlab_user_id == ALICE.id
        assert user.gitlab_username == "alice"
        assert user.auto_assign_as_reviewer is None
        assert user.auto_assign_as_assignee is None

    async def test_find_unknown(self, user_service):
        """Test that an unknown user is not found."""
        assert await user_service.find("U404") is None

    async def test_duplicate_slack_user(self, user_service):
        """Test that the same Slack user cannot be stored twice."""
        await user_service.create("U1", "alice", ALICE)

        with pytest.raises(DuplicateUser):
            await user_service.create("U1", "alice2", BOB)

    async def test_duplicate_gitlab_user(self, user_service):
        """Test that one GitLab user cannot back two Slack users."""
        await user_service.create("U1", "alice", ALICE)

        with pytest.raises(DuplicateUser) as exc_info:
            await user_service.create("U2", "alice.other", ALICE)

        assert exc_info.value.gitlab_user_id == ALICE.id
        assert await user_service.find("U2") is None


class TestPreferences:
    """Test preference updates."""

    async def test_set_reviewer_preference(self, user_service):
        """Test setting and clearing the reviewer preference."""
        await user_service.create("U1", "alice", ALICE)

        user = await user_service.set_auto_assign_reviewer("U1", False)
        assert user.auto_assign_as_reviewer is False
        assert (await user_service.find("U1")).auto_assign_as_reviewer is False

        await user_service.set_auto_assign_reviewer("U1", None)
        assert (await user_service.find("U1")).auto_assign_as_reviewer is None

    async def test_set_assignee_preference(self, user_service):
        """Test that the assignee preference is independent of the reviewer one."""
        await user_service.create("U1", "alice", ALICE)

        await user_service.set_auto_assign_assignee("U1", True)

        user = await user_service.find("U1")
        assert user.auto_assign_as_assignee is True
        assert user.auto_assign_as_reviewer is None

    async def test_set_preference_unknown_user(self, user_service):
        """Test that updating an unknown user returns None."""
        assert await user_service.set_auto_assign_reviewer("U404", True) is None


class TestResolveUser:
    """Test lazy identity resolution."""

    async def test_resolve_existing_user_skips_lookups(self, user_service, slack, gitlab):
        """Test that a stored user is returned without remote calls."""
        await user_service.create("U1", "alice", ALICE)

        user = await user_service.resolve_user("U1", PROJECT_PATH)

        assert user.gitlab_user_id == ALICE.id
        assert slack.calls == []
        assert gitlab.calls == []

    async def test_resolve_creates_user(self, user_service, slack, gitlab):
        """Test matching a new Slack user to a project member by username."""
        slack.users["U1"] = {"id": "U1", "name": "alice"}
        gitlab.members["alice"] = ALICE

        user = await user_service.resolve_user("U1", PROJECT_PATH)

        assert user.slack_username == "alice"
        assert user.gitlab_user_id == ALICE.id
        assert gitlab.calls == [("find_project_member", PROJECT_PATH, "alice")]
        assert await user_service.find("U1") is not None

    async def test_resolve_unknown_slack_user(self, user_service):
        """Test that a missing Slack profile is unresolved."""
        with pytest.raises(UnresolvedIdentity):
            await user_service.resolve_user("U404", PROJECT_PATH)

    async def test_resolve_no_project_member(self, user_service, slack):
        """Test that a Slack user without GitLab match is unresolved and not stored."""
        slack.users["U1"] = {"id": "U1", "name": "carol"}

        with pytest.raises(UnresolvedIdentity) as exc_info:
            await user_service.resolve_user("U1", PROJECT_PATH)

        assert exc_info.value.slack_user_id == "U1"
        assert await user_service.find("U1") is None

    async def test_resolve_gitlab_user_taken(self, user_service, slack, gitlab):
        """Test that a GitLab identity bound to another Slack user is unresolved."""
        await user_service.create("U1", "alice", ALICE)
        slack.users["U2"] = {"id": "U2", "name": "alice2"}
        gitlab.members["alice2"] = GitLabUser(id=ALICE.id, name="Alice", username="alice")

        with pytest.raises(UnresolvedIdentity):
            await user_service.resolve_user("U2", PROJECT_PATH)
