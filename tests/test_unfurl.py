"""Tests for unfurl rendering."""

from mr_tracker.unfurl import (
    build_channel_unfurl_blocks,
    build_composer_unfurl_blocks,
    format_people,
    human_readable_status,
)

from .conftest import ALICE, BOB, MR_LINK, make_merge_request


class TestHumanReadableStatus:
    """Test status text."""

    def test_merged_overrides_detailed_status(self):
        """Test that a merged merge request reads as merged whatever GitLab reports."""
        assert human_readable_status("not_approved", "merged") == "Merged :tada:"

    def test_closed_overrides_detailed_status(self):
        """Test that a closed merge request reads as closed."""
        assert human_readable_status("mergeable", "closed").startswith("Closed")

    def test_conflict(self):
        """Test conflict text."""
        assert human_readable_status("conflict", "opened") == (
            "Conflict - _Cannot be merged until conflicts resolved._"
        )

    def test_checking_variants_share_text(self):
        """Test that both checking states render the same."""
        assert human_readable_status("checking", "opened") == human_readable_status(
            "approvals_syncing", "opened"
        )

    def test_unknown_status_passed_through(self):
        """Test that an unknown status code is shown verbatim."""
        assert human_readable_status("jira_association_missing", "opened") == (
            "jira_association_missing"
        )

    def test_missing_status(self):
        """Test that a missing status renders empty."""
        assert human_readable_status(None, "opened") == ""


class TestFormatPeople:
    """Test people field formatting."""

    def test_empty(self):
        assert format_people([], "nobody") == "nobody"

    def test_single(self):
        assert format_people([ALICE], "nobody") == "alice"

    def test_many(self):
        assert format_people([ALICE, BOB, ALICE], "nobody") == "alice (+2)"


class TestBlocks:
    """Test Block Kit output."""

    def test_channel_unfurl_fields(self):
        """Test the four fields of a channel unfurl."""
        details = make_merge_request(assignees=[ALICE.model_dump()], changes_count=12)

        blocks = build_channel_unfurl_blocks(MR_LINK, details, reviewer_reaction="eyes")

        assert MR_LINK in blocks[0]["text"]["text"]
        assert "Add Slack integration" in blocks[0]["text"]["text"]
        fields = [field["text"] for field in blocks[1]["fields"]]
        assert fields[0].endswith("alice")
        assert fields[1].endswith("12")
        assert ":eyes: reaction" in fields[2]
        assert fields[3].endswith("Ready to merge!")

    def test_channel_unfurl_without_assignee_names_author(self):
        """Test that the empty assignee text mentions the author."""
        blocks = build_channel_unfurl_blocks(MR_LINK, make_merge_request())

        assert "the author (alice)" in blocks[1]["fields"][0]["text"]

    def test_composer_unfurl(self):
        """Test the composer preview links the title."""
        blocks = build_composer_unfurl_blocks(MR_LINK, "Title")

        assert blocks[0]["text"]["text"] == f"<{MR_LINK}|Title>"
