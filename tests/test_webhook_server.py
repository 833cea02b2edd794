"""Tests for the HTTP endpoints."""

import json
import time
from unittest.mock import AsyncMock
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient
from slack_sdk.signature import SignatureVerifier

from mr_tracker.config import Config, load_config
from mr_tracker.webhook_server import create_app, verify_gitlab_token

SIGNING_SECRET = "slack-signing-secret"
WEBHOOK_SECRET = "gitlab-webhook-secret"

GITLAB_HEADERS = {
    "Content-Type": "application/json",
    "X-Gitlab-Token": WEBHOOK_SECRET,
    "X-Gitlab-Instance": "https://gitlab.com",
    "X-Gitlab-Event": "Merge Request Hook",
    "X-Gitlab-Event-UUID": "uuid-1",
}

HOOK_BODY = {
    "object_kind": "merge_request",
    "project": {"path_with_namespace": "group/project"},
    "object_attributes": {"iid": 1, "action": "approved"},
}


def make_config(**features):
    return Config(
        slack={"bot_token": "xoxb-test", "signing_secret": SIGNING_SECRET},
        gitlab={"private_token": "glpat-test", "webhook_secret": WEBHOOK_SECRET},
        features=features,
    )


def slack_headers(body: str, content_type="application/json"):
    timestamp = str(int(time.time()))
    signature = SignatureVerifier(SIGNING_SECRET).generate_signature(timestamp=timestamp, body=body)
    return {
        "Content-Type": content_type,
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": signature,
    }


class TestVerifyGitlabToken:
    """Test token comparison."""

    def test_matching_token(self):
        assert verify_gitlab_token("secret", "secret")

    def test_wrong_or_missing_token(self):
        assert not verify_gitlab_token("other", "secret")
        assert not verify_gitlab_token(None, "secret")
        assert not verify_gitlab_token("", "secret")


class TestGitLabWebhook:
    """Test the GitLab webhook endpoint."""

    def setup_method(self):
        """Set up test fixtures."""
        self.router = AsyncMock()
        self.client = TestClient(create_app(make_config(), self.router))

    def post(self, headers=None, body=None, drop=()):
        merged = {**GITLAB_HEADERS, **(headers or {})}
        for name in drop:
            merged.pop(name)
        content = body if body is not None else json.dumps(HOOK_BODY)
        return self.client.post("/gitlab/webhooks", content=content, headers=merged)

    def test_accepted(self):
        """Test that a valid hook is acknowledged and handed to the router."""
        response = self.post()

        assert response.status_code == 200
        assert response.json() == {"status": "accepted"}
        self.router.handle_merge_request_hook.assert_awaited_once_with(HOOK_BODY, "uuid-1")

    def test_content_type_with_charset(self):
        """Test that a charset parameter is accepted."""
        response = self.post(headers={"Content-Type": "application/json; charset=utf-8"})

        assert response.status_code == 200

    @pytest.mark.parametrize(
        "headers, drop",
        [
            ({"X-Gitlab-Token": "wrong"}, ()),
            ({}, ("X-Gitlab-Token",)),
        ],
    )
    def test_invalid_token(self, headers, drop):
        """Test that a wrong or missing token is rejected."""
        response = self.post(headers=headers, drop=drop)

        assert response.status_code == 401
        self.router.handle_merge_request_hook.assert_not_awaited()

    @pytest.mark.parametrize(
        "headers",
        [
            {"Content-Type": "text/plain"},
            {"X-Gitlab-Instance": "https://gitlab.example.com"},
            {"X-Gitlab-Event": "Push Hook"},
        ],
    )
    def test_bad_headers(self, headers):
        """Test that unexpected headers are rejected."""
        response = self.post(headers=headers)

        assert response.status_code == 400
        self.router.handle_merge_request_hook.assert_not_awaited()

    def test_invalid_json(self):
        """Test that an unparsable body is rejected."""
        response = self.post(body="{not json")

        assert response.status_code == 400

    def test_token_checked_before_content_type(self):
        """Test that authentication fails first."""
        response = self.post(headers={"X-Gitlab-Token": "wrong", "Content-Type": "text/plain"})

        assert response.status_code == 401

    def test_disabled(self):
        """Test that disabled webhooks respond not found."""
        client = TestClient(
            create_app(make_config(gitlab_webhooks={"enabled": False}), self.router)
        )

        response = client.post(
            "/gitlab/webhooks", content=json.dumps(HOOK_BODY), headers=GITLAB_HEADERS
        )

        assert response.status_code == 404

    def test_no_secret_configured(self):
        """Test that the token is not required when no secret is configured."""
        config = make_config()
        config.gitlab.webhook_secret = None
        client = TestClient(create_app(config, self.router))

        headers = {k: v for k, v in GITLAB_HEADERS.items() if k != "X-Gitlab-Token"}
        response = client.post("/gitlab/webhooks", content=json.dumps(HOOK_BODY), headers=headers)

        assert response.status_code == 200

    def test_empty_secret_from_environment(self, tmp_path, monkeypatch):
        """Test that an empty secret variable disables the token check."""
        monkeypatch.setenv("X_GITLAB_TOKEN", "")
        path = tmp_path / "config.yaml"
        path.write_text(
            "slack:\n  bot_token: xoxb-test\n  signing_secret: signing\n"
            "gitlab:\n  private_token: glpat-test\n  webhook_secret: ${X_GITLAB_TOKEN}\n"
        )
        config = load_config(path)
        client = TestClient(create_app(config, self.router))

        headers = {k: v for k, v in GITLAB_HEADERS.items() if k != "X-Gitlab-Token"}
        response = client.post("/gitlab/webhooks", content=json.dumps(HOOK_BODY), headers=headers)

        assert config.gitlab.webhook_secret is None
        assert response.status_code == 200
        self.router.handle_merge_request_hook.assert_awaited_once()


class TestSlackEndpoints:
    """Test the Slack endpoints."""

    def setup_method(self):
        """Set up test fixtures."""
        self.router = AsyncMock()
        self.client = TestClient(create_app(make_config(), self.router))

    def test_health_check(self):
        response = self.client.get("/health-check")

        assert response.status_code == 200
        assert response.text == "OK"

    def test_url_verification(self):
        """Test answering the Events API challenge."""
        body = json.dumps({"type": "url_verification", "challenge": "abc123"})

        response = self.client.post("/slack/events", content=body, headers=slack_headers(body))

        assert response.status_code == 200
        assert response.json() == {"challenge": "abc123"}
        self.router.handle_event.assert_not_awaited()

    def test_event_callback(self):
        """Test that the inner event is handed to the router."""
        event = {"type": "link_shared", "channel": "C1"}
        body = json.dumps({"type": "event_callback", "event_id": "Ev1", "event": event})

        response = self.client.post("/slack/events", content=body, headers=slack_headers(body))

        assert response.status_code == 200
        self.router.handle_event.assert_awaited_once_with(event)

    def test_invalid_signature(self):
        """Test that unsigned requests are rejected."""
        body = json.dumps({"type": "url_verification", "challenge": "abc123"})
        headers = slack_headers(body)
        headers["X-Slack-Signature"] = "v0=" + "0" * 64

        response = self.client.post("/slack/events", content=body, headers=headers)

        assert response.status_code == 401

    def test_interaction(self):
        """Test that form encoded interaction payloads are decoded."""
        payload = {"type": "message_action", "callback_id": "msg_shortcut_update_mr_link_unfurl"}
        body = urlencode({"payload": json.dumps(payload)})

        response = self.client.post(
            "/slack/interactions",
            content=body,
            headers=slack_headers(body, content_type="application/x-www-form-urlencoded"),
        )

        assert response.status_code == 200
        self.router.handle_interaction.assert_awaited_once_with(payload)
