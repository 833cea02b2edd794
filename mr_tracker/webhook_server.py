"""FastAPI server for GitLab webhooks and Slack events."""

import hmac
import json
import logging
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from slack_sdk.signature import SignatureVerifier

from .config import Config

logger = logging.getLogger(__name__)

MERGE_REQUEST_HOOK = "Merge Request Hook"


def verify_gitlab_token(received: Optional[str], secret: str) -> bool:
    """Compare the X-Gitlab-Token header with the configured secret in constant time."""
    if not received:
        return False
    return hmac.compare_digest(received.encode("utf-8"), secret.encode("utf-8"))


def _parse_json_object(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Failed to parse request body: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON object expected")
    return payload


def create_app(config: Config, router: Any) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration
        router: MentionEventRouter instance

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Merge Request Mention Tracker",
        description="GitLab webhook and Slack event receiver",
        version="1.0.0",
    )
    signature_verifier = SignatureVerifier(config.slack.signing_secret.get_secret_value())

    def verify_slack_request(body: bytes, request: Request) -> None:
        if not signature_verifier.is_valid_request(body, dict(request.headers)):
            logger.warning("Invalid Slack request signature on %s", request.url.path)
            raise HTTPException(status_code=401, detail="Invalid signature")

    @app.get("/health-check", response_class=PlainTextResponse)
    async def health_check() -> str:
        """Health check endpoint."""
        return "OK"

    @app.post("/gitlab/webhooks")
    async def gitlab_webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        """Handle incoming GitLab merge request webhooks.

        Headers are checked before the body is read. The response is sent as
        soon as the body is parsed, the event itself is processed in the
        background.
        """
        webhooks = config.features.gitlab_webhooks
        if not webhooks.enabled:
            raise HTTPException(status_code=404, detail="Not found")

        if config.gitlab.webhook_secret is not None:
            if not verify_gitlab_token(
                request.headers.get("X-Gitlab-Token"),
                config.gitlab.webhook_secret.get_secret_value(),
            ):
                logger.debug("Provided value in X-Gitlab-Token header is invalid")
                raise HTTPException(status_code=401, detail="Invalid token")

        content_type = request.headers.get("Content-Type", "")
        if content_type.split(";")[0].strip().lower() != "application/json":
            logger.debug("Not a request with content-type application/json: %s", content_type)
            raise HTTPException(status_code=400, detail="Expected application/json")

        instance = request.headers.get("X-Gitlab-Instance")
        if instance != config.gitlab.instance_url:
            logger.warning("Received webhook from unexpected GitLab instance: %s", instance)
            raise HTTPException(status_code=400, detail="Unexpected GitLab instance")

        event_type = request.headers.get("X-Gitlab-Event")
        if event_type != MERGE_REQUEST_HOOK:
            logger.warning(
                "Received webhook with event type '%s', but '%s' is expected",
                event_type,
                MERGE_REQUEST_HOOK,
            )
            raise HTTPException(status_code=400, detail="Unsupported event type")

        payload = _parse_json_object(await request.body())
        event_uuid = request.headers.get("X-Gitlab-Event-UUID")

        background_tasks.add_task(router.handle_merge_request_hook, payload, event_uuid)
        logger.info("Accepted GitLab webhook event_uuid=%s", event_uuid)

        return JSONResponse({"status": "accepted"}, status_code=200)

    @app.post("/slack/events")
    async def slack_events(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        """Handle Slack Events API requests."""
        body = await request.body()
        verify_slack_request(body, request)
        payload = _parse_json_object(body)

        if payload.get("type") == "url_verification":
            return JSONResponse({"challenge": payload.get("challenge")})

        if payload.get("type") == "event_callback" and isinstance(payload.get("event"), dict):
            logger.debug(
                "Accepted Slack event %s (retry %s)",
                payload.get("event_id"),
                request.headers.get("X-Slack-Retry-Num", "0"),
            )
            background_tasks.add_task(router.handle_event, payload["event"])
        else:
            logger.debug("Ignoring Slack request of type %s", payload.get("type"))

        return JSONResponse({"ok": True})

    @app.post("/slack/interactions")
    async def slack_interactions(
        request: Request, background_tasks: BackgroundTasks
    ) -> PlainTextResponse:
        """Handle Slack interactive components and shortcuts (form encoded)."""
        body = await request.body()
        verify_slack_request(body, request)

        form = parse_qs(body.decode("utf-8", errors="replace"))
        raw_payload = (form.get("payload") or [""])[0]
        payload = _parse_json_object(raw_payload.encode("utf-8"))

        background_tasks.add_task(router.handle_interaction, payload)
        return PlainTextResponse("")

    return app
