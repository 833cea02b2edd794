"""Configuration management for the merge request mention tracker."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator


class SlackConfig(BaseModel):
    """Slack app credentials."""

    bot_token: SecretStr = Field(..., description="Bot user OAuth token (xoxb-...)")
    signing_secret: SecretStr = Field(..., description="Signing secret for inbound Slack requests")


class GitLabConfig(BaseModel):
    """GitLab API and webhook settings."""

    private_token: SecretStr = Field(..., description="Token sent in the PRIVATE-TOKEN header")
    api_url: str = "https://gitlab.com/api/v4"
    instance_url: str = Field(
        default="https://gitlab.com", description="Expected value of the X-Gitlab-Instance header"
    )
    webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Expected value of the X-Gitlab-Token header, if any"
    )
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("webhook_secret", mode="before")
    @classmethod
    def _blank_secret_is_unset(cls, value):
        # An empty ${X_GITLAB_TOKEN} disables the token check
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value


class DatabaseConfig(BaseModel):
    """Database settings."""

    path: str = Field(
        default="~/.mr-tracker/mentions.db", description="Path to SQLite database file"
    )


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)


class OnLinkSharedConfig(BaseModel):
    unfurl_link_in_messages: bool = True
    unfurl_link_in_composer: bool = True
    auto_assign_author_as_assignee: bool = True


class ReactionTriggerConfig(BaseModel):
    enabled: bool = True
    reaction: str = "eyes"


class MergeRequestReactionsConfig(BaseModel):
    on_approved: str = "white_check_mark"
    on_merged: str = "tada"
    on_closed: str = "no_entry"


class MergeRequestWebhookConfig(BaseModel):
    add_reactions: bool = True
    update_unfurls: bool = True
    use_reactions: MergeRequestReactionsConfig = MergeRequestReactionsConfig()


class GitLabWebhooksConfig(BaseModel):
    enabled: bool = True
    merge_request: MergeRequestWebhookConfig = MergeRequestWebhookConfig()


class FeaturesConfig(BaseModel):
    """Feature toggles for each event side effect."""

    channels_only: list[str] = Field(
        default_factory=list, description="Channel allow-list, empty means all channels"
    )
    on_link_shared: OnLinkSharedConfig = OnLinkSharedConfig()
    on_reaction_added: ReactionTriggerConfig = ReactionTriggerConfig()
    on_reaction_removed: ReactionTriggerConfig = ReactionTriggerConfig()
    gitlab_webhooks: GitLabWebhooksConfig = GitLabWebhooksConfig()

    def is_channel_allowed(self, channel: Optional[str]) -> bool:
        """Check a channel against the allow-list."""
        if not self.channels_only:
            return True
        return channel in self.channels_only


class HousekeepingConfig(BaseModel):
    """Scheduled job settings."""

    retention_days: int = Field(default=7, ge=1, description="Delete mentions older than N days")
    purge_hour: int = Field(default=6, ge=0, le=23)
    refresh_hours: list[int] = Field(default_factory=lambda: list(range(7, 20)))
    refresh_weekdays: list[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4], description="0 is Monday"
    )


class Config(BaseModel):
    """Root configuration model."""

    slack: SlackConfig
    gitlab: GitLabConfig
    database: DatabaseConfig = DatabaseConfig()
    server: ServerConfig = ServerConfig()
    features: FeaturesConfig = FeaturesConfig()
    housekeeping: HousekeepingConfig = HousekeepingConfig()


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load and validate configuration from YAML file.

    Supports ${VAR_NAME} syntax for environment variable expansion.

    Args:
        config_path: Path to the configuration file.

    Returns:
        Validated Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If config is invalid.
        ValueError: If referenced environment variable is not set.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Copy config.example.yaml to config.yaml and fill in your values."
        )

    with path.open() as f:
        raw_config = yaml.safe_load(f) or {}

    # Expand environment variables in the format ${VAR_NAME}
    def expand_env_vars(obj):
        if isinstance(obj, dict):
            return {k: expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [expand_env_vars(item) for item in obj]
        elif isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
            env_var = obj[2:-1]
            value = os.getenv(env_var)
            if value is None:
                raise ValueError(f"Environment variable '{env_var}' is not set")
            return value
        return obj

    raw_config = expand_env_vars(raw_config)

    return Config(**raw_config)
