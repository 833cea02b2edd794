"""Tracks GitLab merge request links posted in Slack and keeps them in sync."""
