"""Flask CLI commands for refresh-token maintenance."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import click
from flask import current_app

from refreshguard.core.container import get_services
from refreshguard.services.auth.dto import IssueIn

LOGGER = logging.getLogger(__name__)


def _ensure_non_production(command: str) -> None:
    """Abort commands that mint credentials when running in production."""
    config = current_app.config
    app_env = str(config.get("APP_ENV", "")).lower()
    is_debug = bool(config.get("DEBUG"))
    is_testing = bool(config.get("TESTING"))
    if app_env == "production" or not (is_debug or is_testing):
        raise click.UsageError(
            f"The 'flask tokens {command}' command is restricted to non-production environments."
        )


@click.group("tokens")
def tokens_cli() -> None:
    """Refresh-token maintenance commands."""


@tokens_cli.command("cleanup")
@click.option(
    "--grace",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Keep records for this many seconds past their expiry.",
)
def cleanup(grace: int) -> None:
    """Delete refresh tokens that expired before now (minus the grace period)."""
    before = datetime.now(UTC) - timedelta(seconds=grace)
    deleted = get_services().refresh_tokens().purge_expired(before)
    LOGGER.info("Expired refresh tokens purged", extra={"event_type": "auth.cleanup"})
    click.echo(f"Deleted {deleted} expired refresh token(s).")


@tokens_cli.command("revoke-subject")
@click.argument("subject")
def revoke_subject(subject: str) -> None:
    """Revoke every refresh token owned by SUBJECT."""
    revoked = get_services().refresh_tokens().revoke_all_for_subject(subject)
    click.echo(f"Revoked {revoked} refresh token(s) for {subject}.")


@tokens_cli.command("issue")
@click.argument("subject")
def issue(subject: str) -> None:
    """Issue a token pair for SUBJECT (development only)."""
    _ensure_non_production("issue")
    pair = get_services().auth().issue(IssueIn(subject=subject, user_agent="flask-cli"))
    click.echo(f"access_token={pair.access_token}")
    click.echo(f"refresh_token={pair.refresh_token}")
    click.echo(f"expires_in={pair.expires_in}")
