"""Click CLI: run the relay server and manage recipient webhook tokens."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import uvicorn

from src.audit.logger import validate_audit_chain
from src.auth.tokens import WebhookAuthenticator, load_or_create_secret
from src.bootstrap import build_store
from src.config import RelayConfig, configure_logging, webhook_url
from src.errors import RelayError
from src.vk.client import VKClient


def _load_config() -> RelayConfig:
    try:
        return RelayConfig.from_env()
    except KeyError as exc:
        raise click.ClickException(f"missing environment variable {exc}") from exc


async def _recipient_settings(config: RelayConfig, recipient_id: int, reset: bool) -> str:
    client = VKClient(config.vk_access_token, config.vk_api_version)
    try:
        store = build_store(config, client)
        authenticator = WebhookAuthenticator(await load_or_create_secret(store), store)
        if reset:
            token = await authenticator.regenerate_token(recipient_id)
        else:
            token = await authenticator.generate_token(recipient_id)
    finally:
        await client.aclose()
    return f"URL: {webhook_url(config.domain, recipient_id)}\nSecret Token: {token}"


def _uvicorn_level(level: str) -> str:
    level = level.lower()
    return level if level in uvicorn.config.LOG_LEVELS else "info"


@click.group()
@click.option("--level", default="info", help="Log level (debug, info, warning, error).")
@click.pass_context
def cli(ctx: click.Context, level: str) -> None:
    """GitLab to VK notification relay."""
    ctx.ensure_object(dict)
    ctx.obj["level"] = level
    configure_logging(level)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address.")
@click.option("--port", default=8080, type=int, help="Bind port.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the webhook server."""
    uvicorn.run(
        "src.server.app:create_app_from_env",
        factory=True,
        host=host,
        port=port,
        log_level=_uvicorn_level(ctx.obj["level"]),
    )


@cli.command()
@click.argument("recipient_id", type=int)
def settings(recipient_id: int) -> None:
    """Print the webhook URL and token for a recipient."""
    config = _load_config()
    try:
        click.echo(asyncio.run(_recipient_settings(config, recipient_id, reset=False)))
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("reset-token")
@click.argument("recipient_id", type=int)
def reset_token(recipient_id: int) -> None:
    """Rotate a recipient's token, invalidating the old webhook URL."""
    config = _load_config()
    try:
        click.echo(asyncio.run(_recipient_settings(config, recipient_id, reset=True)))
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("Previous token revoked.", err=True)


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def verify_audit(log_path: Path) -> None:
    """Check the audit log hash chain; exits 1 when it is broken."""
    result = validate_audit_chain(log_path)
    if not result.valid:
        click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
        raise SystemExit(1)
    click.echo("Audit chain intact")
