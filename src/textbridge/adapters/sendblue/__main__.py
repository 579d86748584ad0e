"""CLI entry point for the Sendblue bridge."""

import asyncio
import logging
from pathlib import Path

import typer
import uvicorn
from typing_extensions import Annotated

from ...core.exceptions import ConfigurationError, PersistenceError
from ...core.history import ConversationHistory
from ...core.logging import mask_number
from .adapter import SendblueBridge
from .config import load_settings

app = typer.Typer(
    name="textbridge",
    help="Sendblue iMessage/SMS to chat backend bridge"
)

ConfigOption = Annotated[Path, typer.Option("--config", "-c", help="Path to YAML config file")]


@app.command()
def run(
    config: ConfigOption = Path("sendblue_config.yaml"),
    host: Annotated[str, typer.Option("--host", "-h", help="Host to bind the webhook to (overrides config)")] = "",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind the webhook to (overrides config)")] = 0,
    log_level: Annotated[str, typer.Option("--log-level", help="Log level")] = "",
):
    """Run the bridge (webhook server if enabled, otherwise poll-only)."""
    try:
        settings = load_settings(config)
    except ConfigurationError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)

    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    bridge = SendblueBridge(settings)
    webhook = settings.webhook

    try:
        if webhook.enabled:
            bind_host = host or webhook.host
            bind_port = port or webhook.port
            typer.echo(f"Starting Sendblue bridge on {bind_host}:{bind_port}")
            typer.echo(f"Webhook endpoint: {webhook.path}")
            uvicorn.run(bridge.app, host=bind_host, port=bind_port, log_level=level.lower())
        else:
            typer.echo("Starting Sendblue bridge (poll-only)")
            asyncio.run(bridge.run_forever())
    except KeyboardInterrupt:
        typer.echo("\nShutting down...")
    except PersistenceError as e:
        typer.echo(f"Store error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def validate_config(config: ConfigOption = Path("sendblue_config.yaml")):
    """Validate configuration without starting the bridge."""
    try:
        settings = load_settings(config)
    except ConfigurationError as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo("✅ Configuration is valid")
    typer.echo(f"Phone number: {mask_number(settings.phone_number)}")
    typer.echo(f"Access policy: {settings.dm_policy} ({len(settings.allow_from)} allowed numbers)")
    typer.echo(f"Polling: {'every ' + str(settings.poll_interval_ms) + 'ms' if settings.poll_enabled else 'disabled'}")
    if settings.webhook.enabled:
        typer.echo(f"Webhook: {settings.webhook.host}:{settings.webhook.port}{settings.webhook.path}")
        typer.echo(f"Webhook secret: {'set' if settings.webhook.secret else 'not set'}")
    else:
        typer.echo("Webhook: disabled")
    typer.echo(f"Database: {settings.database_url}")
    typer.echo(f"Chat backend URL: {settings.backend_http_url}")


@app.command()
def history(
    chat_id: Annotated[str, typer.Argument(help="Chat id (sender phone number)")] = "",
    config: ConfigOption = Path("sendblue_config.yaml"),
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of messages to show")] = 20,
):
    """List chats, or show the recent history of one chat."""
    try:
        settings = load_settings(config)
    except ConfigurationError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)
    if settings.history_dir is None:
        typer.echo("History is disabled (history_dir is not set)", err=True)
        raise typer.Exit(1)

    store = ConversationHistory(settings.history_dir)
    if not chat_id:
        for chat in store.list_chats():
            typer.echo(f"{chat['chat_id']}  {chat.get('message_count', 0)} messages  {chat.get('last_activity_at', '')}")
        return

    for event in asyncio.run(store.load_history(chat_id, limit=limit)):
        arrow = "→" if event.get("is_outbound") else "←"
        typer.echo(f"{event['timestamp']} {arrow} {event['content']}")


if __name__ == "__main__":
    app()
