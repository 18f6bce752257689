"""ccpa command line entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from loguru import logger

from ccpa.agent.executor import check_agent_command
from ccpa.config import CONFIG_FILENAME, load_settings, write_config_template
from ccpa.errors import ConfigurationError
from ccpa.logging_utils import configure_logging
from ccpa.telegram.bot import TelegramBot

app = typer.Typer(
    name="ccpa",
    help="Relay Telegram chats to a coding agent CLI.",
    add_completion=False,
)

CwdOption = typer.Option(None, "--cwd", help="Working directory (default: current directory)")


def _resolve_cwd(cwd: Path | None) -> Path:
    return (cwd or Path.cwd()).resolve()


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context, cwd: Path | None = CwdOption) -> None:
    if ctx.invoked_subcommand is None:
        start(cwd)


@app.command()
def init(cwd: Path | None = CwdOption) -> None:
    """Create ccpa.config.json in the working directory."""
    workspace = _resolve_cwd(cwd)
    try:
        path = write_config_template(workspace)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    typer.echo(f"Created {path.name} in {workspace}")
    typer.echo("\nNext steps:")
    typer.echo(f"1. Edit {CONFIG_FILENAME} and add your Telegram bot token")
    typer.echo('2. Add allowed user ids to the "allowed_user_ids" array')
    typer.echo(f"3. Run: ccpa start --cwd {workspace}")


@app.command()
def start(cwd: Path | None = CwdOption) -> None:
    """Start the bot."""
    workspace = _resolve_cwd(cwd)
    try:
        settings = load_settings(workspace)
        configure_logging(settings.log_level, profile=settings.log_profile)
        if not settings.telegram_token:
            raise ConfigurationError("telegram_token is not set; run `ccpa init` or set CCPA_TELEGRAM_TOKEN")
        version = check_agent_command(settings.agent_command)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc

    logger.info("ccpa.start workspace={} data_dir={}", settings.workspace, settings.resolved_data_dir)
    logger.info("ccpa.agent.verified command={} version={}", settings.agent_command, version)
    asyncio.run(TelegramBot.from_settings(settings).run_forever())
