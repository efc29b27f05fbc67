"""tuicord CLI: terminal client for Discord conversations."""

from __future__ import annotations

import asyncio

import structlog
import typer
from rich.console import Console
from rich.panel import Panel

from tuicord import __version__
from tuicord.config import TuicordConfig, get_config
from tuicord.errors import ProviderConnectionError
from tuicord.logging import setup_logging
from tuicord.models import Flavor
from tuicord.providers.discord import DiscordProvider
from tuicord.session import Session
from tuicord.ui.console import ConsoleRenderer

logger = structlog.get_logger()

app = typer.Typer(
    name="tuicord",
    help="tuicord: Discord in your terminal",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

console = Console()

_LOGO = "[bold cyan]t u i c o r d[/bold cyan]"


def _banner() -> None:
    console.print(Panel(_LOGO, border_style="blue", subtitle=f"v{__version__}"))
    console.print("The end of brainrot and doomscrolling is here.")
    console.print("Type 'tuicord --help' to see available commands.")
    console.print("Pro Tip: Use vim-motion ('k', 'j') to navigate chats and messages.")


@app.callback(invoke_without_command=True)
def root(ctx: typer.Context) -> None:
    """Browse and chat in Discord DMs, groups and servers."""
    if ctx.invoked_subcommand is None:
        _banner()
        raise typer.Exit(0)


def _resolve_config(log_level: str | None, history_limit: int | None) -> TuicordConfig:
    config = get_config()
    updates = {}
    if log_level:
        updates["log_level"] = log_level.upper()
    if history_limit is not None:
        updates["history_limit"] = history_limit
    return config.model_copy(update=updates) if updates else config


async def _run(config: TuicordConfig, flavor: Flavor) -> None:
    provider = DiscordProvider(config=config)
    try:
        user = await provider.connect()
    except BaseException:
        await provider.close()
        raise
    logger.info("cli.session.starting", flavor=flavor, user=user.username)
    session = Session(
        provider=provider,
        renderer=ConsoleRenderer(),
        flavor=flavor,
        history_limit=config.history_limit,
        command_prefix=config.command_prefix,
    )
    await session.run()


def _launch(flavor: Flavor, log_level: str | None, history_limit: int | None) -> None:
    config = _resolve_config(log_level, history_limit)
    if not config.has_token:
        console.print("[red]Error:[/red] No Discord token configured.")
        console.print("Set TUICORD_TOKEN (or DISCORD_USER_TOKEN) in the environment or a .env file.")
        raise typer.Exit(1)

    setup_logging(level=config.log_level, fmt=config.log_format, log_file=config.log_file)
    try:
        asyncio.run(_run(config, flavor))
    except ProviderConnectionError as e:
        console.print(f"[red]Error:[/red] Cannot connect to Discord: {e}")
        console.print("Check that your token is valid.")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]bye[/dim]")
        return
    console.print("[dim]bye[/dim]")


_LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
_HISTORY_LIMIT_OPTION = typer.Option(
    None, "--history-limit", min=1, max=100, help="Messages fetched when opening a conversation"
)


@app.command()
def chat(
    log_level: str | None = _LOG_LEVEL_OPTION,
    history_limit: int | None = _HISTORY_LIMIT_OPTION,
) -> None:
    """All DMs and server text channels in one list."""
    _launch("chat", log_level, history_limit)


@app.command()
def dm(
    log_level: str | None = _LOG_LEVEL_OPTION,
    history_limit: int | None = _HISTORY_LIMIT_OPTION,
) -> None:
    """Direct messages and group DMs, with unread counts."""
    _launch("dm", log_level, history_limit)


@app.command()
def server(
    log_level: str | None = _LOG_LEVEL_OPTION,
    history_limit: int | None = _HISTORY_LIMIT_OPTION,
) -> None:
    """Servers, then their categories and channels."""
    _launch("server", log_level, history_limit)


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
