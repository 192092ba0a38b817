"""CLI commands for bubble."""

import asyncio
import mimetypes
import signal
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from bubble import __logo__, __version__

app = typer.Typer(
    name="bubble",
    help=f"{__logo__} bubble - Streaming conversational assistant",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} bubble v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """bubble - Streaming conversational assistant."""
    pass


@app.command()
def onboard():
    """Initialize bubble configuration."""
    from bubble.config.loader import get_config_path, get_env_path, save_config
    from bubble.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Created secrets file at {get_env_path()} (mode 600)")

    console.print(f"\n{__logo__} bubble is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API keys to [cyan]~/.bubble/.env[/cyan]")
    console.print("     BUBBLE_PROVIDERS__GEMINI__API_KEY=...")
    console.print("     BUBBLE_PROVIDERS__OPENROUTER__API_KEY=sk-or-v1-... (optional)")
    console.print("  2. Chat: [cyan]bubble chat -m \"Hello!\"[/cyan]")


def _load_attachment(path: Path):
    from bubble.agent.turns import Attachment

    mime_type, _ = mimetypes.guess_type(path.name)
    return Attachment(
        name=path.name,
        mime_type=mime_type or "application/octet-stream",
        data=path.read_bytes(),
    )


@app.command()
def chat(
    message: str = typer.Option(..., "--message", "-m", help="Message to send"),
    model: str = typer.Option("", "--model", help="Model id (native or relay)"),
    mode: str = typer.Option(None, "--mode", help="fast | think | deep | instant (default from config)"),
    files: list[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Attach a file"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Send one message and stream the reply."""
    from bubble.agent.orchestrator import Orchestrator
    from bubble.agent.turns import ConversationContext, Credentials, ThinkingMode
    from bubble.config.loader import load_config

    if logs:
        logger.enable("bubble")
    else:
        logger.disable("bubble")

    config = load_config()
    mode = mode or config.agents.defaults.thinking_mode
    try:
        thinking_mode = ThinkingMode(mode.strip().lower())
    except ValueError:
        console.print(f"[red]Unknown mode: {mode}[/red]")
        raise typer.Exit(1)

    if not config.get_native_api_key():
        console.print("[yellow]No native API key configured; run `bubble onboard`.[/yellow]")

    attachments = [_load_attachment(p) for p in files or []]
    context = ConversationContext(
        credentials=Credentials(
            native_api_key=config.get_native_api_key() or "",
            relay_api_key=config.get_relay_api_key(),
            user_id=config.user_id,
        ),
        model=model or config.get_model(),
        thinking_mode=thinking_mode,
    )
    orchestrator = Orchestrator(config)

    streamed: list[str] = []

    def _print_chunk(text: str) -> None:
        streamed.append(text)
        console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    async def _run():
        loop = asyncio.get_running_loop()
        # Ctrl+C stops generation and keeps the partial reply
        try:
            loop.add_signal_handler(signal.SIGINT, context.signal.set)
        except NotImplementedError:
            pass
        return await orchestrator.run(message, context, attachments, on_chunk=_print_chunk)

    turn = asyncio.run(_run())
    console.print()
    # Errors and instant-mode failures come back as text that was never streamed
    if turn.text and (not streamed or turn.text.startswith("An error occurred:")):
        console.print(turn.text, markup=False, highlight=False)

    if turn.stopped:
        console.print("[dim](stopped)[/dim]")
    if turn.image_data:
        console.print(f"[green]✓[/green] Image generated ({len(turn.image_data)} base64 chars)")
    if turn.citations:
        table = Table(title="Sources")
        table.add_column("#", style="dim")
        table.add_column("Title")
        table.add_column("URL", style="cyan")
        for i, citation in enumerate(turn.citations, start=1):
            table.add_row(str(i), citation.title, citation.uri)
        console.print(table)


if __name__ == "__main__":
    app()
