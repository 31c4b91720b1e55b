"""
Command-line interface for Mira Assistant.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from mira_assistant.assistant.device import Device

app = typer.Typer(
    name="mira-assistant",
    help="Voice-activated assistant for smart glasses",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def _setup(
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logs"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_assistant_config(config_file: Optional[Path]):
    from mira_assistant.assistant.core import AssistantConfig

    if config_file is None:
        return AssistantConfig()
    if not config_file.exists():
        console.print(f"[red]Error: Config file not found: {config_file}[/red]")
        raise typer.Exit(1)
    console.print(f"[dim]Loaded config: {config_file}[/dim]")
    return AssistantConfig(**AssistantConfig.from_yaml(str(config_file)))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind to (default: MIRA_HOST or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind to (default: MIRA_PORT or 8080)"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the assistant server."""
    from mira_assistant.config import get_config
    from mira_assistant.server.app import run_server

    config = get_config()
    console.print(
        f"[green]Starting server on {host or config.server.host}:{port or config.server.port}[/green]"
    )
    console.print(f"[dim]LLM: {config.llm.backend} / {config.llm.model or 'default model'}[/dim]")

    run_server(host=host, port=port, reload=reload)


class ConsoleDevice(Device):
    """Device that renders to the terminal, for trying queries locally."""

    has_display = True

    async def show_text(self, text: str, duration_ms: Optional[int] = None) -> None:
        console.print(Panel(text, title="Mira", width=40))

    async def speak(self, text: str) -> None:
        console.print(f"[blue]🔊 {text}[/blue]")

    async def play_audio(self, url: str) -> None:
        console.print(f"[dim]♪ {url}[/dim]")

    async def capture_photo(self) -> Optional[str]:
        return None

    async def fetch_transcript(self, seconds: int) -> dict:
        return {"segments": []}


async def _ask(query: str, assistant_config, timer_wait: bool) -> None:
    import httpx

    from mira_assistant import __version__
    from mira_assistant.assistant.agent import ToolCallingAgent
    from mira_assistant.assistant.builtin_tools import register_builtin_tools
    from mira_assistant.assistant.context import ContextAssembler, LocationContext, NotificationBuffer, PhotoCache
    from mira_assistant.assistant.dispatcher import ResponseDispatcher
    from mira_assistant.assistant.llm import create_llm
    from mira_assistant.assistant.tools import ToolRegistry
    from mira_assistant.config import get_config

    config = get_config()
    llm = create_llm(
        config.llm.backend,
        config.llm.model,
        host=config.llm.host,
        api_key=config.llm.api_key,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens,
    )

    async with httpx.AsyncClient(
        timeout=10.0, headers={"User-Agent": f"mira-assistant/{__version__}"}
    ) as http:
        registry = ToolRegistry()
        register_builtin_tools(registry, {"http": http, "tools": config.tools, "user_id": "cli"})

        agent = ToolCallingAgent(llm, registry, max_turns=assistant_config.max_turns)
        dispatcher = ResponseDispatcher(
            ConsoleDevice(),
            speak_responses=assistant_config.speak_responses,
            line_width=assistant_config.line_width,
        )
        assembler = ContextAssembler(
            LocationContext(), NotificationBuffer(), PhotoCache(), "cli",
            notification_limit=assistant_config.notification_limit,
        )

        result = await agent.run(query, await assembler.assemble())
        await dispatcher.dispatch(result)

        if timer_wait and dispatcher.pending_timers:
            console.print("[dim]Waiting for timer... (Ctrl+C to stop)[/dim]")
            await dispatcher.wait_for_timers()
        dispatcher.cancel_timers()

    await llm.aclose()


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to ask, as if spoken after the wake word"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML assistant config"),
    wait: bool = typer.Option(False, "--wait", help="Wait for timers set by the query"),
):
    """
    Run one query through the assistant and print the response.

    Example:
        mira-assistant ask "what's the weather like"

    The LLM comes from MIRA_LLM_BACKEND / MIRA_LLM_MODEL / MIRA_LLM_HOST.
    """
    assistant_config = _load_assistant_config(config_file)
    try:
        asyncio.run(_ask(query, assistant_config, wait))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@app.command("wake-words")
def wake_words(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML assistant config"),
):
    """List the wake word variants that start listening."""
    from mira_assistant.core.text import clean_transcript

    assistant_config = _load_assistant_config(config_file)

    table = Table(title="Wake Words")
    table.add_column("Variant", style="cyan")
    table.add_column("Matched As")
    for variant in assistant_config.wake_words:
        table.add_row(variant, clean_transcript(variant))
    console.print(table)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
