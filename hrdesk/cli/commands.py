"""CLI commands for hrdesk."""

import asyncio
from contextlib import nullcontext
from pathlib import Path

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from hrdesk import __logo__, __version__

app = typer.Typer(
    name="hrdesk",
    help=f"{__logo__} hrdesk - conversational HR assistant",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}


# ---------------------------------------------------------------------------
# CLI input: prompt_toolkit for editing, history, and display
# ---------------------------------------------------------------------------


def _prompt_session() -> PromptSession:
    """Create a prompt_toolkit session with persistent file history."""
    from hrdesk.settings import get_settings

    history_file = get_settings().state_dir / "history" / "cli_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)
    return PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


async def _read_input(session: PromptSession) -> str:
    try:
        with patch_stdout():
            return await session.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def _print_reply(reply, render_markdown: bool) -> None:
    """Render an assistant reply, including any pending confirmation."""
    body = Markdown(reply.message or "") if render_markdown else Text(reply.message or "")
    console.print()
    console.print(f"[cyan]{__logo__} hrdesk[/cyan]")
    console.print(body)
    for action in reply.actions:
        mark = "[green]✓[/green]" if action.get("success") else "[red]✗[/red]"
        console.print(f"{mark} [dim]{action.get('type')}[/dim] {action.get('error') or ''}".rstrip())
    if reply.requires_confirmation:
        console.print(f"[yellow]Awaiting confirmation[/yellow] [dim]({reply.confirmation_type})[/dim]")
    elif reply.suggestions:
        console.print("[dim]Try: " + " · ".join(reply.suggestions[:3]) + "[/dim]")
    console.print()


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} hrdesk v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """hrdesk - conversational HR assistant."""
    pass


# ============================================================================
# Setup
# ============================================================================


@app.command()
def init():
    """Write a default configuration file."""
    from hrdesk.config.loader import get_config_path, save_config
    from hrdesk.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext steps:")
    console.print(f"  1. Add provider API keys to [cyan]{config_path}[/cyan] (or HRDESK_* env vars)")
    console.print("  2. Try it: [cyan]hrdesk chat --demo[/cyan]")


# ============================================================================
# Chat
# ============================================================================


async def _demo_container():
    from hrdesk.agent.orchestrator import build_orchestrator
    from hrdesk.api.app import Container
    from hrdesk.channels.email import LogNotifier
    from hrdesk.config.loader import load_config
    from hrdesk.session.manager import SessionManager
    from hrdesk.settings import get_settings
    from hrdesk.storage.memory import MemoryDataStore, seed_demo

    store = MemoryDataStore()
    await seed_demo(store)
    notifier = LogNotifier()
    settings = get_settings()
    sessions = SessionManager(settings.state_dir / "transcripts", idle_ttl_seconds=settings.session_idle_ttl_seconds)
    orchestrator = build_orchestrator(load_config(), store, notifier, sessions=sessions)
    return Container(store=store, notifier=notifier, orchestrator=orchestrator)


@app.command()
def chat(
    user: str = typer.Option("u-emp", "--user", "-u", help="User id to chat as"),
    message: str = typer.Option(None, "--message", "-m", help="Send one message and exit"),
    session_id: str = typer.Option("cli:default", "--session", "-s", help="Session ID"),
    demo: bool = typer.Option(False, "--demo", help="Use an in-memory store seeded with a demo company"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render replies as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs during chat"),
    transcript: bool = typer.Option(False, "--transcript", help="Save the conversation as JSONL on exit"),
):
    """Chat with the assistant from the terminal."""
    from loguru import logger

    from hrdesk.session.manager import ConversationContext
    from hrdesk.storage.repository import Entity

    if logs:
        logger.enable("hrdesk")
    else:
        logger.disable("hrdesk")

    def _thinking():
        if logs:
            return nullcontext()
        return console.status("[dim]hrdesk is thinking...[/dim]", spinner="dots")

    async def run() -> None:
        if demo:
            container = await _demo_container()
        else:
            from hrdesk.api.app import build_container
            from hrdesk.storage.database import create_all_tables

            await create_all_tables()
            container = build_container()

        try:
            row = await container.store.get(Entity.USERS, user)
            if row is None:
                console.print(f"[red]Unknown user: {user}[/red]")
                raise typer.Exit(1)
            ctx = ConversationContext.from_user(row)
            orchestrator = container.orchestrator

            if message:
                with _thinking():
                    reply = await orchestrator.handle_message(session_id, ctx, message)
                _print_reply(reply, markdown)
                return

            prompt = _prompt_session()
            console.print(
                f"{__logo__} Chatting as [bold]{ctx.first_name or ctx.user_id}[/bold] ({ctx.role}). "
                "Type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit.\n"
            )
            while True:
                try:
                    command = (await _read_input(prompt)).strip()
                except KeyboardInterrupt:
                    break
                if not command:
                    continue
                if _is_exit_command(command):
                    break
                with _thinking():
                    reply = await orchestrator.handle_message(session_id, ctx, command)
                _print_reply(reply, markdown)
            console.print("\nGoodbye!")
            if transcript and orchestrator.sessions.get(session_id) is not None:
                path = orchestrator.sessions.save_transcript(session_id)
                console.print(f"[dim]Transcript saved to {path}[/dim]")
        finally:
            await container.close()
            if not demo:
                from hrdesk.storage.database import dispose_engine

                await dispose_engine()

    asyncio.run(run())


# ============================================================================
# Status
# ============================================================================


@app.command()
def providers():
    """Show configured LLM providers in routing order."""
    from hrdesk.config.loader import load_config
    from hrdesk.providers.registry import build_providers
    from hrdesk.providers.router import LLMRouter

    config = load_config()
    router = LLMRouter.from_config(config, build_providers(config))

    table = Table(title="LLM providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Privacy approved")
    table.add_column("Model")
    for entry in router.status():
        cfg = config.get_provider(entry["provider"])
        table.add_row(
            entry["provider"],
            str(entry["priority"]),
            "[green]✓[/green]" if entry["privacy_approved"] else "[dim]no[/dim]",
            (cfg.model if cfg and cfg.model else "[dim]default[/dim]"),
        )
    if not router.providers:
        console.print("[yellow]No providers are configured; set API keys first.[/yellow]")
        return
    console.print(table)


@app.command()
def status():
    """Show hrdesk configuration status."""
    from hrdesk.config.loader import get_config_path
    from hrdesk.settings import get_settings

    settings = get_settings()
    config_path: Path = settings.config_path or get_config_path()

    console.print(f"{__logo__} hrdesk status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Environment: {settings.env}")
    console.print(f"State dir: {settings.state_dir}")
    console.print(f"Database: {settings.database_url.split('@')[-1]}")
    console.print(f"Session locks: {'redis' if settings.redis_url else 'in-process'}")
    console.print(f"Email: {'webhook' if settings.email_webhook_url else 'log only'}")


# ============================================================================
# Serve (FastAPI HTTP)
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind host (default: HRDESK_HOST)"),
    port: int = typer.Option(None, "--port", "-p", help="Bind port (default: HRDESK_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Start the hrdesk HTTP API server (FastAPI + Uvicorn)."""
    import uvicorn

    from hrdesk.settings import get_settings

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    console.print(f"{__logo__} Starting hrdesk API on {host}:{port} ...")
    uvicorn.run(
        "hrdesk.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    app()
