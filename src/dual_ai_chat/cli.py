"""
CLI interface using Click.

Commands:
- ask: run one query and print the transcript as it happens
- chat: interactive session with manual retry, clear and notepad view
- config: show the effective configuration and secret status
"""

import asyncio
import base64
import mimetypes
import signal
import sys
from pathlib import Path
from typing import Optional, Callable, Awaitable

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from dual_ai_chat import __version__
from dual_ai_chat.completion.gemini import GeminiCompletionService
from dual_ai_chat.config import (
    AppConfig,
    ConfigurationError,
    DiscussionMode,
    SecretsManager,
    get_default_config_path,
    load_config,
)
from dual_ai_chat.logging import setup_logging, get_logger
from dual_ai_chat.orchestrator import (
    DiscussionError,
    DiscussionOrchestrator,
    NoCheckpointError,
)
from dual_ai_chat.state import (
    DiscussionEvent,
    EventType,
    ImagePart,
    MessagePurpose,
    MessageSender,
    QueryOutcome,
)
from dual_ai_chat.termination import clamp_fixed_turns

console = Console()
logger = get_logger(__name__)


SENDER_STYLES = {
    MessageSender.USER: "cyan",
    MessageSender.LOGICAL: "blue",
    MessageSender.CREATIVE: "magenta",
    MessageSender.SYSTEM: "dim",
}

EXIT_CODES = {
    QueryOutcome.COMPLETED: 0,
    QueryOutcome.FAILED: 1,
    QueryOutcome.CANCELLED: 130,
}


class TranscriptPrinter:
    """Event listener that renders the transcript to the console."""

    def __init__(self, orchestrator: DiscussionOrchestrator, out: Console = console):
        self.orchestrator = orchestrator
        self.out = out

    def __call__(self, event: DiscussionEvent) -> None:
        if event.type == EventType.MESSAGE_APPENDED and event.message:
            self._print_message(event)
        elif event.type == EventType.NOTEPAD_CHANGED and event.notepad is not None:
            writer = event.notepad.last_updated_by
            if writer is not None:
                self.out.print(f"[dim]Notepad updated by {self.persona_name(writer)}[/dim]")
        elif event.type == EventType.CHECKPOINT_RAISED:
            self.out.print("[yellow]The failed step can be retried manually.[/yellow]")
        elif event.type == EventType.QUERY_FINISHED and event.elapsed_ms is not None:
            self.out.print(f"[dim]Total processing time: {event.elapsed_ms / 1000:.2f}s ({event.outcome.value})[/dim]")

    def persona_name(self, sender: MessageSender) -> str:
        prompts = self.orchestrator.config.prompts
        if sender == MessageSender.LOGICAL:
            return prompts.logical_name
        if sender == MessageSender.CREATIVE:
            return prompts.creative_name
        return sender.value

    def _print_message(self, event: DiscussionEvent) -> None:
        message = event.message
        if message.sender == MessageSender.USER:
            return
        if message.purpose == MessagePurpose.SYSTEM_NOTIFICATION:
            self.out.print(f"[dim]» {message.text}[/dim]")
            return
        if message.purpose == MessagePurpose.STEP_FAILURE:
            self.out.print(Panel(message.text, title="Step failed", border_style="red"))
            return
        if message.purpose == MessagePurpose.CREDENTIALS_WARNING:
            self.out.print(Panel(message.text, title="Credentials", border_style="bold red"))
            return

        title = self.persona_name(message.sender)
        if message.purpose == MessagePurpose.FINAL_RESPONSE:
            title = f"{title} - final answer"
        subtitle = f"{message.duration_ms / 1000:.1f}s" if message.duration_ms else None
        self.out.print(Panel(
            Markdown(message.text),
            title=title,
            subtitle=subtitle,
            border_style=SENDER_STYLES.get(message.sender, "white"),
        ))


def _load_image(path: str) -> ImagePart:
    """Read an image file and base64 encode it."""
    image_path = Path(path)
    mime_type, _ = mimetypes.guess_type(image_path.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise click.BadParameter(f"Not an image file: {path}", param_hint="--image")
    data = base64.b64encode(image_path.read_bytes()).decode("ascii")
    return ImagePart(mime_type=mime_type, data=data, name=image_path.name)


def _build_orchestrator(app_config: AppConfig) -> DiscussionOrchestrator:
    gemini = app_config.gemini
    service = GeminiCompletionService(
        api_key=SecretsManager.get_secret(gemini.api_key_env),
        api_key_env=gemini.api_key_env,
        timeout_seconds=gemini.timeout_seconds,
        temperature=gemini.temperature,
    )
    return DiscussionOrchestrator(app_config, service)


def _load_or_exit(config_path: Optional[str]) -> AppConfig:
    """Load configuration, then set up logging to redact its API key variable."""
    try:
        app_config = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    options = click.get_current_context().find_root().obj or {}
    log_file = options.get("log_file")
    setup_logging(
        level="DEBUG" if options.get("verbose") else "WARNING",
        log_file=Path(log_file) if log_file else None,
        secret_env=(app_config.gemini.api_key_env,),
    )
    return app_config


async def _interruptible(
    orchestrator: DiscussionOrchestrator,
    run: Callable[[], Awaitable[QueryOutcome]],
) -> QueryOutcome:
    """Await `run` with Ctrl-C mapped onto orchestrator.cancel()."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    try:
        return await run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _run(orchestrator: DiscussionOrchestrator, run: Callable[[], Awaitable[QueryOutcome]]) -> QueryOutcome:
    try:
        return asyncio.run(_interruptible(orchestrator, run))
    except KeyboardInterrupt:
        orchestrator.cancel()
        return QueryOutcome.CANCELLED


def _print_notepad(orchestrator: DiscussionOrchestrator) -> None:
    document = orchestrator.notepad_snapshot()
    subtitle = None
    if document.last_updated_by is not None:
        subtitle = f"last updated by {TranscriptPrinter(orchestrator).persona_name(document.last_updated_by)}"
    console.print(Panel(Markdown(document.content), title="Notepad", subtitle=subtitle, border_style="green"))


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--log-file", type=click.Path(), help="Also write JSON logs to this file")
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool, log_file: Optional[str]) -> None:
    """Dual AI Chat - a logical and a creative AI debate your query."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file

    if version:
        console.print(f"dual-ai-chat v{__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _apply_overrides(
    app_config: AppConfig,
    mode: Optional[str],
    turns: Optional[int],
    model: Optional[str],
    no_thinking: bool,
) -> None:
    if mode:
        app_config.discussion.mode = DiscussionMode(mode)
    if turns is not None:
        app_config.discussion.fixed_turns = clamp_fixed_turns(turns)
    if model:
        app_config.gemini.model = model
    if no_thinking:
        app_config.gemini.thinking_enabled = False


@main.command()
@click.argument("query")
@click.option("--image", "-i", type=click.Path(exists=True, dir_okay=False), help="Image to attach")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in DiscussionMode]),
    help="Discussion mode (default from config)",
)
@click.option("--turns", "-n", type=int, help="Turn pairs in fixed mode (1-5)")
@click.option("--model", "-m", help="Gemini model ID")
@click.option("--no-thinking", is_flag=True, help="Do not send a thinking budget")
@click.option("--config", "-c", type=click.Path(), help="Path to config file")
def ask(
    query: str,
    image: Optional[str],
    mode: Optional[str],
    turns: Optional[int],
    model: Optional[str],
    no_thinking: bool,
    config: Optional[str],
) -> None:
    """Run one query through the discussion and print the final answer."""
    app_config = _load_or_exit(config)
    _apply_overrides(app_config, mode, turns, model, no_thinking)

    for warning in app_config.validate_for_run():
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    orchestrator = _build_orchestrator(app_config)
    orchestrator.subscribe(TranscriptPrinter(orchestrator))
    image_part = _load_image(image) if image else None

    console.print(Panel(query, title="You", border_style=SENDER_STYLES[MessageSender.USER]))

    try:
        outcome = _run(orchestrator, lambda: orchestrator.start(query, image_part))
        while (
            outcome == QueryOutcome.FAILED
            and orchestrator.checkpoint is not None
            and click.confirm("Retry the failed step?", default=True)
        ):
            outcome = _run(orchestrator, orchestrator.resume)
    except DiscussionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    sys.exit(EXIT_CODES[outcome])


CHAT_HELP = """Commands:
  /retry            retry the failed step
  /clear            clear the conversation and notepad
  /notepad          show the shared notepad
  /mode fixed|ai-driven
  /turns N          turn pairs in fixed mode (1-5)
  /model ID         switch Gemini model
  /image PATH       attach an image to the next query
  /quit             exit"""


@main.command()
@click.option("--config", "-c", type=click.Path(), help="Path to config file")
def chat(config: Optional[str]) -> None:
    """Interactive discussion session."""
    app_config = _load_or_exit(config)
    for warning in app_config.validate_for_run():
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    orchestrator = _build_orchestrator(app_config)
    for message in orchestrator.messages:
        console.print(f"[dim]» {message.text}[/dim]")
    orchestrator.subscribe(TranscriptPrinter(orchestrator))
    console.print(f"[dim]{CHAT_HELP}[/dim]\n")

    pending_image: Optional[ImagePart] = None

    while True:
        try:
            line = click.prompt("You", prompt_suffix="> ", default="", show_default=False)
        except (click.Abort, EOFError):
            break

        line = line.strip()
        if not line:
            continue

        command, _, argument = line.partition(" ")
        argument = argument.strip()

        try:
            if command == "/quit":
                break
            elif command == "/help":
                console.print(f"[dim]{CHAT_HELP}[/dim]")
            elif command == "/retry":
                _run(orchestrator, orchestrator.resume)
            elif command == "/clear":
                orchestrator.clear()
                pending_image = None
                console.clear()
                for message in orchestrator.messages:
                    console.print(f"[dim]» {message.text}[/dim]")
            elif command == "/notepad":
                _print_notepad(orchestrator)
            elif command == "/mode":
                orchestrator.update_settings(mode=DiscussionMode(argument))
            elif command == "/turns":
                orchestrator.update_settings(fixed_turns=int(argument))
            elif command == "/model":
                orchestrator.update_settings(model=argument)
            elif command == "/image":
                pending_image = _load_image(argument)
                console.print(f"[dim]Image attached: {pending_image.name}[/dim]")
            elif command.startswith("/"):
                console.print(f"[yellow]Unknown command: {command}[/yellow]")
            else:
                image, pending_image = pending_image, None
                _run(orchestrator, lambda: orchestrator.start(line, image))
        except NoCheckpointError as e:
            console.print(f"[yellow]{e}[/yellow]")
        except DiscussionError as e:
            console.print(f"[red]{e}[/red]")
        except (ValueError, click.BadParameter, OSError) as e:
            console.print(f"[red]Invalid input: {e}[/red]")

    console.print("[dim]Bye.[/dim]")


@main.command(name="config")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config file")
def show_config(config_path: Optional[str]) -> None:
    """Show the effective configuration."""
    app_config = _load_or_exit(config_path)

    console.print(f"\n[bold]Configuration[/bold] [dim]({config_path or get_default_config_path()})[/dim]")
    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    gemini = app_config.gemini
    table.add_row("Model", gemini.model)
    table.add_row("Timeout", f"{gemini.timeout_seconds}s")
    table.add_row("Thinking budget", str(gemini.budget_for(gemini.model)) if gemini.thinking_enabled else "disabled")
    table.add_row("Discussion mode", app_config.discussion.mode.value)
    table.add_row("Fixed turns", str(app_config.discussion.fixed_turns))
    table.add_row("Auto retries", str(app_config.retry.max_auto_retries))
    table.add_row("Retry base delay", f"{app_config.retry.base_delay_seconds}s")
    table.add_row("Personas", f"{app_config.prompts.logical_name} / {app_config.prompts.creative_name}")
    console.print(table)

    console.print("\n[bold]Secrets[/bold]")
    secrets = Table(show_header=False)
    secrets.add_column("Secret", style="cyan")
    secrets.add_column("Status")
    for key, status in SecretsManager.get_status([app_config.gemini.api_key_env]).items():
        style = "red" if "NOT SET" in status else "green"
        secrets.add_row(key, f"[{style}]{status}[/{style}]")
    console.print(secrets)


if __name__ == "__main__":
    main()
