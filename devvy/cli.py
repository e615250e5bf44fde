"""
Devvy CLI

Interactive command-line interface for the Devvy multi-agent coding assistant.
Uses Rich for terminal output.

Plain text goes to the Coder. Slash commands switch agents or run the
review and brainstorm protocols.
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path
from typing import AsyncGenerator, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme

from . import __version__
from .config import ALL_AGENT_ROLES, API_PROVIDERS, PROVIDER_CONFIG, DevvyConfig, get_config
from .errors import DevvyError
from .orchestrator import AgentEvent, Orchestrator, PhaseEvent

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "coder"

# Custom theme for the CLI
DEVVY_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red bold",
    "success": "green bold",
    "heading": "magenta bold",
    "muted": "dim white",
    "coder": "green",
    "critic": "red",
    "debugger": "yellow",
    "architect": "blue",
    "enduser": "magenta",
    "questioner": "cyan",
    "asker": "cyan",
    "user": "bold white",
})

console = Console(theme=DEVVY_THEME)


def setup_logging(debug: bool = False):
    """Route library logging through Rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def print_banner(config: DevvyConfig):
    """Print the welcome banner."""
    provider = f"{config.provider_display_name} / {config.model}"
    banner = f"""
+-----------------------------------------------------------+
|                                                           |
|     DEVVY  v{__version__:<46}|
|     {provider[:53]:<54}|
|                                                           |
+-----------------------------------------------------------+
"""
    console.print(banner, style="cyan")


def print_help():
    """Print help information."""
    roles = ", ".join(f"/{r}" for r in ALL_AGENT_ROLES)
    help_text = f"""
[heading]Devvy - Multi-Agent Coding Assistant[/heading]

[info]Talking to agents:[/info]
  • Type naturally - your message goes to the Coder
  • {roles} [text] - Ask a specific agent
  • [bold]/review[/bold] - Run Critic review cycles on the latest code
  • [bold]/brainstorm <topic>[/bold] - Architect, Coder, Critic and End User discuss a topic

[info]Session:[/info]
  • [bold]/history[/bold] - Show the conversation
  • [bold]/status[/bold] - Show conversation summary
  • [bold]/agents[/bold] - List agents and whether they are enabled
  • [bold]/clear[/bold] - Start a fresh conversation
  • [bold]/models[/bold] - List available models
  • [bold]/model <id>[/bold] - Switch model
  • [bold]/config[/bold] - Show the active configuration
  • [bold]/quit[/bold] or [bold]/exit[/bold] - Exit
"""
    console.print(Panel(help_text, title="Help", border_style="blue"))


class DevvyCLI:
    """
    Interactive session over one Orchestrator.
    """

    def __init__(self, config: DevvyConfig, orchestrator: Optional[Orchestrator] = None):
        self.config = config
        self.orchestrator = orchestrator or Orchestrator.from_config(config)
        self.running = True

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _agent_title(self, role: str) -> str:
        agent = self.orchestrator.agents.get(role)
        return agent.name if agent else role

    async def render_agent_events(self, events: AsyncGenerator[AgentEvent, None], role: str):
        console.print()
        console.print(Rule(self._agent_title(role), style=role))
        handoff_started = False

        async for event in events:
            if event.type == "chunk":
                console.print(event.content, end="", markup=False, highlight=False)
            elif event.type == "handoff_chunk":
                if not handoff_started:
                    handoff_started = True
                    console.print()
                    console.print(Rule(f"{self._agent_title(event.role)} (answering)", style=event.role))
                console.print(event.content, end="", markup=False, highlight=False)
            elif event.type == "complete":
                console.print()

    async def render_phase_events(self, events: AsyncGenerator[PhaseEvent, None]):
        async for event in events:
            if event.phase == "start":
                console.print()
                console.print(Rule(self._agent_title(event.agent), style=event.agent))
            elif event.phase == "chunk":
                console.print(event.content or "", end="", markup=False, highlight=False)
            elif event.phase == "complete":
                console.print()
                if event.approved is True:
                    if event.content and event.content.startswith("Maximum review cycles"):
                        console.print(f"[warning]{event.content}[/]")
                    console.print("[success]✓ Approved[/]")
                elif event.approved is False:
                    console.print("[warning]Changes requested[/]")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def show_history(self):
        messages = self.orchestrator.store.get_messages()
        if not messages:
            console.print("[muted]No messages yet[/]")
            return
        for msg in messages:
            console.print(Rule(f"{msg.role} - {msg.timestamp:%H:%M:%S}", style=msg.role))
            console.print(Markdown(msg.content or "_(empty)_"))

    def show_status(self):
        console.print(Panel(self.orchestrator.get_conversation_summary(), title="Status", border_style="blue"))

    def show_agents(self):
        table = Table(title="Agents")
        table.add_column("Role", style="bold")
        table.add_column("Name")
        table.add_column("Tools")
        table.add_column("Enabled")
        for role, agent in self.orchestrator.agents.items():
            table.add_row(
                f"[{role}]{role}[/]",
                agent.name,
                "yes" if agent.config.use_tools else "no",
                "[success]yes[/]" if self.orchestrator.is_agent_enabled(role) else "[muted]no[/]",
            )
        console.print(table)

    def show_config(self):
        table = Table(title="Configuration")
        table.add_column("Setting", style="info")
        table.add_column("Value")
        for key, value in self.config.to_dict(hide_secrets=True).items():
            table.add_row(key, str(value))
        console.print(table)

    async def show_models(self):
        llm = self.orchestrator.llm
        if llm is None:
            console.print("[warning]No model gateway configured[/]")
            return
        with console.status("Fetching models..."):
            models = await llm.fetch_models()
        table = Table(title=f"Models ({self.config.provider_display_name})")
        table.add_column("Model")
        table.add_column("Owner", style="muted")
        for model in models:
            marker = " [success]●[/]" if model.id == self.config.model else ""
            table.add_row(f"{model.id}{marker}", model.owned_by or "")
        console.print(table)

    def switch_model(self, model_id: str):
        if not model_id:
            console.print(f"[info]Current model:[/] {self.config.model}")
            return
        self.config.model = model_id
        llm = self.orchestrator.llm
        if llm is not None:
            llm.model = model_id
            llm.reset_client()
        console.print(f"[success]Model set to {model_id}[/]")

    async def handle_input(self, line: str):
        """Dispatch one line of user input."""
        line = line.strip()
        if not line:
            return

        if not line.startswith("/"):
            self.orchestrator.add_user_message(line)
            await self.render_agent_events(self.orchestrator.run_agent(DEFAULT_ROLE), DEFAULT_ROLE)
            return

        command, _, rest = line[1:].partition(" ")
        command = command.lower()
        rest = rest.strip()

        if command in ("quit", "exit"):
            self.running = False
        elif command == "help":
            print_help()
        elif command == "clear":
            self.orchestrator.clear_conversation()
            console.print("[success]Conversation cleared[/]")
        elif command == "history":
            self.show_history()
        elif command == "status":
            self.show_status()
        elif command == "agents":
            self.show_agents()
        elif command == "config":
            self.show_config()
        elif command == "models":
            await self.show_models()
        elif command == "model":
            self.switch_model(rest)
        elif command == "review":
            await self.render_phase_events(self.orchestrator.run_review_loop())
        elif command == "brainstorm":
            if not rest:
                console.print("[warning]Usage: /brainstorm <topic>[/]")
                return
            self.orchestrator.add_user_message(f"Brainstorm: {rest}")
            await self.render_phase_events(self.orchestrator.brainstorm(rest))
        elif command in ALL_AGENT_ROLES:
            if rest:
                self.orchestrator.add_user_message(rest)
            await self.render_agent_events(self.orchestrator.run_agent(command), command)
        else:
            console.print(f"[warning]Unknown command: /{command}[/] (type /help)")

    async def run(self, initial_prompt: Optional[str] = None):
        """
        Run the interactive loop.

        DevvyError from any command is reported and the session continues.
        """
        print_banner(self.config)
        console.print("[muted]Type /help for commands.[/]")

        problems = self.config.validate()
        for problem in problems:
            console.print(f"[warning]Config: {problem}[/]")

        pending = initial_prompt
        try:
            while self.running:
                if pending is not None:
                    line, pending = pending, None
                    console.print(f"\n[user]> {line}[/]")
                else:
                    console.print()
                    try:
                        line = Prompt.ask("[bold cyan]you[/]")
                    except EOFError:
                        break

                try:
                    await self.handle_input(line)
                except DevvyError as e:
                    logger.debug(f"{e.code}: {e.context}")
                    console.print(f"\n[error]{e.code}: {e.message}[/]")
        finally:
            await self.orchestrator.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devvy",
        description="Devvy - a team of AI agents that write, review and debug code with you",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  devvy                                   # Interactive session
  devvy --prompt "Write a CSV parser"     # Start with a message to the Coder
  devvy --provider gemini --model gemini-2.0-flash-exp
  devvy --provider openrouter --api-key sk-or-...
        """
    )

    parser.add_argument(
        "--provider",
        choices=API_PROVIDERS,
        help="API provider (default: from config or DEVVY_PROVIDER)"
    )

    parser.add_argument(
        "--model", "-m",
        type=str,
        help="Model to use (default: provider default)"
    )

    parser.add_argument(
        "--api-key", "-k",
        type=str,
        help="API key (or set the provider's key variable, e.g. OPENAI_API_KEY)"
    )

    parser.add_argument(
        "--base-url",
        type=str,
        help="Override the provider base URL"
    )

    parser.add_argument(
        "--prompt", "-p",
        type=str,
        help="Initial message to send to the Coder"
    )

    parser.add_argument(
        "--max-review-cycles",
        type=int,
        help="Maximum Critic review cycles (default: 3)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging and per-agent transcripts in the debug directory"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def apply_args(config: DevvyConfig, args: argparse.Namespace) -> DevvyConfig:
    """Override config with command-line flags."""
    if args.provider:
        config.api_provider = args.provider
        config.model = PROVIDER_CONFIG[args.provider]["default_model"]
    if args.model:
        config.model = args.model
    if args.api_key:
        config.api_key = args.api_key
    if args.base_url:
        config.api_base_url = args.base_url
    if args.max_review_cycles is not None:
        config.max_review_cycles = args.max_review_cycles
    if args.debug:
        config.debug_logging = True
    return config


def main():
    """Main entry point for the CLI."""
    args = build_parser().parse_args()
    setup_logging(args.debug)

    config = apply_args(get_config(Path.cwd()), args)

    try:
        cli = DevvyCLI(config)
    except DevvyError as e:
        console.print(f"[error]Error: {e.message}[/]")
        sys.exit(1)

    try:
        asyncio.run(cli.run(initial_prompt=args.prompt))
    except KeyboardInterrupt:
        console.print("\n[warning]Interrupted[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
