#!/usr/bin/env python3
"""Shell Chat CLI - terminal client for the assistant chat service.

A rich TUI that talks to the FastAPI service through ``RequestOrchestrator``,
streaming plain replies live and falling back to the buffered tool path for
searches and image requests.
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text

from assistant.chat.framing import append_content
from assistant.client import FeatureFlags, RequestOrchestrator, TransportDecision

# Cache directory for conversation persistence
CACHE_DIR = Path.home() / ".cache" / "shell-chat"
CONVERSATION_FILE = CACHE_DIR / "conversation_id"

# Styles
USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
TOOL_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class ShellChat:
    """Terminal chat client for the assistant service."""

    def __init__(self, server_url: str, user_id: Optional[str] = None):
        self.server_url = server_url.rstrip("/")
        self.user_id = user_id or os.environ.get("SHELL_CHAT_USER", "cli")
        self.conversation_id: Optional[str] = None
        self.flags = FeatureFlags()
        self.console = Console()
        self.running = True
        self.requests = RequestOrchestrator(self.server_url)
        self._load_conversation()

    def _load_conversation(self) -> None:
        """Load conversation ID from cache file."""
        try:
            if CONVERSATION_FILE.exists():
                self.conversation_id = CONVERSATION_FILE.read_text().strip() or None
        except OSError:
            self.conversation_id = None
        if self.conversation_id:
            self.console.print(
                f"[dim]Resuming conversation: {self.conversation_id[:8]}...[/dim]"
            )

    def _save_conversation(self) -> None:
        try:
            CACHE_DIR.mkdir(parents=True, exist_ok=True)
            if self.conversation_id:
                CONVERSATION_FILE.write_text(self.conversation_id)
        except OSError as exc:
            self.console.print(f"[dim]Could not save conversation id: {exc}[/dim]")

    def _clear_conversation(self) -> None:
        self.conversation_id = None
        try:
            if CONVERSATION_FILE.exists():
                CONVERSATION_FILE.unlink()
        except OSError:
            pass
        self.console.print("Conversation cleared. Starting fresh.", style=INFO_STYLE)

    async def _check_health(self) -> bool:
        """Check if the service is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    data = resp.json()
                    self.console.print(
                        f"[dim]Connected. Model: {data.get('chat_model', 'unknown')}; "
                        f"web search configured: {data.get('web_search_configured')}[/dim]"
                    )
                    return True
        except httpx.HTTPError as e:
            self.console.print(f"Cannot connect to service: {e}", style=ERROR_STYLE)
        return False

    async def _ensure_conversation(self) -> bool:
        if self.conversation_id:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(
                    f"{self.server_url}/api/conversations/{self.conversation_id}/messages"
                )
            if resp.status_code == 200:
                return True
            self.console.print("[dim]Cached conversation not found; starting a new one[/dim]")

        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(
                f"{self.server_url}/api/conversations",
                json={"user_id": self.user_id},
            )
        if resp.status_code != 201:
            self.console.print(
                f"Could not create conversation ({resp.status_code})", style=ERROR_STYLE
            )
            return False
        self.conversation_id = resp.json()["id"]
        self._save_conversation()
        return True

    def _show_flags(self) -> None:
        self.console.print(
            f"[dim]deep research: {'on' if self.flags.deep_research else 'off'}, "
            f"web search: {'on' if self.flags.web_search else 'off'}[/dim]"
        )

    def _show_help(self) -> None:
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /new               Start a new conversation
  /deep              Toggle deep research mode
  /web               Toggle web search (always uses the buffered tool path)
  /quit              Exit shell-chat

[bold]Shortcuts:[/bold]
  Ctrl+D             Exit shell-chat
"""
        self.console.print(
            Panel(help_text.strip(), title="Shell Chat Help", border_style="blue")
        )

    def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        command = cmd.strip().split(maxsplit=1)[0].lower()

        if command == "/help":
            self._show_help()
        elif command in ("/new", "/clear"):
            self._clear_conversation()
        elif command == "/deep":
            self.flags = FeatureFlags(
                deep_research=not self.flags.deep_research,
                web_search=self.flags.web_search,
            )
            self._show_flags()
        elif command == "/web":
            self.flags = FeatureFlags(
                deep_research=self.flags.deep_research,
                web_search=not self.flags.web_search,
            )
            self._show_flags()
        elif command == "/quit":
            self.running = False
        else:
            return False
        return True

    async def _send(self, message: str) -> None:
        """Send a message and render the reply."""
        if not await self._ensure_conversation():
            return
        assert self.conversation_id is not None

        with Live(console=self.console, refresh_per_second=10) as live:
            rendered = ""
            live.update(Text("Thinking...", style="dim"))

            def on_delta(delta: str) -> None:
                nonlocal rendered
                rendered = append_content(rendered, delta)
                live.update(Markdown(rendered))

            def on_status(status: str) -> None:
                live.update(Text(status, style=TOOL_STYLE))

            result = await self.requests.send(
                self.conversation_id,
                message,
                flags=self.flags,
                user_id=self.user_id,
                on_delta=on_delta,
                on_status=on_status,
            )
            if result is None:
                live.update(Text("A request is already in progress.", style=INFO_STYLE))
                return
            if result.failed:
                live.update(Text(result.text, style=ERROR_STYLE))
            else:
                live.update(Markdown(result.text))

        if result.transport is TransportDecision.BUFFERED and result.tools_used:
            self.console.print(f"[dim]tools: {', '.join(result.tools_used)}[/dim]")
        for url in result.image_urls:
            self.console.print(f"[yellow]Image:[/yellow] {url}")
        if result.title:
            self.console.print(f"[dim]Title: {result.title}[/dim]")

    async def run(self) -> None:
        """Main chat loop."""
        if not await self._check_health():
            return

        self.console.print()
        self.console.print(
            "[bold]Shell Chat[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        try:
            while self.running:
                try:
                    user_input = Prompt.ask("[bold blue]You[/bold blue]")
                    if not user_input.strip():
                        continue

                    if user_input.startswith("/") and self._handle_command(user_input):
                        continue

                    self.console.print()
                    await self._send(user_input)
                    self.console.print()

                except EOFError:
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break
                except KeyboardInterrupt:
                    self.console.print()
                    continue
        finally:
            await self.requests.aclose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Shell Chat - Terminal client for the assistant chat service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shell-chat                           Connect to localhost:8000
  shell-chat --server http://pi:8000   Connect to remote server

Environment Variables:
  SHELLCHAT_SERVER    Default server URL
  SHELL_CHAT_USER     User id sent with each message
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("SHELLCHAT_SERVER", "http://localhost:8000"),
        help="Service URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="User id to attach to messages (default: $SHELL_CHAT_USER or 'cli')",
    )

    args = parser.parse_args()

    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    chat = ShellChat(server_url=args.server, user_id=args.user)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
