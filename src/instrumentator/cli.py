from __future__ import annotations

"""Command-line front end for the Instrumentator backend.

    instrumentator generate "User can click Subscribe on the pricing page" --csv out.csv
    instrumentator chat --image mockup.png "Checkout flow"
"""

import argparse
import asyncio
import getpass
import json
import logging
import signal
import sys
import threading
from typing import Callable, List, Optional, Sequence

from .client.auth_gate import AuthGate, JsonFileAuthStorage, validator_from_env
from .client.conversation import ConversationSession
from .client.export import to_clipboard_tsv, to_csv, write_csv
from .client.generation import GenerationClient, GenerationFailed, encode_image_file
from .client.properties import format_properties, parse_event_properties
from .client.refinement import RefinementClient
from .client.stats import compute_stats
from .client.transport import EventsApi, InputError
from .domain.event_models import Event
from .services.event_schema import SchemaError, parse_events
from .services.prompts import GENERATE_SYSTEM_INSTRUCTION, REFINE_SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)

CHAT_HELP = """Type a request to change the table, or a command:
  /generate <description>   regenerate from a new description (uses the attached image)
  /image <path>|none        attach or clear a screenshot for the next /generate
  /delete <n>               remove row n from the table
  /export <path>            write the table as CSV
  /copy                     print the table as tab-separated text
  /stats                    summarize the table
  /reset                    start over
  /quit                     leave
Press Ctrl-C while a request is running to stop it."""


def format_table(events: Sequence[Event]) -> str:
    if not events:
        return "No events generated yet."
    lines: List[str] = []
    for idx, event in enumerate(events, start=1):
        lines.append(f"[{idx}] {event.event_name}")
        lines.append(f"     action: {event.action}")
        props = format_properties(parse_event_properties(event.event_properties))
        if props:
            lines.append(f"     properties: {props}")
    return "\n".join(lines)


def format_stats(events: Sequence[Event]) -> str:
    stats = compute_stats(events)
    lines = [
        f"{stats.total_events} events, {stats.unique_views} views, {stats.unique_actions} distinct actions",
    ]
    for view, count in sorted(stats.events_per_view.items()):
        lines.append(f"  {view}: {count}")
    by_type = ", ".join(f"{name}={count}" for name, count in sorted(stats.events_by_type.items()))
    if by_type:
        lines.append(f"  by type: {by_type}")
    return "\n".join(lines)


class ChatShell:
    """Line-oriented driver for a ConversationSession."""

    def __init__(self, session: ConversationSession, out: Callable[[str], None] = print) -> None:
        self.session = session
        self.out = out
        self.image: Optional[str] = None
        self._shown = 0

    def _flush_messages(self) -> None:
        messages = self.session.messages
        if len(messages) < self._shown:
            self._shown = 0
        for msg in messages[self._shown:]:
            if msg.role == "model":
                self.out(f"assistant> {msg.text}")
        self._shown = len(messages)

    async def run(self, coro) -> None:
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, self.session.stop)
            installed = True
        except (NotImplementedError, RuntimeError):
            pass
        try:
            await coro
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)
        self._flush_messages()
        self.out(format_table(self.session.events))

    async def handle(self, line: str) -> bool:
        """Process one input line; returns False when the shell should exit."""

        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            await self.run(self.session.send_message(line))
            return True

        command, _, arg = line.partition(" ")
        arg = arg.strip()
        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self.out(CHAT_HELP)
        elif command == "/generate":
            if not arg and not self.image:
                self.out("Describe the feature or attach a screenshot first.")
            else:
                await self.run(self.session.generate(arg, self.image))
        elif command == "/image":
            if arg.lower() in ("", "none"):
                self.image = None
                self.out("Screenshot cleared.")
            else:
                try:
                    self.image = encode_image_file(arg)
                except (OSError, InputError) as exc:
                    self.out(f"Cannot attach image: {exc}")
                else:
                    self.out(f"Attached {arg}.")
        elif command == "/delete":
            events = self.session.events
            if not arg.isdigit() or not 1 <= int(arg) <= len(events):
                self.out(f"Pick a row between 1 and {len(events)}.")
            else:
                self.session.delete_event(events[int(arg) - 1].id)
                self.out(format_table(self.session.events))
        elif command == "/export":
            try:
                path = write_csv(arg or ".", self.session.events)
            except OSError as exc:
                self.out(f"Export failed: {exc}")
            else:
                self.out(f"Wrote {len(self.session.events)} events to {path}")
        elif command == "/copy":
            self.out(to_clipboard_tsv(self.session.events))
        elif command == "/stats":
            self.out(format_stats(self.session.events))
        elif command == "/reset":
            self.session.reset()
            self.image = None
            self._shown = 0
            self.out("Session cleared.")
        else:
            self.out(f"Unknown command {command}. Type /help for the list.")
        return True


async def _read_line(read: Callable[[str], str], prompt: str) -> str:
    """Read one line on a daemon thread; cancelling the await abandons the read."""

    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def settle(line: Optional[str], exc: Optional[BaseException]) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(line)

    def worker() -> None:
        try:
            line = read(prompt)
        except Exception as exc:
            outcome: tuple = (None, exc)
        else:
            outcome = (line, None)
        try:
            loop.call_soon_threadsafe(settle, *outcome)
        except RuntimeError:
            logger.debug("Input arrived after the chat loop closed")

    threading.Thread(target=worker, name="instrumentator-input", daemon=True).start()
    return await future


async def _chat_loop(shell: ChatShell, description: str, read: Callable[[str], str]) -> None:
    if description or shell.image:
        await shell.run(shell.session.generate(description, shell.image))
    else:
        shell.out(CHAT_HELP)
    while True:
        try:
            line = await _read_line(read, "you> ")
        except EOFError:
            break
        if not await shell.handle(line):
            break
    await shell.session.drain()


def _make_session(api_url: Optional[str]) -> ConversationSession:
    api = EventsApi(base_url=api_url)
    return ConversationSession(GenerationClient(api), RefinementClient(api))


def _ensure_access(gate: AuthGate, read_secret: Optional[Callable[[str], str]] = None) -> bool:
    if gate.is_authenticated():
        return True
    read_secret = read_secret or getpass.getpass
    return gate.login(read_secret("Passcode: "))


def _load_image(path: Optional[str]) -> Optional[str]:
    return encode_image_file(path) if path else None


def cmd_generate(args: argparse.Namespace) -> int:
    try:
        image = _load_image(args.image)
    except (OSError, InputError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    client = GenerationClient(EventsApi(base_url=args.api_url))
    try:
        events = asyncio.run(client.generate(args.description, image))
    except InputError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except GenerationFailed as exc:
        logger.debug("Generation failed: %s", exc.detail)
        print(f"error: {exc.message}", file=sys.stderr)
        return 1

    if args.tsv:
        print(to_clipboard_tsv(events, compact=args.compact))
    elif not args.csv:
        print(format_table(events))
    if args.csv:
        path = write_csv(args.csv, events, compact=args.compact)
        print(f"Wrote {len(events)} events to {path}")
    return 0


def cmd_chat(args: argparse.Namespace) -> int:
    shell = ChatShell(_make_session(args.api_url))
    try:
        shell.image = _load_image(args.image)
    except (OSError, InputError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    try:
        asyncio.run(_chat_loop(shell, args.description, input))
    except KeyboardInterrupt:
        print()
        return 130
    return 0


def cmd_prompt(args: argparse.Namespace) -> int:
    print("# Generation\n")
    print(GENERATE_SYSTEM_INSTRUCTION)
    print("\n# Refinement\n")
    print(REFINE_SYSTEM_INSTRUCTION)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    try:
        payload = json.load(sys.stdin)
        events = parse_events(payload if isinstance(payload, dict) else {"events": payload})
    except (json.JSONDecodeError, SchemaError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    print(to_csv(events, compact=args.compact))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="instrumentator", description="Generate and refine analytics tracking events")
    parser.add_argument("--api-url", default=None, help="Backend base URL (default: $INSTRUMENTATOR_API_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate events once and print or export them")
    gen.add_argument("description", nargs="?", default="")
    gen.add_argument("--image", help="Screenshot or mockup to analyse (max 4MB)")
    gen.add_argument("--csv", help="Write the events to this CSV file or directory")
    gen.add_argument("--tsv", action="store_true", help="Print tab-separated rows for pasting into a spreadsheet")
    gen.add_argument("--compact", action="store_true", help="Use the Action/Event Name/Event Properties layout")
    gen.set_defaults(func=cmd_generate, gated=True)

    chat = sub.add_parser("chat", help="Interactive generate-and-refine session")
    chat.add_argument("description", nargs="?", default="")
    chat.add_argument("--image", help="Screenshot or mockup to analyse (max 4MB)")
    chat.set_defaults(func=cmd_chat, gated=True)

    exp = sub.add_parser("export", help="Convert an events JSON document on stdin to CSV")
    exp.add_argument("--compact", action="store_true")
    exp.set_defaults(func=cmd_export, gated=False)

    prompt = sub.add_parser("prompt", help="Show the system instructions sent to the model")
    prompt.set_defaults(func=cmd_prompt, gated=False)

    login = sub.add_parser("login", help="Unlock the tool with the shared passcode")
    login.set_defaults(func=None, gated=True)

    logout = sub.add_parser("logout", help="Forget the stored passcode check")
    logout.set_defaults(func=None, gated=False)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    gate = AuthGate(validator_from_env(), JsonFileAuthStorage())

    if args.command == "logout":
        gate.logout()
        print("Logged out.")
        return 0
    if args.gated and not _ensure_access(gate):
        print("Invalid passcode.", file=sys.stderr)
        return 2
    if args.command == "login":
        print("Access granted." if gate.enabled else "No passcode configured; access is open.")
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
