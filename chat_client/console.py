"""
Minimal terminal front-end for :class:`~chat_client.engine.ChatEngine`.

Plain lines are sent to the bot.  Slash commands::

    /stop            cancel the reply being generated
    /regen           regenerate the last answer
    /undo            delete the last message
    /clear           delete all messages
    /new             start a new (unsaved) chat
    /sessions        list saved sessions
    /create [title]  create a saved session
    /switch <id>     open a saved session
    /rename <id> <title>
    /delete <id>
    /voice on|off    toggle spoken replies
    /quit
"""

import asyncio
import logging

from .auth import FileTokenProvider
from .config import ClientConfig
from .engine import ChatEngine
from .errors import ChatClientError
from .models import ChatState, Mode

log = logging.getLogger("chatbot_client")


class ConsoleApp:
    """Reads stdin on a worker thread so sends can be stopped mid-flight."""

    def __init__(self, engine: ChatEngine) -> None:
        self._engine = engine
        self._shown = 0
        self._send_tasks: set[asyncio.Task] = set()
        self._mode = Mode.INPUT
        engine.subscribe(self._render)

    def _render(self, state: ChatState) -> None:
        if len(state.messages) < self._shown:
            self._shown = 0
            print("── transcript reset ──")
        for message in state.messages[self._shown:]:
            label = "You" if message.is_user else "Bot"
            print(f"{label}: {message.text}")
        self._shown = len(state.messages)
        if state.mode is Mode.LOADING and self._mode is not Mode.LOADING:
            print("… generating (type /stop to cancel)")
        self._mode = state.mode

    async def _command(self, line: str) -> bool:
        """Run one slash command.  Returns ``False`` to quit."""
        name, _, arg = line[1:].partition(" ")
        arg = arg.strip()
        engine = self._engine
        if name == "quit":
            return False
        if name == "stop":
            engine.stop_generating()
        elif name == "regen":
            if engine.state.can_regenerate:
                self._start_send(engine.regenerate_last())
            else:
                print("Nothing to regenerate.")
        elif name == "undo":
            engine.delete_last()
        elif name == "clear":
            engine.delete_all()
        elif name == "new":
            engine.start_new_session()
        elif name == "sessions":
            for session in await engine.load_sessions():
                marker = "*" if engine.state.current_session == session else " "
                print(f"{marker} {session.id}  {session.title}")
        elif name == "create":
            session = await engine.create_session(arg or None)
            print(f"Created {session.id} ({session.title}).")
        elif name == "switch":
            await engine.switch_session(arg)
        elif name == "rename":
            session_id, _, title = arg.partition(" ")
            await engine.update_session_title(session_id, title)
        elif name == "delete":
            await engine.delete_session(arg)
        elif name == "voice":
            engine.set_speech_enabled(arg.lower() in ("on", "1", "true"))
        else:
            print(f"Unknown command /{name}")
        return True

    def _start_send(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return task

    async def run(self) -> None:
        print("Chatbot client ready. Type /quit to exit.")
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                try:
                    if not await self._command(line):
                        break
                except (ChatClientError, ValueError) as exc:
                    print(f"⚠️  {exc}")
                continue
            self._start_send(self._engine.send_message(line))
        if self._send_tasks:
            self._engine.stop_generating()
            await asyncio.gather(*list(self._send_tasks), return_exceptions=True)
        await self._engine.aclose()


async def run_console(config: ClientConfig) -> None:
    tokens = FileTokenProvider()
    engine = ChatEngine.from_config(config, tokens)
    if engine.state.authenticated:
        try:
            await engine.load_sessions()
        except ChatClientError as exc:
            log.warning("[APP] Could not load sessions: %s", exc)
    await ConsoleApp(engine).run()
