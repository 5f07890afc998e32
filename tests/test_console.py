"""Tests for the slash commands in chat_client/console.py."""

import contextlib
import io
import threading
import unittest
from unittest import mock

from fakes import FakeBackend, make_session

from chat_client.auth import StaticTokenProvider
from chat_client.console import ConsoleApp
from chat_client.engine import CANCELLED_TEXT, ChatEngine


class TestConsoleCommands(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.backend.sessions = [make_session("s1", "First")]
        self.engine = ChatEngine(self.backend, StaticTokenProvider("tok"))
        self.out = io.StringIO()
        with contextlib.redirect_stdout(self.out):
            self.app = ConsoleApp(self.engine)

    async def run_command(self, line: str) -> bool:
        with contextlib.redirect_stdout(self.out):
            return await self.app._command(line)

    async def test_quit(self) -> None:
        self.assertFalse(await self.run_command("/quit"))

    async def test_unknown_command(self) -> None:
        self.assertTrue(await self.run_command("/dance"))
        self.assertIn("Unknown command /dance", self.out.getvalue())

    async def test_sessions_lists_catalog(self) -> None:
        await self.run_command("/sessions")
        self.assertIn("s1  First", self.out.getvalue())

    async def test_transcript_is_rendered(self) -> None:
        with contextlib.redirect_stdout(self.out):
            await self.engine.send_message("hi")
        output = self.out.getvalue()
        self.assertIn("You: hi", output)
        self.assertIn("Bot: echo: hi", output)

    async def test_regen_with_nothing(self) -> None:
        await self.run_command("/regen")
        self.assertIn("Nothing to regenerate.", self.out.getvalue())

    async def test_voice_toggle(self) -> None:
        await self.run_command("/voice on")
        self.assertTrue(self.engine.state.speech_enabled)
        await self.run_command("/voice off")
        self.assertFalse(self.engine.state.speech_enabled)

    async def test_quit_waits_for_every_pending_send(self) -> None:
        gate = threading.Event()
        self.addCleanup(gate.set)
        self.backend.chat_gate = gate
        lines = ["first", "second", "/quit"]
        with mock.patch("builtins.input", side_effect=lines):
            with contextlib.redirect_stdout(self.out):
                await self.app.run()
        self.assertEqual(self.app._send_tasks, set())
        self.assertEqual([m.text for m in self.engine.store.messages],
                         ["first", "second", CANCELLED_TEXT])
        self.assertFalse(self.engine.controller.in_flight)
        self.assertTrue(self.backend.closed)


if __name__ == "__main__":
    unittest.main()
