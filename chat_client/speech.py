"""
Spoken replies.

:class:`SpeechCoordinator` subscribes once to the message store and, for
each newly appended assistant message, asks the backend to synthesize audio
and hands the bytes to an :class:`AudioPlayer`.  The work runs in detached
asyncio tasks: the send path never waits for it and never sees its errors.
"""

import asyncio
import logging
from typing import Protocol

from .api import BackendClient
from .message_store import MessageStore, StoreEvent
from .models import Author

log = logging.getLogger("chatbot_client")


class AudioPlayer(Protocol):
    def play(self, audio: bytes) -> None:
        """Play *audio* (blocking is fine; it runs on a worker thread)."""


class NullAudioPlayer:
    """Player used when no audio output is configured."""

    def play(self, audio: bytes) -> None:
        log.info("[SPEECH] %d bytes of audio ready (no player configured).",
                 len(audio))


class SpeechCoordinator:
    """Fire-and-forget speech synthesis for new assistant messages."""

    def __init__(
        self,
        client: BackendClient,
        store: MessageStore,
        player: AudioPlayer | None = None,
        *,
        enabled: bool = False,
    ) -> None:
        self._client = client
        self._player = player or NullAudioPlayer()
        self._enabled = enabled
        self._last_spoken: str | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = store.subscribe(self._on_store_event)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        log.info("[SPEECH] Spoken replies %s.", "on" if self._enabled else "off")

    @property
    def last_spoken(self) -> str | None:
        return self._last_spoken

    # ------------------------------------------------------------------
    # Store observer
    # ------------------------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind != "append" or event.message is None:
            return
        message = event.message
        if message.author is not Author.ASSISTANT or not self._enabled:
            return
        if message.text == self._last_spoken:
            log.debug("[SPEECH] Skipping repeat of the last spoken text.")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("[SPEECH] No running event loop; reply not spoken.")
            return
        # Recorded before the request so duplicates are dropped meanwhile.
        self._last_spoken = message.text
        task = loop.create_task(self._speak(message.text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _speak(self, text: str) -> None:
        try:
            result = await asyncio.to_thread(self._client.synthesize_speech, text)
        except Exception as exc:  # noqa: BLE001
            log.warning("[SPEECH] Synthesis raised %s: %s",
                        type(exc).__name__, exc)
            return
        if not result.ok:
            log.warning("[SPEECH] Synthesis failed: %s", result.error.message)
            return
        audio = result.payload
        if not audio:
            log.debug("[SPEECH] Server returned no audio; nothing to play.")
            return
        try:
            await asyncio.to_thread(self._player.play, audio)
        except Exception as exc:  # noqa: BLE001
            log.warning("[SPEECH] Playback failed: %s: %s",
                        type(exc).__name__, exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for outstanding synthesis tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._unsubscribe()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
