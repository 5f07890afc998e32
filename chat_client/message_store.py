"""
In-memory transcript of the active conversation.

The transcript is an append/remove-from-tail log of immutable
:class:`~chat_client.models.Message` objects.  Observers registered with
:meth:`MessageStore.subscribe` are told about every mutation; the speech
coordinator and the engine's state broadcaster both hang off this.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from .models import Author, Message

log = logging.getLogger("chatbot_client")


@dataclass(frozen=True)
class StoreEvent:
    """What changed.  ``kind`` is append | delete_last | delete_all | replace.

    *message* is the appended (or removed) message where there is one;
    *messages* is the transcript after the change.
    """

    kind: str
    messages: tuple[Message, ...]
    message: Message | None = None


Listener = Callable[[StoreEvent], None]


class MessageStore:
    """Ordered message log for the currently active session."""

    def __init__(self, messages=()) -> None:
        self._messages: tuple[Message, ...] = tuple(messages)
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def tail(self, n: int) -> tuple[Message, ...]:
        if n <= 0:
            return ()
        return self._messages[-n:]

    def __len__(self) -> int:
        return len(self._messages)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, text: str, author: Author) -> Message:
        """Create a message with a fresh id/timestamp and add it to the tail."""
        message = Message(text=text, author=Author(author))
        self._messages = self._messages + (message,)
        self._emit(StoreEvent("append", self._messages, message))
        return message

    def delete_last(self) -> Message | None:
        """Remove exactly one message from the tail.  Empty log → no-op."""
        if not self._messages:
            return None
        removed = self._messages[-1]
        self._messages = self._messages[:-1]
        self._emit(StoreEvent("delete_last", self._messages, removed))
        return removed

    def delete_all(self) -> None:
        if not self._messages:
            return
        self._messages = ()
        self._emit(StoreEvent("delete_all", self._messages))

    def replace_all(self, messages) -> None:
        """Install *messages* wholesale in one step (used on session switch)."""
        self._messages = tuple(messages)
        self._emit(StoreEvent("replace", self._messages))

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                log.exception("[STORE] Listener %r failed on %s event",
                              listener, event.kind)
