"""
Conversation session engine.

:class:`ChatEngine` wires the message store, mode machine, request
controller, session manager and speech coordinator together and exposes
the command set a front-end needs, plus an observable :class:`ChatState`.

Send path ordering::

    append USER  ->  mode LOADING  ->  POST /chat  ->
    append ASSISTANT (reply | apology | cancellation notice)  ->  mode INPUT

A send superseded by a newer one appends nothing and leaves the mode to
the newer send.  Commands that replace or clear the transcript (switch,
create, delete-current, new chat, sign-out) cancel the in-flight send first.
"""

import asyncio
import logging
from typing import Callable

from .api import BackendClient
from .auth import StaticTokenProvider
from .config import ClientConfig
from .errors import CancelledError, ChatClientError, TranscriptionError
from .message_store import MessageStore
from .mode import ModeStateMachine
from .models import Author, ChatState, Message, Mode, Session, has_complete_tail
from .request_controller import RequestLifecycleController
from .session_manager import SessionManager
from .speech import AudioPlayer, SpeechCoordinator

log = logging.getLogger("chatbot_client")

CANCELLED_TEXT = "Message generation was cancelled."
APOLOGY_TEXT = "Sorry, I couldn't get a response right now. Please try again."

StateListener = Callable[[ChatState], None]


class ChatEngine:
    """Commands + observable state for one chat window."""

    def __init__(
        self,
        client: BackendClient,
        token_provider=None,
        *,
        player: AudioPlayer | None = None,
        speech_enabled: bool = False,
    ) -> None:
        self._client = client
        self._token_provider = token_provider or StaticTokenProvider(None)
        self.store = MessageStore()
        self.mode = ModeStateMachine()
        self.controller = RequestLifecycleController(client, self._token_provider)
        self.sessions = SessionManager(client, self.store, self._token_provider)
        self.speech = SpeechCoordinator(client, self.store, player,
                                        enabled=speech_enabled)
        self._bot_error: str | None = None
        self._send_generation = 0
        self._listeners: list[StateListener] = []

        self.store.subscribe(lambda _event: self._notify())
        self.mode.subscribe(lambda _old, _new: self._notify())
        self.sessions.subscribe(self._notify)

    @classmethod
    def from_config(cls, config: ClientConfig, token_provider=None,
                    player: AudioPlayer | None = None) -> "ChatEngine":
        config.validate()
        client = BackendClient(config.endpoint, token_provider,
                               timeout=config.request_timeout)
        return cls(client, token_provider, player=player,
                   speech_enabled=config.speech_enabled)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return ChatState(
            messages=self.store.messages,
            mode=self.mode.mode,
            sessions=self.sessions.sessions,
            current_session=self.sessions.current_session,
            loading_sessions=self.sessions.loading,
            session_error=self.sessions.error,
            bot_error=self._bot_error,
            speech_enabled=self.speech.enabled,
            authenticated=self.sessions.authenticated,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                log.exception("[APP] State listener %r failed", listener)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> Message | None:
        """Send *text* and append the outcome to the transcript.

        Returns the ASSISTANT entry that was appended, or ``None`` when the
        text was blank or the send was superseded by a newer one.  Never
        raises for backend failures; those become an apology entry.
        """
        text = text.strip()
        if not text:
            return None
        self.mode.close_settings()

        self._send_generation += 1
        generation = self._send_generation
        self._bot_error = None
        self.sessions.claim_transcript()
        self.store.append(text, Author.USER)
        self.mode.begin_loading()

        current = self.sessions.current_session
        reply_entry: Message | None = None
        try:
            reply = await self.controller.send(
                text, current.id if current else None,
            )
        except CancelledError as exc:
            if exc.superseded or generation != self._send_generation:
                log.info("[SEND] Superseded send discarded.")
                return None
            log.info("[SEND] Generation cancelled by user.")
            reply_entry = self.store.append(CANCELLED_TEXT, Author.ASSISTANT)
        except ChatClientError as exc:
            log.error("[SEND] Bot request failed: %s", exc)
            self._bot_error = getattr(exc, "detail", "") or str(exc)
            reply_entry = self.store.append(APOLOGY_TEXT, Author.ASSISTANT)
        except Exception as exc:  # noqa: BLE001
            log.error("[SEND] Unexpected error: %s: %s",
                      type(exc).__name__, exc, exc_info=True)
            self._bot_error = f"{type(exc).__name__}: {exc}"
            reply_entry = self.store.append(APOLOGY_TEXT, Author.ASSISTANT)
        else:
            if current is None:
                self.sessions.adopt_session(reply.session_id, text)
            reply_entry = self.store.append(reply.reply_text, Author.ASSISTANT)
            self.sessions.touch_current(reply.reply_text)
        finally:
            if generation == self._send_generation:
                self.mode.settle()
        return reply_entry

    def stop_generating(self) -> None:
        """Cancel the in-flight send and force the mode back to INPUT."""
        self.controller.cancel()
        self.mode.reset()

    async def regenerate_last(self) -> Message | None:
        """Drop the last USER/ASSISTANT pair and resend the USER text.

        Only allowed when the transcript ends in a complete pair and no send
        is in progress; returns ``None`` (and changes nothing) otherwise.
        """
        if self.mode.mode is Mode.LOADING or not has_complete_tail(self.store.messages):
            log.debug("[APP] Regenerate ignored: no complete exchange at the tail.")
            return None
        user_text = self.store.tail(2)[0].text
        self.store.delete_last()
        self.store.delete_last()
        return await self.send_message(user_text)

    # ------------------------------------------------------------------
    # Transcript / mode commands
    # ------------------------------------------------------------------

    def delete_last(self) -> bool:
        if self.mode.mode is Mode.LOADING:
            return False
        self.store.delete_last()
        return True

    def delete_all(self) -> bool:
        if self.mode.mode is Mode.LOADING:
            return False
        self.store.delete_all()
        return True

    def open_settings(self) -> bool:
        return self.mode.open_settings()

    def close_settings(self) -> bool:
        return self.mode.close_settings()

    def set_speech_enabled(self, enabled: bool) -> None:
        self.speech.enabled = enabled
        self._notify()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _abandon_send(self) -> None:
        """Cancel the in-flight send without a transcript entry for it."""
        self._send_generation += 1
        if self.controller.cancel():
            self.mode.reset()

    async def load_sessions(self) -> list[Session]:
        return await self.sessions.list_sessions()

    async def create_session(self, title: str | None = None) -> Session:
        self.sessions.require_auth("create a session")
        self._abandon_send()
        return await self.sessions.create_session(title)

    async def switch_session(self, session_id: str) -> Session:
        self.sessions.require_auth("open a saved session")
        self.sessions.get(session_id)
        self._abandon_send()
        return await self.sessions.switch_session(session_id)

    async def delete_session(self, session_id: str) -> None:
        current = self.sessions.current_session
        if current is not None and current.id == session_id:
            self.sessions.require_auth("delete a session")
            self._abandon_send()
        await self.sessions.delete_session(session_id)

    async def update_session_title(self, session_id: str, title: str) -> Session:
        return await self.sessions.update_title(session_id, title)

    def start_new_session(self) -> None:
        self._abandon_send()
        self.sessions.start_new_session()

    def sign_out(self) -> None:
        """Call after the auth collaborator dropped the token."""
        self._abandon_send()
        self.sessions.clear_for_anonymous()

    # ------------------------------------------------------------------
    # Audio input
    # ------------------------------------------------------------------

    async def transcribe_audio(self, audio: bytes,
                               filename: str = "recording.wav") -> str:
        """Turn recorded audio into text for the input box."""
        result = await asyncio.to_thread(self._client.transcribe, audio, filename)
        if not result.ok:
            log.error("[APP] Transcription failed: %s", result.error.message)
            raise result.error.to_exception(TranscriptionError)
        return result.payload

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        self.controller.cancel()
        await self.speech.aclose()
        self._client.close()
