"""
Client-side cache of the server's conversation catalog.

The set of :class:`~chat_client.models.Session` objects held here mirrors
``GET /sessions``; ``current_session`` points into it (``None`` means an
anonymous conversation that has not been persisted yet).

Session calls may overlap with each other and with chat sends.  Each
mutation of a session takes a *write ticket*; a response is applied only if
its ticket is still the newest one for that session, so the last write's
response always wins over earlier responses and optimistic updates.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .api import BackendClient
from .errors import AuthRequiredError, SessionNotFoundError, SessionRequestError
from .message_store import MessageStore
from .models import Session, utcnow

log = logging.getLogger("chatbot_client")

#: Length of auto-generated titles and previews.
TITLE_LENGTH = 40
PREVIEW_LENGTH = 100


def default_title(now: datetime | None = None) -> str:
    """Placeholder title for a session created without one."""
    now = now or datetime.now()
    return f"Chat {now:%Y-%m-%d %H:%M}"


def title_from_text(text: str) -> str:
    """Derive a title from the first user message (``"New Chat"`` if blank)."""
    text = " ".join(text.split())
    if not text:
        return "New Chat"
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "…"
    return text


class SessionManager:
    """CRUD over named conversation threads backed by the remote catalog."""

    def __init__(
        self,
        client: BackendClient,
        store: MessageStore,
        token_provider=None,
    ) -> None:
        self._client = client
        self._store = store
        self._token_provider = token_provider or (lambda: None)
        self._sessions: list[Session] = []
        self._current: Session | None = None
        self._pending = 0
        self.error: str | None = None
        self._tickets: dict[str, int] = {}
        self._ticket_seq = 0
        # Every change of ``_current`` draws a number when it is issued; a
        # change is applied only if it is newer than the last applied one.
        self._pointer_seq = 0
        self._pointer_applied = 0
        self._listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def authenticated(self) -> bool:
        return bool(self._token_provider())

    @property
    def sessions(self) -> tuple[Session, ...]:
        return tuple(self._sessions)

    @property
    def current_session(self) -> Session | None:
        return self._current

    @property
    def loading(self) -> bool:
        return self._pending > 0

    def get(self, session_id: str) -> Session:
        """Return the cached session or raise :exc:`SessionNotFoundError`."""
        for session in self._sessions:
            if session.id == session_id:
                return session
        raise SessionNotFoundError(session_id)

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:  # noqa: BLE001
                log.exception("[SESSION] Listener %r failed", listener)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def require_auth(self, action: str) -> None:
        if not self.authenticated:
            raise AuthRequiredError(f"Sign in to {action}.")

    def _take_ticket(self, session_id: str) -> int:
        self._ticket_seq += 1
        self._tickets[session_id] = self._ticket_seq
        return self._ticket_seq

    def _is_latest(self, session_id: str, ticket: int) -> bool:
        return self._tickets.get(session_id) == ticket

    def _next_pointer(self) -> int:
        self._pointer_seq += 1
        return self._pointer_seq

    def _apply_pointer(self, seq: int) -> bool:
        """Record *seq* as applied unless a newer pointer change already was."""
        if seq <= self._pointer_applied:
            return False
        self._pointer_applied = seq
        return True

    def _cached(self, session_id: str) -> Session | None:
        return next((s for s in self._sessions if s.id == session_id), None)

    def _replace_cached(self, session: Session) -> None:
        self._sessions = [session if s.id == session.id else s
                          for s in self._sessions]
        if self._current is not None and self._current.id == session.id:
            self._current = session

    async def _call(self, action: str, func, *args):
        """Run one adapter call on a worker thread and unwrap its result."""
        self._pending += 1
        self.error = None
        self._notify()
        try:
            result = await asyncio.to_thread(func, *args)
        finally:
            self._pending -= 1
        if not result.ok:
            self.error = result.error.message
            log.error("[SESSION] %s failed: %s", action, result.error.message)
            self._notify()
            raise result.error.to_exception(SessionRequestError)
        return result.payload

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    async def list_sessions(self) -> list[Session]:
        """Refresh the cache from the server.  Anonymous → ``[]``, no call."""
        if not self.authenticated:
            return []
        sessions = await self._call("List sessions", self._client.list_sessions)
        self._sessions = list(sessions)
        if self._current is not None:
            for session in self._sessions:
                if session.id == self._current.id:
                    self._current = session
                    break
        log.info("[SESSION] Loaded %d sessions.", len(self._sessions))
        self._notify()
        return list(self._sessions)

    async def create_session(self, title: str | None = None) -> Session:
        """Create a session server-side and make it current (empty transcript)."""
        self.require_auth("create a session")
        title = (title or "").strip() or default_title()
        seq = self._next_pointer()
        session = await self._call(
            "Create session", self._client.create_session, title,
        )
        self._sessions = [session] + [s for s in self._sessions
                                      if s.id != session.id]
        if self._apply_pointer(seq):
            self._current = session
            self._store.delete_all()
        else:
            log.debug("[SESSION] Newer session change wins over create of %s.",
                      session.id)
        log.info("[SESSION] Created session %s (%r).", session.id, session.title)
        self._notify()
        return session

    async def switch_session(self, session_id: str) -> Session:
        """Make a cached session current and load its remote message log.

        Raises :exc:`SessionNotFoundError` without touching any state when
        *session_id* is not in the cache.  The loaded log is dropped when a
        newer change of the current session (another switch, new chat,
        create, delete, sign-out, or a send) happened while it was loading;
        a failed switch changes nothing.
        """
        self.require_auth("open a saved session")
        session = self.get(session_id)
        seq = self._next_pointer()
        backend_messages = await self._call(
            "Load session messages",
            self._client.get_session_messages, session_id,
        )
        # Re-read: a rename may have landed while the log was loading.
        cached = self._cached(session_id)
        if cached is None or not self.authenticated:
            log.debug("[SESSION] %s is gone; dropping its messages.", session_id)
            return session
        if not self._apply_pointer(seq):
            log.debug("[SESSION] Dropping stale messages for %s.", session_id)
            return cached
        session = cached
        self._store.replace_all(m.to_message() for m in backend_messages)
        self._current = session
        log.info("[SESSION] Switched to %s (%d messages).",
                 session_id, len(backend_messages))
        self._notify()
        return session

    async def delete_session(self, session_id: str) -> None:
        self.require_auth("delete a session")
        self._take_ticket(session_id)
        seq = self._next_pointer()
        await self._call("Delete session", self._client.delete_session, session_id)
        # A successful delete is final; bump the ticket so older renames lose.
        self._take_ticket(session_id)
        self._sessions = [s for s in self._sessions if s.id != session_id]
        if self._current is not None and self._current.id == session_id:
            self._apply_pointer(seq)
            self._current = None
            self._store.delete_all()
        log.info("[SESSION] Deleted session %s.", session_id)
        self._notify()

    async def update_title(self, session_id: str, title: str) -> Session:
        """Rename a session.  The cache shows the new title immediately."""
        self.require_auth("rename a session")
        title = title.strip()
        if not title:
            raise ValueError("Session title must not be empty.")
        original = self.get(session_id)
        ticket = self._take_ticket(session_id)
        self._replace_cached(original.with_changes(title=title))
        self._notify()
        try:
            updated = await self._call(
                "Rename session", self._client.update_session_title,
                session_id, title,
            )
        except Exception:
            if self._is_latest(session_id, ticket):
                self._replace_cached(original)
                self._notify()
            raise
        if not self._is_latest(session_id, ticket):
            log.debug("[SESSION] Ignoring stale rename response for %s.",
                      session_id)
            return next((s for s in self._sessions if s.id == session_id),
                        updated or original)
        if updated is None:
            updated = original.with_changes(title=title, updated_at=utcnow())
        self._replace_cached(updated)
        self._notify()
        return updated

    # ------------------------------------------------------------------
    # Local-only operations
    # ------------------------------------------------------------------

    def start_new_session(self) -> None:
        """Forget the current session ("new chat") without a remote call.

        The backend creates the record lazily on the first authenticated
        send; see :meth:`adopt_session`.
        """
        self._apply_pointer(self._next_pointer())
        self._current = None
        self._store.delete_all()
        self._notify()

    def claim_transcript(self) -> None:
        """The user is writing into the shown transcript; switches still
        loading must not replace it."""
        self._apply_pointer(self._next_pointer())

    def adopt_session(self, session_id: str | None, first_message: str = "") -> None:
        """Make the session the backend used for a send the current one."""
        if not session_id or not self.authenticated:
            return
        if self._current is not None and self._current.id == session_id:
            return
        self._apply_pointer(self._next_pointer())
        for session in self._sessions:
            if session.id == session_id:
                self._current = session
                break
        else:
            self._current = Session(id=session_id,
                                    title=title_from_text(first_message))
            self._sessions.insert(0, self._current)
        log.info("[SESSION] Adopted session %s.", session_id)
        self._notify()

    def touch_current(self, preview: str) -> None:
        """Bump the current session to the top with a new preview."""
        if self._current is None:
            return
        touched = self._current.with_changes(
            updated_at=utcnow(),
            last_message_preview=preview[:PREVIEW_LENGTH],
        )
        self._current = touched
        self._sessions = [touched] + [s for s in self._sessions
                                      if s.id != touched.id]
        self._notify()

    def clear_for_anonymous(self) -> None:
        """Drop everything tied to the signed-in user."""
        had_session = self._current is not None
        self._apply_pointer(self._next_pointer())
        self._current = None
        self._sessions = []
        self._tickets.clear()
        if had_session:
            self._store.delete_all()
        self._notify()
