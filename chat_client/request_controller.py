"""
Lifecycle of the single in-flight bot query.

At most one chat request is honored at a time.  The controller owns one
slot (``_inflight``); :meth:`RequestLifecycleController.send` replaces it
and cancels whatever was there before, so a newer send always wins.

Cancellation is cooperative: the :class:`~chat_client.api.CancellationToken`
closes the HTTP response if the worker thread has one, but whatever the
worker returns after cancellation is thrown away regardless.
"""

import asyncio
import logging

from .api import BackendClient, CancellationToken
from .errors import BotResponseError, CancelledError
from .models import BotReply

log = logging.getLogger("chatbot_client")


class _InFlight:
    """Cancellation handle plus bookkeeping for one send."""

    def __init__(self, generation: int) -> None:
        self.generation = generation
        self.token = CancellationToken()
        self.superseded = False

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self, *, superseded: bool) -> None:
        if not self.token.cancelled:
            self.superseded = superseded
        self.token.cancel()


def _discard(future: asyncio.Future) -> None:
    """Done-callback for abandoned worker calls: consume their outcome."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.debug("[SEND] Abandoned request finished with %s: %s",
                  type(exc).__name__, exc)


class RequestLifecycleController:
    """Issues ``POST /chat`` and tracks the one request that counts."""

    def __init__(self, client: BackendClient, token_provider=None) -> None:
        self._client = client
        self._token_provider = token_provider or (lambda: None)
        self._inflight: _InFlight | None = None
        self._generation = 0

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    def cancel(self) -> bool:
        """Cancel the in-flight request.  Returns ``False`` if there was none."""
        inflight = self._inflight
        if inflight is None:
            return False
        self._inflight = None
        inflight.cancel(superseded=False)
        log.info("[SEND] Request #%d cancelled.", inflight.generation)
        return True

    def _replace_inflight(self) -> _InFlight:
        previous = self._inflight
        self._generation += 1
        current = _InFlight(self._generation)
        self._inflight = current
        if previous is not None:
            previous.cancel(superseded=True)
            log.info("[SEND] Request #%d superseded by #%d.",
                     previous.generation, current.generation)
        return current

    async def send(self, message: str, session_id: str | None = None) -> BotReply:
        """Send *message* and wait for the reply.

        *session_id* is forwarded only when a bearer token is available;
        anonymous queries never carry one.

        Raises
        ------
        BotResponseError
            Non-2xx answer, missing ``response`` field, or timeout.
        NetworkError
            The server could not be reached.
        CancelledError
            :meth:`cancel` was called or a newer :meth:`send` replaced this
            one before the reply arrived.
        """
        inflight = self._replace_inflight()
        if not self._token_provider():
            session_id = None

        loop = asyncio.get_running_loop()
        woken = loop.create_future()

        def wake() -> None:
            if not woken.done():
                woken.set_result(None)

        inflight.token.add_callback(wake)
        log.debug("[SEND] Request #%d: %d chars, session=%s",
                  inflight.generation, len(message), session_id or "(none)")

        call = asyncio.ensure_future(asyncio.to_thread(
            self._client.post_chat, message, session_id, inflight.token,
        ))
        try:
            await asyncio.wait({call, woken}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # The awaiting task itself was cancelled: abort the transport too.
            inflight.cancel(superseded=False)
            if self._inflight is inflight:
                self._inflight = None
            call.add_done_callback(_discard)
            raise

        if inflight.cancelled:
            call.add_done_callback(_discard)
            raise CancelledError(superseded=inflight.superseded)

        if self._inflight is inflight:
            self._inflight = None
        result = call.result()
        if not result.ok:
            raise result.error.to_exception(BotResponseError)
        log.debug("[SEND] Request #%d answered (%d chars).",
                  inflight.generation, len(result.payload.reply_text))
        return result.payload
