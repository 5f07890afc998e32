"""
Error taxonomy for the chatbot client.

Everything the engine raises derives from :class:`ChatClientError`, so the
presentation layer can catch one type.  Raw ``requests`` exceptions never
escape :mod:`chat_client.api`.

``CancelledError`` here is *not* :class:`asyncio.CancelledError`: it is an
ordinary exception meaning "the user (or a newer send) aborted this
request", which callers report with a neutral transcript entry instead of
an error.
"""


class ChatClientError(Exception):
    """Base class for all client errors."""


class ConfigError(ChatClientError):
    """The client configuration is missing or invalid."""


class RequestError(ChatClientError):
    """A backend call failed.  Keeps diagnostic context for debugging.

    Attributes
    ----------
    status_code : int | None
        HTTP status code (``None`` for non-HTTP errors).
    endpoint : str
        The URL that was called.
    detail : str
        Human-readable detail normalized from the response body.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        detail: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:  # noqa: D105
        parts = [super().__str__()]
        if self.status_code is not None:
            parts.append(f"  HTTP {self.status_code}")
        if self.endpoint:
            parts.append(f"  Endpoint: {self.endpoint}")
        if self.detail:
            parts.append(f"  Detail: {self.detail[:500]}")
        return "\n".join(parts)


class NetworkError(RequestError):
    """Transport-level failure: DNS, refused connection, reset socket."""


class BotResponseError(RequestError):
    """The chat endpoint answered non-2xx, timed out, or sent a bad body."""


class SessionRequestError(RequestError):
    """A session-catalog call answered non-2xx or sent a bad body."""


class TranscriptionError(RequestError):
    """The transcription endpoint could not turn audio into text."""


class CancelledError(ChatClientError):
    """The in-flight bot request was aborted before it settled.

    *superseded* is ``True`` when a newer send replaced the request and
    ``False`` when it was cancelled explicitly.
    """

    def __init__(self, message: str = "Request cancelled.", *,
                 superseded: bool = False) -> None:
        self.superseded = superseded
        super().__init__(message)


class SessionNotFoundError(ChatClientError):
    """A session id is not present in the local session cache."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id!r} not found.")


class AuthRequiredError(ChatClientError):
    """A session operation was attempted without a bearer token."""
