"""
HTTP adapter for the chatbot backend.

Every public method performs one blocking ``requests`` call and returns an
:class:`ApiResult`: either a typed payload (``BotReply``, ``Session`` …) or
an :class:`ApiError` with a single human-readable message.  Transport
exceptions, non-2xx answers and malformed bodies are all normalized here,
so the engine never inspects raw JSON shapes.

The engine runs these methods on worker threads (``asyncio.to_thread``).
A :class:`CancellationToken` lets the event-loop side abort the socket of
an in-flight chat query.
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import requests

from .errors import CancelledError, NetworkError
from .models import BackendMessage, BotReply, Session

log = logging.getLogger("chatbot_client")

DEFAULT_TIMEOUT = 120

_BASE_HEADERS = {
    "Accept":     "application/json",
    "User-Agent": "chatbot-client/0.3",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ApiError:
    """Normalized failure of one backend call.

    ``kind`` is one of ``"http"``, ``"malformed"``, ``"timeout"``,
    ``"network"`` or ``"cancelled"``.
    """

    message: str
    kind: str = "http"
    status_code: int | None = None
    endpoint: str = ""

    def to_exception(self, error_cls):
        """Build the exception to raise for this failure.

        Network and cancellation failures always map to their own types;
        everything else becomes *error_cls* (e.g. ``BotResponseError``).
        """
        if self.kind == "cancelled":
            return CancelledError(self.message)
        cls = NetworkError if self.kind == "network" else error_cls
        return cls(
            self.message,
            status_code=self.status_code,
            endpoint=self.endpoint,
            detail=self.message,
        )


@dataclass(frozen=True)
class ApiResult:
    """``Ok(payload)`` when *error* is ``None``, ``Err(error)`` otherwise."""

    payload: Any = None
    error: ApiError | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CancellationToken:
    """Cooperative cancellation handle shared with a worker thread.

    :meth:`cancel` marks the token, closes the attached HTTP response (which
    aborts a blocked read) and runs registered callbacks.  Callbacks run on
    the thread that calls :meth:`cancel`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._response: requests.Response | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def attach(self, response: requests.Response) -> None:
        with self._lock:
            self._response = response
        if self.cancelled:
            response.close()

    def add_callback(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        with self._lock:
            response = self._response
        if response is not None:
            response.close()
        for callback in self._callbacks:
            callback()


# ---------------------------------------------------------------------------
# Error-body normalization
# ---------------------------------------------------------------------------

def normalize_error_detail(body: Any, fallback: str = "") -> str:
    """Collapse any error body shape into one human-readable string.

    Handles FastAPI-style ``{"detail": "..."}`` and validation lists
    ``{"detail": [{"msg": "..."}, ...]}`` (first message wins), OpenAI-style
    ``{"error": {"message": "..."}}``, ``{"message": "..."}`` and plain
    strings.  Falls back to *fallback* truncated to 500 chars.
    """
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, list) and detail:
            first = detail[0]
            if isinstance(first, dict):
                return str(first.get("msg") or "An error occurred")
            return str(first)
        if isinstance(detail, str) and detail:
            return detail
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if isinstance(err, str) and err:
            return err
        if isinstance(body.get("message"), str) and body["message"]:
            return body["message"]
    elif isinstance(body, list) and body:
        return normalize_error_detail({"detail": body}, fallback)
    elif isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return fallback[:500] if fallback else "An unexpected error occurred"


def _decode_json(raw: bytes) -> Any:
    """Return the parsed JSON body, or ``None`` when it is not JSON."""
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BackendClient:
    """Thin wrapper around the chatbot backend's REST endpoints."""

    def __init__(
        self,
        endpoint: str,
        token_provider: Callable[[], "str | None"] | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._token_provider = token_provider or (lambda: None)
        self._timeout = timeout
        self._http = session or requests.Session()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = dict(_BASE_HEADERS)
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        files: dict | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[requests.Response | None, bytes, ApiResult | None]:
        """Send one request and read the whole body.

        Returns ``(response, body, None)`` on any HTTP answer, or
        ``(None, b"", failure)`` when no usable answer arrived.
        """
        url = f"{self._endpoint}{path}"
        log.debug("[API] %s %s", method, url)
        try:
            response = self._http.request(
                method, url,
                headers=self._headers(),
                json=json_body,
                files=files,
                timeout=self._timeout,
                stream=True,
            )
        except requests.Timeout:
            log.warning("[API] %s %s timed out after %ss",
                        method, url, self._timeout)
            return None, b"", ApiResult(error=ApiError(
                f"The request timed out after {self._timeout:g} seconds.",
                kind="timeout", endpoint=url,
            ))
        except requests.RequestException as exc:
            if cancel_token is not None and cancel_token.cancelled:
                return None, b"", self._cancelled(url)
            log.warning("[API] %s %s failed (network error): %s",
                        method, url, exc)
            return None, b"", ApiResult(error=ApiError(
                f"Could not reach the server: {type(exc).__name__}: {exc}",
                kind="network", endpoint=url,
            ))

        if cancel_token is not None:
            cancel_token.attach(response)
        try:
            body = response.content
        except (requests.RequestException, OSError, ValueError) as exc:
            # A socket closed by cancel() can surface as any of these.
            if cancel_token is not None and cancel_token.cancelled:
                return None, b"", self._cancelled(url)
            log.warning("[API] %s %s: reading body failed: %s",
                        method, url, exc)
            return None, b"", ApiResult(error=ApiError(
                f"Connection lost while reading the response: {exc}",
                kind="network", endpoint=url,
            ))
        finally:
            response.close()

        if cancel_token is not None and cancel_token.cancelled:
            return None, b"", self._cancelled(url)

        log.debug("[API] %s %s → %d  (body len=%d)",
                  method, url, response.status_code, len(body or b""))
        return response, body or b"", None

    @staticmethod
    def _cancelled(url: str) -> ApiResult:
        return ApiResult(error=ApiError(
            "Request cancelled.", kind="cancelled", endpoint=url,
        ))

    def _http_error(self, response: requests.Response, body: bytes) -> ApiResult:
        text = body.decode("utf-8", errors="replace")
        detail = normalize_error_detail(
            _decode_json(body), text or response.reason or "",
        )
        log.warning("[API] HTTP %d from %s — %s",
                    response.status_code, response.url, detail)
        return ApiResult(
            error=ApiError(detail, kind="http",
                           status_code=response.status_code,
                           endpoint=response.url),
            status_code=response.status_code,
        )

    @staticmethod
    def _malformed(response: requests.Response, what: str) -> ApiResult:
        log.warning("[API] Malformed response from %s: expected %s",
                    response.url, what)
        return ApiResult(
            error=ApiError(
                f"Response data is missing expected format ({what}).",
                kind="malformed",
                status_code=response.status_code,
                endpoint=response.url,
            ),
            status_code=response.status_code,
        )

    def _json_call(self, method: str, path: str, **kwargs):
        """Shared path for endpoints answering JSON.

        Returns ``(response, parsed_body, None)`` or ``(.., .., failure)``.
        """
        response, body, failure = self._request(method, path, **kwargs)
        if failure is not None:
            return None, None, failure
        if not response.ok:
            return response, None, self._http_error(response, body)
        return response, _decode_json(body), None

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def post_chat(
        self,
        query: str,
        session_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ApiResult:
        """``POST /chat``.  *session_id* is sent only when given."""
        payload: dict = {"query": query}
        if session_id is not None:
            payload["session_id"] = session_id
        response, data, failure = self._json_call(
            "POST", "/chat", json_body=payload, cancel_token=cancel_token,
        )
        if failure is not None:
            return failure
        if not isinstance(data, dict):
            return self._malformed(response, "a JSON object")
        reply = data.get("response")
        if not isinstance(reply, str) or not reply:
            return self._malformed(response, "'response'")
        return ApiResult(
            payload=BotReply(
                reply_text=reply,
                session_id=data.get("session_id") or None,
                message_id=data.get("message_id") or None,
            ),
            status_code=response.status_code,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self) -> ApiResult:
        """``GET /sessions``.  Accepts a bare list or ``{"sessions": [...]}``."""
        response, data, failure = self._json_call("GET", "/sessions")
        if failure is not None:
            return failure
        if data is None:
            records = []
        elif isinstance(data, list):
            records = data
        elif isinstance(data, dict) and isinstance(
                data.get("sessions", data.get("data")), list):
            records = data.get("sessions", data.get("data"))
        else:
            return self._malformed(response, "a list of sessions")
        try:
            sessions = [Session.from_dict(r) for r in records]
        except (KeyError, TypeError, ValueError):
            return self._malformed(response, "session records")
        return ApiResult(payload=sessions, status_code=response.status_code)

    def create_session(self, title: str) -> ApiResult:
        response, data, failure = self._json_call(
            "POST", "/sessions", json_body={"title": title},
        )
        if failure is not None:
            return failure
        try:
            session = Session.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError):
            return self._malformed(response, "a session record")
        return ApiResult(payload=session, status_code=response.status_code)

    def get_session_messages(self, session_id: str) -> ApiResult:
        response, data, failure = self._json_call(
            "GET", f"/sessions/{session_id}/messages",
        )
        if failure is not None:
            return failure
        if isinstance(data, dict):
            data = data.get("messages")
        if not isinstance(data, list):
            return self._malformed(response, "a list of messages")
        try:
            messages = [BackendMessage.from_dict(m) for m in data]
        except (KeyError, TypeError, ValueError):
            return self._malformed(response, "message records")
        return ApiResult(payload=messages, status_code=response.status_code)

    def delete_session(self, session_id: str) -> ApiResult:
        response, _data, failure = self._json_call(
            "DELETE", f"/sessions/{session_id}",
        )
        if failure is not None:
            return failure
        return ApiResult(payload=session_id, status_code=response.status_code)

    def update_session_title(self, session_id: str, title: str) -> ApiResult:
        """``PUT /sessions/{id}/title``.

        The payload is the updated :class:`Session` when the server echoes
        the record, otherwise ``None``.
        """
        response, data, failure = self._json_call(
            "PUT", f"/sessions/{session_id}/title", json_body={"title": title},
        )
        if failure is not None:
            return failure
        session = None
        if isinstance(data, dict) and "id" in data:
            try:
                session = Session.from_dict(data)
            except (KeyError, TypeError, ValueError):
                return self._malformed(response, "a session record")
        return ApiResult(payload=session, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def transcribe(self, audio: bytes, filename: str = "recording.wav",
                   mime: str = "audio/wav") -> ApiResult:
        """``POST /transcribe`` with the audio as multipart ``audio_file``."""
        response, data, failure = self._json_call(
            "POST", "/transcribe",
            files={"audio_file": (filename, audio, mime)},
        )
        if failure is not None:
            return failure
        text = data.get("transcription") if isinstance(data, dict) else None
        if not isinstance(text, str):
            return self._malformed(response, "'transcription'")
        return ApiResult(payload=text, status_code=response.status_code)

    def synthesize_speech(self, text: str) -> ApiResult:
        """``POST /speech``.  The payload is the audio bytes (``b""`` on 204)."""
        response, body, failure = self._request(
            "POST", "/speech", json_body={"text": text},
        )
        if failure is not None:
            return failure
        if not response.ok:
            return self._http_error(response, body)
        if response.status_code == 204:
            body = b""
        return ApiResult(payload=body, status_code=response.status_code)

    def close(self) -> None:
        self._http.close()
