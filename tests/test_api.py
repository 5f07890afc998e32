"""Tests for the HTTP adapter in ``chat_client.api``.

``requests.Session`` is replaced with a mock; no real HTTP requests are made.
"""

import json
import unittest
from unittest import mock

import requests

from chat_client.api import (
    ApiError,
    BackendClient,
    CancellationToken,
    normalize_error_detail,
)
from chat_client.errors import (
    BotResponseError,
    CancelledError,
    NetworkError,
    SessionRequestError,
)
from chat_client.models import Author, BotReply

ENDPOINT = "https://bot.example.test"


def _response(status: int, body=None, *, raw: bytes | None = None,
              path: str = "/chat") -> requests.Response:
    """Build a fully-read ``requests.Response``."""
    resp = requests.Response()
    resp.status_code = status
    resp.reason = "OK" if status < 400 else "Error"
    resp.url = ENDPOINT + path
    if raw is None:
        raw = b"" if body is None else json.dumps(body).encode("utf-8")
    resp._content = raw
    resp._content_consumed = True
    return resp


def _client(response=None, *, token=None, side_effect=None):
    http = mock.MagicMock(spec=requests.Session)
    if side_effect is not None:
        http.request.side_effect = side_effect
    else:
        http.request.return_value = response
    client = BackendClient(ENDPOINT + "/", lambda: token, timeout=5, session=http)
    return client, http


# -----------------------------------------------------------------------
# Error-body normalization
# -----------------------------------------------------------------------

class TestNormalizeErrorDetail(unittest.TestCase):

    def test_plain_detail_string(self) -> None:
        self.assertEqual(normalize_error_detail({"detail": "Bad token"}), "Bad token")

    def test_validation_list_uses_first_message(self) -> None:
        body = {"detail": [{"msg": "field required"}, {"msg": "second"}]}
        self.assertEqual(normalize_error_detail(body), "field required")

    def test_openai_style_error(self) -> None:
        body = {"error": {"message": "overloaded", "type": "server_error"}}
        self.assertEqual(normalize_error_detail(body), "overloaded")

    def test_bare_list(self) -> None:
        self.assertEqual(normalize_error_detail([{"msg": "first"}]), "first")

    def test_falls_back_to_text(self) -> None:
        self.assertEqual(normalize_error_detail(None, "Gateway Timeout"),
                         "Gateway Timeout")

    def test_fallback_is_truncated(self) -> None:
        self.assertEqual(len(normalize_error_detail(None, "x" * 2000)), 500)

    def test_nothing_at_all(self) -> None:
        self.assertEqual(normalize_error_detail(None),
                         "An unexpected error occurred")


# -----------------------------------------------------------------------
# POST /chat
# -----------------------------------------------------------------------

class TestPostChat(unittest.TestCase):

    def test_success(self) -> None:
        client, http = _client(_response(200, {
            "response": "Hi there", "session_id": "s1", "message_id": "m1",
        }))
        result = client.post_chat("Hello", "s1")
        self.assertTrue(result.ok)
        self.assertEqual(result.payload, BotReply("Hi there", "s1", "m1"))
        _method, url = http.request.call_args.args
        self.assertEqual(url, ENDPOINT + "/chat")
        self.assertEqual(http.request.call_args.kwargs["json"],
                         {"query": "Hello", "session_id": "s1"})

    def test_session_id_omitted_when_none(self) -> None:
        client, http = _client(_response(200, {"response": "ok"}))
        client.post_chat("Hello")
        self.assertEqual(http.request.call_args.kwargs["json"], {"query": "Hello"})

    def test_bearer_header_only_with_token(self) -> None:
        client, http = _client(_response(200, {"response": "ok"}), token="abc")
        client.post_chat("Hello")
        headers = http.request.call_args.kwargs["headers"]
        self.assertEqual(headers["Authorization"], "Bearer abc")

        client, http = _client(_response(200, {"response": "ok"}))
        client.post_chat("Hello")
        self.assertNotIn("Authorization", http.request.call_args.kwargs["headers"])

    def test_http_error_is_normalized(self) -> None:
        client, _ = _client(_response(
            422, {"detail": [{"msg": "query too long"}]}))
        result = client.post_chat("Hello")
        self.assertFalse(result.ok)
        self.assertEqual(result.error.message, "query too long")
        self.assertEqual(result.error.status_code, 422)

        exc = result.error.to_exception(BotResponseError)
        self.assertIsInstance(exc, BotResponseError)
        self.assertEqual(exc.status_code, 422)
        self.assertIn("HTTP 422", str(exc))

    def test_missing_response_field_is_malformed(self) -> None:
        client, _ = _client(_response(200, {"answer": "wrong key"}))
        result = client.post_chat("Hello")
        self.assertEqual(result.error.kind, "malformed")
        self.assertIsInstance(result.error.to_exception(BotResponseError),
                              BotResponseError)

    def test_non_json_body_is_malformed(self) -> None:
        client, _ = _client(_response(200, raw=b"<html>oops</html>"))
        self.assertEqual(client.post_chat("Hello").error.kind, "malformed")

    def test_timeout(self) -> None:
        client, _ = _client(side_effect=requests.Timeout("slow"))
        result = client.post_chat("Hello")
        self.assertEqual(result.error.kind, "timeout")
        exc = result.error.to_exception(BotResponseError)
        self.assertIsInstance(exc, BotResponseError)
        self.assertIsNone(exc.status_code)

    def test_connection_error_becomes_network_error(self) -> None:
        client, _ = _client(side_effect=requests.ConnectionError("refused"))
        result = client.post_chat("Hello")
        self.assertEqual(result.error.kind, "network")
        self.assertIsInstance(result.error.to_exception(BotResponseError),
                              NetworkError)

    def test_cancelled_token_voids_answer(self) -> None:
        client, _ = _client(_response(200, {"response": "late"}))
        token = CancellationToken()
        token.cancel()
        result = client.post_chat("Hello", cancel_token=token)
        self.assertEqual(result.error.kind, "cancelled")
        self.assertIsInstance(result.error.to_exception(BotResponseError),
                              CancelledError)


# -----------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------

class TestSessionEndpoints(unittest.TestCase):

    RECORD = {
        "id": "s1", "user_id": "u1", "title": "Trip planning",
        "created_at": "2025-01-02T03:04:05Z",
        "updated_at": "2025-01-03T03:04:05+00:00",
        "last_message": "See you", "message_count": 4,
    }

    def test_list_sessions_bare_list(self) -> None:
        client, _ = _client(_response(200, [self.RECORD], path="/sessions"))
        result = client.list_sessions()
        self.assertEqual([s.title for s in result.payload], ["Trip planning"])
        self.assertEqual(result.payload[0].last_message_preview, "See you")
        self.assertEqual(result.payload[0].created_at.year, 2025)

    def test_list_sessions_wrapped(self) -> None:
        client, _ = _client(_response(200, {"sessions": [self.RECORD]},
                                      path="/sessions"))
        self.assertEqual(len(client.list_sessions().payload), 1)

    def test_list_sessions_bad_record(self) -> None:
        client, _ = _client(_response(200, [{"title": "no id"}], path="/sessions"))
        result = client.list_sessions()
        self.assertEqual(result.error.kind, "malformed")
        self.assertIsInstance(result.error.to_exception(SessionRequestError),
                              SessionRequestError)

    def test_create_session(self) -> None:
        client, http = _client(_response(201, self.RECORD, path="/sessions"))
        result = client.create_session("Trip planning")
        self.assertEqual(result.payload.id, "s1")
        self.assertEqual(http.request.call_args.kwargs["json"],
                         {"title": "Trip planning"})

    def test_get_session_messages(self) -> None:
        body = [
            {"id": "1", "session_id": "s1", "role": "USER",
             "content": "hi", "created_at": "2025-01-01T00:00:00Z"},
            {"id": "2", "session_id": "s1", "role": "assistant",
             "content": "hello", "created_at": "2025-01-01T00:00:01Z"},
        ]
        client, http = _client(_response(200, body, path="/sessions/s1/messages"))
        result = client.get_session_messages("s1")
        self.assertEqual([m.role for m in result.payload],
                         [Author.USER, Author.ASSISTANT])
        self.assertEqual(http.request.call_args.args,
                         ("GET", ENDPOINT + "/sessions/s1/messages"))
        self.assertEqual(result.payload[1].to_message().id, "2")

    def test_delete_session_no_content(self) -> None:
        client, http = _client(_response(204, path="/sessions/s1"))
        self.assertTrue(client.delete_session("s1").ok)
        self.assertEqual(http.request.call_args.args[0], "DELETE")

    def test_update_title_without_echo(self) -> None:
        client, http = _client(_response(200, {"ok": True},
                                         path="/sessions/s1/title"))
        result = client.update_session_title("s1", "New")
        self.assertTrue(result.ok)
        self.assertIsNone(result.payload)
        self.assertEqual(http.request.call_args.args[0], "PUT")

    def test_unauthorized(self) -> None:
        client, _ = _client(_response(401, {"detail": "Not authenticated"},
                                      path="/sessions"))
        result = client.list_sessions()
        self.assertEqual(result.error.message, "Not authenticated")
        self.assertEqual(result.status_code, 401)


# -----------------------------------------------------------------------
# Audio
# -----------------------------------------------------------------------

class TestAudioEndpoints(unittest.TestCase):

    def test_transcribe_sends_multipart(self) -> None:
        client, http = _client(_response(200, {"transcription": "hello"},
                                         path="/transcribe"))
        result = client.transcribe(b"wavdata", "rec.wav")
        self.assertEqual(result.payload, "hello")
        files = http.request.call_args.kwargs["files"]
        self.assertEqual(files["audio_file"][0], "rec.wav")

    def test_transcribe_failure(self) -> None:
        client, _ = _client(_response(500, raw=b"boom", path="/transcribe"))
        self.assertEqual(client.transcribe(b"x").error.message, "boom")

    def test_speech_returns_bytes(self) -> None:
        client, _ = _client(_response(200, raw=b"ID3audio", path="/speech"))
        self.assertEqual(client.synthesize_speech("hi").payload, b"ID3audio")

    def test_speech_no_content(self) -> None:
        client, _ = _client(_response(204, path="/speech"))
        result = client.synthesize_speech("hi")
        self.assertTrue(result.ok)
        self.assertEqual(result.payload, b"")


class TestCancellationToken(unittest.TestCase):

    def test_cancel_is_idempotent_and_runs_callbacks_once(self) -> None:
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append(1))
        token.cancel()
        token.cancel()
        self.assertTrue(token.cancelled)
        self.assertEqual(calls, [1])

    def test_cancel_closes_attached_response(self) -> None:
        token = CancellationToken()
        response = mock.MagicMock()
        token.attach(response)
        token.cancel()
        response.close.assert_called_once()

    def test_attach_after_cancel_closes_immediately(self) -> None:
        token = CancellationToken()
        token.cancel()
        response = mock.MagicMock()
        token.attach(response)
        response.close.assert_called_once()


class TestApiError(unittest.TestCase):

    def test_detail_kept_on_exception(self) -> None:
        exc = ApiError("nope", status_code=500, endpoint="u").to_exception(
            BotResponseError)
        self.assertEqual(exc.detail, "nope")
        self.assertEqual(exc.endpoint, "u")


if __name__ == "__main__":
    unittest.main()
