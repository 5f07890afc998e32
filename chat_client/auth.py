"""
Bearer-token storage for authenticated backend calls.

Signing in and refreshing tokens happen elsewhere; this module only exposes
what the engine needs:

* persistent storage of the token (``Asset/token.json``), and
* *token providers*, zero-argument callables returning the current token
  or ``None``.  The engine calls the provider at request time and never
  writes through it.
"""

import json
import logging
import os
from typing import Callable

from .config import asset_path

log = logging.getLogger("chatbot_client")

#: Where the bearer token is cached between launches.
TOKEN_FILE = "token.json"

TokenProvider = Callable[[], "str | None"]


# ---------------------------------------------------------------------------
# Persistent token storage
# ---------------------------------------------------------------------------

def save_token(token: str, path: str | None = None) -> None:
    """Persist the bearer token to disk."""
    path = path or asset_path(TOKEN_FILE)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"auth_token": token}, fh)


def load_token(path: str | None = None) -> str | None:
    """Load the bearer token from disk, returning ``None`` if absent."""
    path = path or asset_path(TOKEN_FILE)
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("[AUTH] Could not read token file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    return data.get("auth_token") or None


def delete_token(path: str | None = None) -> None:
    """Remove the cached bearer token from disk."""
    path = path or asset_path(TOKEN_FILE)
    if os.path.exists(path):
        os.remove(path)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class FileTokenProvider:
    """Reads ``token.json`` on every call so sign-in/out take effect at once."""

    def __init__(self, path: str | None = None) -> None:
        self._path = path

    def __call__(self) -> str | None:
        return load_token(self._path)


class StaticTokenProvider:
    """Fixed token, mostly for tests and scripts.  ``None`` = anonymous."""

    def __init__(self, token: str | None = None) -> None:
        self.token = token

    def __call__(self) -> str | None:
        return self.token
