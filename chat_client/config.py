"""
Client configuration.

Values are resolved in three layers, later layers winning:

1. Dataclass defaults.
2. ``Asset/settings.json`` (written by :meth:`ClientConfig.save`).
3. Environment variables:

   ``CHATBOT_ENDPOINT``   base URL of the inference backend
   ``CHATBOT_TIMEOUT``    request timeout in seconds
   ``CHATBOT_SPEECH``     ``1``/``true``/``on`` to enable spoken replies
   ``CHATBOT_LOG_LEVEL``  logging level name, e.g. ``INFO``
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields

from .errors import ConfigError

log = logging.getLogger("chatbot_client")

SETTINGS_FILE = "settings.json"

# Project root = the directory that contains main.py.
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def asset_path(filename: str) -> str:
    """Return the absolute path for *filename* inside the Asset folder.

    The folder is ``Asset/`` next to ``main.py`` unless ``CHATBOT_ASSET_DIR``
    names another one, and is created on first use.
    """
    folder = (os.environ.get("CHATBOT_ASSET_DIR")
              or os.path.join(_PROJECT_ROOT, "Asset"))
    os.makedirs(folder, exist_ok=True)
    return os.path.join(folder, filename)


@dataclass
class ClientConfig:
    """Runtime settings for :class:`~chat_client.engine.ChatEngine`."""

    endpoint: str = ""
    request_timeout: float = 120.0
    speech_enabled: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | None = None, environ=None) -> "ClientConfig":
        """Build a config from defaults, the settings file and the env."""
        path = path or asset_path(SETTINGS_FILE)
        environ = os.environ if environ is None else environ
        config = cls()
        config._apply_file(path)
        config._apply_env(environ)
        config.endpoint = config.endpoint.rstrip("/")
        return config

    def _apply_file(self, path: str) -> None:
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Could not read settings file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Settings file {path} must contain a JSON object.")

        known = {f.name for f in fields(self)}
        for key, value in raw.items():
            if key in known:
                setattr(self, key, value)
            else:
                log.warning("[CONFIG] Ignoring unknown setting %r in %s", key, path)
        log.debug("[CONFIG] Loaded settings from %s", path)

    def _apply_env(self, environ) -> None:
        if environ.get("CHATBOT_ENDPOINT"):
            self.endpoint = environ["CHATBOT_ENDPOINT"]
        if environ.get("CHATBOT_TIMEOUT"):
            try:
                self.request_timeout = float(environ["CHATBOT_TIMEOUT"])
            except ValueError as exc:
                raise ConfigError(
                    f"CHATBOT_TIMEOUT must be a number, got "
                    f"{environ['CHATBOT_TIMEOUT']!r}"
                ) from exc
        if environ.get("CHATBOT_SPEECH"):
            self.speech_enabled = environ["CHATBOT_SPEECH"].strip().lower() in _TRUTHY
        if environ.get("CHATBOT_LOG_LEVEL"):
            self.log_level = environ["CHATBOT_LOG_LEVEL"].upper()

    # ------------------------------------------------------------------
    # Validation / persistence
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise :exc:`ConfigError` when the config cannot be used."""
        if not self.endpoint:
            raise ConfigError(
                "Endpoint not initialized. Set CHATBOT_ENDPOINT or add "
                "\"endpoint\" to Asset/settings.json."
            )
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be greater than zero.")

    def save(self, path: str | None = None) -> None:
        """Persist the current values to the settings file."""
        path = path or asset_path(SETTINGS_FILE)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(asdict(self), fh, ensure_ascii=False, indent=2)
