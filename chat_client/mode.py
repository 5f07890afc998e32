"""
Input / loading / settings mode of the chat UI.

Legal transitions::

    INPUT    -> LOADING    begin_loading()   (also LOADING -> LOADING)
    LOADING  -> INPUT      settle()
    INPUT    -> SETTINGS   open_settings()
    SETTINGS -> INPUT      close_settings()
    any      -> INPUT      reset()

Every other request is refused: the method returns ``False`` and the
state is left alone.
"""

import logging
from typing import Callable

from .models import Mode

log = logging.getLogger("chatbot_client")

ModeListener = Callable[[Mode, Mode], None]


class ModeStateMachine:

    def __init__(self) -> None:
        self._mode = Mode.INPUT
        self._listeners: list[ModeListener] = []

    @property
    def mode(self) -> Mode:
        return self._mode

    def begin_loading(self) -> bool:
        if self._mode is Mode.SETTINGS:
            return False
        return self._set(Mode.LOADING) or self._mode is Mode.LOADING

    def settle(self) -> bool:
        if self._mode is not Mode.LOADING:
            return False
        return self._set(Mode.INPUT)

    def open_settings(self) -> bool:
        if self._mode is not Mode.INPUT:
            log.debug("[MODE] open_settings ignored in %s", self._mode.value)
            return False
        return self._set(Mode.SETTINGS)

    def close_settings(self) -> bool:
        if self._mode is not Mode.SETTINGS:
            return False
        return self._set(Mode.INPUT)

    def reset(self) -> bool:
        return self._set(Mode.INPUT)

    def subscribe(self, listener: ModeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, new: Mode) -> bool:
        """Switch to *new*; returns ``True`` only when the mode changed."""
        old = self._mode
        if old is new:
            return False
        self._mode = new
        log.debug("[MODE] %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:  # noqa: BLE001
                log.exception("[MODE] Listener %r failed", listener)
        return True
