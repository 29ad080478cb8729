# orchestration/auth_state.py
"""Tracks whether the remote store is usable and notifies listeners on change."""

from __future__ import annotations

from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)

AuthListener = Callable[[bool], None]


class AuthState:
    def __init__(self, signed_in: bool = False) -> None:
        self._signed_in = signed_in
        self._listeners: list[AuthListener] = []

    def is_signed_in(self) -> bool:
        return self._signed_in

    def add_listener(self, callback: AuthListener) -> None:
        self._listeners.append(callback)

    def set_signed_in(self, signed_in: bool) -> None:
        self._signed_in = signed_in
        for callback in list(self._listeners):
            try:
                callback(signed_in)
            except Exception as exc:
                logger.error("Auth listener failed", error=str(exc), exc_info=True)
