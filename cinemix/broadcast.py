"""In-process change notifications shared by history stores on the same key."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[str, str], Awaitable[None]]


class HistoryBroadcast:
    """Pub/sub hub announcing that a storage key was rewritten.

    Handlers receive the storage key and the device id of the writer so they
    can ignore their own writes.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[ChangeHandler]] = {}

    def subscribe(self, key: str, handler: ChangeHandler) -> Callable[[], None]:
        handlers = self._handlers.setdefault(key, [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    async def publish(self, key: str, origin: str) -> None:
        for handler in list(self._handlers.get(key, ())):
            try:
                await handler(key, origin)
            except Exception:  # pragma: no cover - subscriber safety net
                logger.exception("History change handler failed for %s", key)
