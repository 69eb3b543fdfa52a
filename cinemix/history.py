"""Persistent, per-identity watch history with debounced writes."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from contextlib import suppress
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from .broadcast import HistoryBroadcast
from .clock import Clock, SystemClock
from .config import Settings
from .errors import InvalidArgument, StorageUnavailable
from .identity import IdentityResolver
from .models import WatchEvent, WatchEventInput
from .storage import KeyValueStorage
from .utils import clamp, coerce_media_id, coerce_media_type, is_finite_number

logger = logging.getLogger(__name__)

Listener = Callable[[WatchEvent | None], None]
HistoryKey = tuple[int, str]


class WatchHistoryStore:
    """Bounded, most-recent-first record of watch events.

    Mutations apply to the in-memory list immediately. Until :meth:`open`
    has resolved the scope identity they are also queued, and replayed in
    order on top of whatever was persisted for that identity. Writes to
    storage are coalesced and happen once ``debounce_seconds`` have passed
    without further mutations.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        identity: IdentityResolver | None = None,
        *,
        settings: Settings,
        clock: Clock | None = None,
        broadcast: HistoryBroadcast | None = None,
        device_id: str | None = None,
    ):
        self._storage = storage
        self._identity = identity
        self._settings = settings
        self._clock = clock or SystemClock()
        self._broadcast = broadcast
        self.device_id = device_id or f"device_{secrets.token_hex(6)}"

        self._events: list[WatchEvent] = []
        self._pending: list[tuple[Callable[..., None], tuple[Any, ...]]] = []
        self._ready = False
        self._persistent = True
        self._storage_key: str | None = None
        self._dirty = False
        self._last_mutation = 0.0

        self._open_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []
        self._external_listeners: list[Callable[[], None]] = []
        self._unsubscribe_broadcast: Callable[[], None] | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def persistent(self) -> bool:
        """Whether writes still reach durable storage."""

        return self._persistent

    @property
    def storage_key(self) -> str | None:
        return self._storage_key

    @property
    def max_history(self) -> int:
        return self._settings.max_history

    async def open(self) -> None:
        """Resolve the scope identity, load persisted state and replay queued writes."""

        if self._ready:
            return
        async with self._open_lock:
            if self._ready:
                return
            scope_id = await self._identity.resolve() if self._identity else "default"
            self._storage_key = f"{self._settings.history_key_prefix}{scope_id}"
            loaded = await self._load()

            pending, self._pending = self._pending, []
            self._events = loaded
            for operation, args in pending:
                operation(*args)
            self._ready = True
            if pending:
                self._dirty = True
                logger.info(
                    "Replayed %d history writes issued before %s was resolved",
                    len(pending),
                    self._storage_key,
                )
            if self._broadcast is not None:
                self._unsubscribe_broadcast = self._broadcast.subscribe(
                    self._storage_key, self._handle_broadcast
                )

    async def start(self) -> None:
        """Open the store and launch the background flush loop."""

        await self.open()
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def stop(self) -> None:
        """Stop the flush loop and persist any outstanding changes."""

        if self._flush_task is not None:
            self._flush_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None
        await self.flush()
        if self._unsubscribe_broadcast is not None:
            self._unsubscribe_broadcast()
            self._unsubscribe_broadcast = None

    # -- mutations -----------------------------------------------------

    def add_or_update(self, event: WatchEventInput | Mapping[str, Any]) -> WatchEvent:
        """Record ``event``, replacing any previous copy, newest first by ``watched_at``."""

        if isinstance(event, Mapping):
            if "id" in event:
                coerce_media_id(event["id"])
            try:
                event = WatchEventInput.model_validate(event)
            except ValidationError as exc:
                raise InvalidArgument(f"Invalid watch event: {exc}") from exc
        record = WatchEvent.from_input(event, watched_at=self._clock.now_ms())
        self._mutate(self._apply_upsert, record)
        self._notify(record)
        return record

    def update_progress(
        self,
        media_id: Any,
        media_type: Any,
        current_time: float,
        duration: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Record playback progress; ignored when ``duration`` is unusable."""

        key = self._validate_key(media_id, media_type)
        if not is_finite_number(duration) or duration <= 0:
            logger.debug("Ignoring progress for %s with duration %r", key, duration)
            return
        if not is_finite_number(current_time):
            logger.debug("Ignoring progress for %s with position %r", key, current_time)
            return

        details: dict[str, Any] = {}
        if metadata:
            try:
                parsed = WatchEventInput.model_validate(
                    {**metadata, "id": key[0], "media_type": key[1]}
                )
            except ValidationError as exc:
                raise InvalidArgument(f"Invalid progress metadata: {exc}") from exc
            details = parsed.model_dump(
                exclude_unset=True, exclude={"id", "media_type", "watched_at"}
            )
        details.update(
            progress_percent=clamp(100.0 * current_time / duration, 0.0, 100.0),
            current_time=current_time,
            duration=duration,
            watched_at=self._clock.now_ms(),
        )
        self._mutate(self._apply_merge, key, details)
        self._notify(self.get(*key))

    def remove(self, media_id: Any, media_type: Any) -> None:
        """Remove an entry; removing an absent entry is not an error."""

        key = self._validate_key(media_id, media_type)
        self._mutate(self._apply_remove, key)
        self._notify(None)

    def clear(self) -> None:
        self._mutate(self._apply_clear)
        self._notify(None)

    def mark_completed(self, media_id: Any, media_type: Any) -> None:
        """Flag an entry as fully watched so it leaves *continue watching*."""

        key = self._validate_key(media_id, media_type)
        if not self._ready or self._index_of(key) is not None:
            self._mutate(self._apply_complete, key, self._clock.now_ms())
            self._notify(self.get(*key))

    def import_data(self, payload: str) -> bool:
        """Replace the history with a previous :meth:`export_data` payload."""

        try:
            data = json.loads(payload)
            raw_history = data["history"] if isinstance(data, dict) else data
            if not isinstance(raw_history, list):
                raise TypeError("history must be a list")
            events = [self._parse_imported(entry) for entry in raw_history]
        except (ValueError, TypeError, KeyError, ValidationError) as exc:
            logger.warning("Rejected history import: %s", exc)
            return False

        self._mutate(self._apply_replace, self._normalise(events))
        self._notify(None)
        return True

    # -- queries -------------------------------------------------------

    def get(self, media_id: Any, media_type: Any) -> WatchEvent | None:
        key = self._validate_key(media_id, media_type)
        index = self._index_of(key)
        return None if index is None else self._events[index]

    def is_watched(self, media_id: Any, media_type: Any) -> bool:
        return self.get(media_id, media_type) is not None

    def list_recent(self, limit: int | None = None) -> list[WatchEvent]:
        """Return a fresh most-recent-first copy of the history."""

        events = list(self._events)
        return events if limit is None else events[: max(limit, 0)]

    def list_in_progress(self, limit: int | None = 10) -> list[WatchEvent]:
        """Return partially watched entries for *continue watching*."""

        threshold = self._settings.continue_watching_threshold
        events = [
            event
            for event in self._events
            if event.progress_percent is not None
            and 0 < event.progress_percent < threshold
        ]
        return events if limit is None else events[: max(limit, 0)]

    def export_data(self) -> str:
        return json.dumps(
            {
                "scope": self._storage_key,
                "device_id": self.device_id,
                "history": [event.model_dump(mode="json") for event in self._events],
                "exported_at": self._clock.now_ms(),
            }
        )

    # -- listeners -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every local or external change."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_external_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` when another store rewrote the shared history."""

        self._external_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._external_listeners:
                self._external_listeners.remove(callback)

        return _unsubscribe

    # -- persistence ---------------------------------------------------

    async def flush_due(self) -> bool:
        """Flush when the debounce interval has elapsed since the last change."""

        if not self._dirty or not self._ready:
            return False
        elapsed = self._clock.monotonic() - self._last_mutation
        if elapsed < self._settings.debounce_seconds:
            return False
        await self.flush()
        return True

    async def flush(self) -> None:
        """Write the current history to storage immediately."""

        async with self._flush_lock:
            if not self._dirty or not self._ready or self._storage_key is None:
                return
            self._dirty = False
            if not self._persistent:
                return
            payload = json.dumps(
                [event.model_dump(mode="json") for event in self._events]
            )
            try:
                await self._storage.set(self._storage_key, payload)
            except StorageUnavailable as exc:
                self._degrade(exc)
                return
            if self._broadcast is not None:
                await self._broadcast.publish(self._storage_key, self.device_id)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.flush_poll_seconds)
            try:
                await self.flush_due()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled history flush failed: %s", exc)

    async def _load(self) -> list[WatchEvent]:
        assert self._storage_key is not None
        if not self._persistent:
            return list(self._events)
        try:
            raw = await self._storage.get(self._storage_key)
        except StorageUnavailable as exc:
            self._degrade(exc)
            return []
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable history stored under %s", self._storage_key)
            return []
        if not isinstance(entries, list):
            logger.warning("Discarding malformed history stored under %s", self._storage_key)
            return []

        events: list[WatchEvent] = []
        for entry in entries:
            try:
                events.append(WatchEvent.model_validate(entry))
            except ValidationError:
                logger.warning("Skipping invalid history entry %r", entry)
        return self._normalise(events, keep_order=True)

    async def _handle_broadcast(self, key: str, origin: str) -> None:
        if origin == self.device_id or key != self._storage_key:
            return
        self._events = await self._load()
        logger.debug("Reloaded %s after a change from %s", key, origin)
        for callback in list(self._external_listeners):
            try:
                callback()
            except Exception:
                logger.exception("External change callback failed")
        self._notify(None)

    def _degrade(self, exc: StorageUnavailable) -> None:
        if self._persistent:
            logger.warning(
                "Watch history storage unavailable, keeping history in memory only: %s",
                exc,
            )
        self._persistent = False

    # -- internals -----------------------------------------------------

    def _mutate(self, operation: Callable[..., None], *args: Any) -> None:
        operation(*args)
        if not self._ready:
            self._pending.append((operation, args))
        self._dirty = True
        self._last_mutation = self._clock.monotonic()

    def _apply_upsert(self, event: WatchEvent) -> None:
        self._events = [item for item in self._events if item.key != event.key]
        # Newest first by watched_at; an equal timestamp goes ahead of older updates.
        position = next(
            (
                index
                for index, item in enumerate(self._events)
                if item.watched_at <= event.watched_at
            ),
            len(self._events),
        )
        self._events.insert(position, event)
        del self._events[self._settings.max_history :]

    def _apply_merge(self, key: HistoryKey, details: dict[str, Any]) -> None:
        index = self._index_of(key)
        if index is None:
            base: dict[str, Any] = {"id": key[0], "media_type": key[1]}
        else:
            base = self._events[index].model_dump()
        base.update(details)
        self._apply_upsert(WatchEvent.model_validate(base))

    def _apply_remove(self, key: HistoryKey) -> None:
        self._events = [item for item in self._events if item.key != key]

    def _apply_clear(self) -> None:
        self._events = []

    def _apply_complete(self, key: HistoryKey, watched_at: int) -> None:
        index = self._index_of(key)
        if index is None:
            return
        event = self._events[index]
        completed = event.model_copy(
            update={
                "progress_percent": 100.0,
                "current_time": event.duration,
                "watched_at": watched_at,
            }
        )
        self._apply_upsert(completed)

    def _apply_replace(self, events: list[WatchEvent]) -> None:
        self._events = list(events)

    def _index_of(self, key: HistoryKey) -> int | None:
        for index, event in enumerate(self._events):
            if event.key == key:
                return index
        return None

    def _normalise(
        self, events: Iterable[WatchEvent], *, keep_order: bool = False
    ) -> list[WatchEvent]:
        ordered = list(events)
        if not keep_order:
            ordered.sort(key=lambda event: event.watched_at, reverse=True)
        seen: set[HistoryKey] = set()
        unique: list[WatchEvent] = []
        for event in ordered:
            if event.key in seen:
                continue
            seen.add(event.key)
            unique.append(event)
        return unique[: self._settings.max_history]

    @staticmethod
    def _parse_imported(entry: Any) -> WatchEvent:
        # Older exports stored ``[key, value]`` pairs.
        if isinstance(entry, list) and len(entry) == 2:
            entry = entry[1]
        return WatchEvent.model_validate(entry)

    @staticmethod
    def _validate_key(media_id: Any, media_type: Any) -> HistoryKey:
        return coerce_media_id(media_id), coerce_media_type(media_type)

    def _notify(self, event: WatchEvent | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Watch history listener failed")
