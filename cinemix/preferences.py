"""Genre affinity scoring derived from the watch history."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .clock import Clock, SystemClock
from .config import Settings
from .genres import POPULAR_DEFAULT_GENRES, TIME_OF_DAY_GENRES, TimeOfDay
from .history import WatchHistoryStore
from .models import GenreScore, HistoryStats
from .recommendations import deterministic_shuffle

logger = logging.getLogger(__name__)

SMART_MIX_FAVORITES = 3
SMART_MIX_SIZE = 5


class PreferenceEngine:
    """Stateless view over the history store; every call reads a fresh snapshot."""

    def __init__(
        self,
        store: WatchHistoryStore,
        *,
        settings: Settings,
        clock: Clock | None = None,
    ):
        self._store = store
        self._settings = settings
        self._clock = clock or SystemClock()

    def genre_preference_scores(self) -> list[GenreScore]:
        """Return genre scores sorted from strongest to weakest affinity.

        Each event contributes ``position * recency * rating`` to every genre
        it carries. Position weight decays linearly from 1.0 for the most
        recent entry toward 0.5 for the oldest retained one; entries older
        than the recent window count half. Equal scores keep the order in
        which genres were first seen.
        """

        max_history = self._settings.max_history
        recent_window = self._settings.recent_window_ms
        now = self._clock.now_ms()
        totals: dict[int, float] = {}

        for index, event in enumerate(self._store.list_recent(max_history)):
            position_weight = 1 - (index / max_history) * 0.5
            time_weight = 1.0 if now - event.watched_at < recent_window else 0.5
            rating_weight = event.vote_average / 10
            contribution = position_weight * time_weight * rating_weight
            for genre_id in event.genre_ids:
                totals[genre_id] = totals.get(genre_id, 0.0) + contribution

        scores = [GenreScore(genre_id=genre_id, score=score) for genre_id, score in totals.items()]
        scores.sort(key=lambda entry: entry.score, reverse=True)
        return scores

    def top_genres(self, limit: int = 3) -> list[int]:
        return [entry.genre_id for entry in self.genre_preference_scores()[: max(limit, 0)]]

    def time_of_day_bucket(self) -> TimeOfDay:
        hour = self._clock.local_hour()
        if 0 <= hour < 6:
            return "night"
        if 6 <= hour < 12:
            return "morning"
        if 12 <= hour < 18:
            return "afternoon"
        return "evening"

    def time_based_genre_boost(self) -> list[int]:
        return list(TIME_OF_DAY_GENRES[self.time_of_day_bucket()])

    def rotation_seed(self, now_ms: int | None = None) -> int:
        """Return the index of the current rotation window."""

        timestamp = self._clock.now_ms() if now_ms is None else now_ms
        return timestamp // self._settings.rotation_window_ms

    def discovery_genres(self, all_known_genre_ids: Iterable[int], limit: int = 2) -> list[int]:
        """Pick genres the viewer rarely watches, stable within a rotation window."""

        familiar = set(self.top_genres(10))
        candidates = [genre_id for genre_id in all_known_genre_ids if genre_id not in familiar]
        shuffled = deterministic_shuffle(candidates, self.rotation_seed())
        return shuffled[: max(limit, 0)]

    def smart_genre_mix(self, all_known_genre_ids: Sequence[int]) -> list[int]:
        """Blend favourites with one time-of-day pick and one discovery pick."""

        favorites = self.top_genres(SMART_MIX_FAVORITES)
        time_boost = self.time_based_genre_boost()

        if not favorites:
            mix = time_boost[:2]
            popular = deterministic_shuffle(list(POPULAR_DEFAULT_GENRES), self.rotation_seed())
            for genre_id in popular:
                if len(mix) >= SMART_MIX_SIZE:
                    break
                if genre_id not in mix:
                    mix.append(genre_id)
            return mix

        mix = list(favorites)
        for genre_id in time_boost:
            if genre_id not in mix:
                mix.append(genre_id)
                break
        for genre_id in self.discovery_genres(all_known_genre_ids, 2):
            if genre_id not in mix:
                mix.append(genre_id)
                break
        logger.debug("Smart genre mix %s (favourites %s)", mix, favorites)
        return mix

    def stats(self, favorite_limit: int = 5) -> HistoryStats:
        """Summarise the history for profile and history screens."""

        events = self._store.list_recent()
        tracked = [event.progress_percent for event in events if event.progress_percent is not None]
        total_seconds = sum(event.current_time or 0.0 for event in events)
        return HistoryStats(
            total_watched=len(events),
            movies_watched=sum(1 for event in events if event.media_type == "movie"),
            series_watched=sum(1 for event in events if event.media_type == "series"),
            total_minutes=round(total_seconds / 60),
            average_progress=round(sum(tracked) / len(tracked)) if tracked else 0,
            favorite_genres=self.top_genres(favorite_limit),
        )
