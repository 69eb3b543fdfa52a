"""Genre scoring and genre mix selection."""

from __future__ import annotations

from typing import Any

import pytest

from cinemix.clock import FrozenClock
from cinemix.config import Settings
from cinemix.genres import ALL_GENRE_IDS, POPULAR_DEFAULT_GENRES
from cinemix.history import WatchHistoryStore
from cinemix.preferences import PreferenceEngine
from cinemix.recommendations import deterministic_shuffle
from cinemix.storage import MemoryStorage

NOW_MS = 1_440_000_000_000
DAY_MS = 24 * 60 * 60 * 1000
WINDOW_MS = 4 * 60 * 60 * 1000


def build_engine(hour: int = 14) -> tuple[PreferenceEngine, WatchHistoryStore, FrozenClock]:
    settings = Settings(_env_file=None, IDENTITY_LOOKUP_ENABLED=False)
    clock = FrozenClock(NOW_MS, hour=hour)
    store = WatchHistoryStore(MemoryStorage(), settings=settings, clock=clock)
    return PreferenceEngine(store, settings=settings, clock=clock), store, clock


def watch(store: WatchHistoryStore, media_id: int, genres: list[int], rating: float, **extra: Any) -> None:
    store.add_or_update(
        {"id": media_id, "mediaType": "movie", "genreIds": genres, "voteAverage": rating, **extra}
    )


def test_single_event_ties_break_by_first_seen_genre() -> None:
    engine, store, _ = build_engine()
    watch(store, 550, [18, 53], 8.4, watchedAt=NOW_MS)

    scores = engine.genre_preference_scores()

    assert [entry.genre_id for entry in scores] == [18, 53]
    assert scores[0].score == pytest.approx(0.84)
    assert scores[1].score == pytest.approx(0.84)
    assert engine.top_genres(1) == [18]


def test_scores_combine_position_recency_and_rating() -> None:
    engine, store, _ = build_engine()
    watch(store, 3, [18, 27], 6.0, watchedAt=NOW_MS - 8 * DAY_MS)
    watch(store, 1, [35], 10.0, watchedAt=NOW_MS - DAY_MS)
    watch(store, 2, [18], 5.0, watchedAt=NOW_MS)

    scores = {entry.genre_id: entry.score for entry in engine.genre_preference_scores()}

    # Position 0 is event 2, 1 is event 1, 2 is event 3 (old, half weight).
    assert scores[27] == pytest.approx(0.98 * 0.5 * 0.6)
    assert scores[18] == pytest.approx(1.0 * 1.0 * 0.5 + 0.98 * 0.5 * 0.6)
    assert scores[35] == pytest.approx(0.99 * 1.0 * 1.0)
    assert engine.top_genres(3) == [35, 18, 27]


def test_scoring_is_repeatable_for_a_fixed_snapshot() -> None:
    engine, store, _ = build_engine()
    for media_id, genres in enumerate([[28, 12], [35], [12, 878], [28]], start=1):
        watch(store, media_id, genres, 7.0)

    assert engine.genre_preference_scores() == engine.genre_preference_scores()


def test_empty_history_has_no_favourites() -> None:
    engine, _, _ = build_engine()

    assert engine.genre_preference_scores() == []
    assert engine.top_genres() == []


@pytest.mark.parametrize(
    ("hour", "bucket", "genres"),
    [
        (0, "night", [27, 53, 9648]),
        (5, "night", [27, 53, 9648]),
        (6, "morning", [10751, 16, 35]),
        (12, "afternoon", [28, 12, 878]),
        (18, "evening", [18, 10749, 80]),
        (23, "evening", [18, 10749, 80]),
    ],
)
def test_time_of_day_buckets(hour: int, bucket: str, genres: list[int]) -> None:
    engine, _, _ = build_engine(hour=hour)

    assert engine.time_of_day_bucket() == bucket
    assert engine.time_based_genre_boost() == genres


def test_rotation_seed_is_stable_within_a_window() -> None:
    engine, _, _ = build_engine()
    start = 100 * WINDOW_MS

    assert engine.rotation_seed(start) == 100
    assert engine.rotation_seed(start + WINDOW_MS - 1) == 100
    assert engine.rotation_seed(start + WINDOW_MS) == 101
    assert engine.rotation_seed() == NOW_MS // WINDOW_MS


def test_discovery_genres_skip_favourites() -> None:
    engine, store, _ = build_engine()
    watch(store, 1, [53], 9.0)
    known = [28, 12, 35, 878, 53]

    picks = engine.discovery_genres(known, 2)

    expected = deterministic_shuffle([28, 12, 35, 878], engine.rotation_seed())[:2]
    assert picks == expected
    assert 53 not in picks
    assert engine.discovery_genres(known, 2) == picks


def test_smart_mix_without_history_uses_time_and_popular_defaults() -> None:
    engine, _, _ = build_engine(hour=14)

    mix = engine.smart_genre_mix([28, 12, 35, 878, 53])

    assert mix[:2] == [28, 12]
    assert len(mix) == 5
    assert len(set(mix)) == len(mix)
    assert set(mix) <= set(POPULAR_DEFAULT_GENRES) | {28, 12}
    assert engine.smart_genre_mix([28, 12, 35, 878, 53]) == mix


def test_smart_mix_without_history_at_night() -> None:
    engine, _, _ = build_engine(hour=2)

    mix = engine.smart_genre_mix(ALL_GENRE_IDS)

    assert mix[:2] == [27, 53]
    assert len(mix) == 5
    assert len(set(mix)) == 5
    assert set(mix[2:]) <= set(POPULAR_DEFAULT_GENRES)


def test_smart_mix_blends_favourites_time_and_discovery() -> None:
    engine, store, _ = build_engine(hour=14)
    watch(store, 1, [35], 6.0)
    watch(store, 2, [18, 53], 8.0)

    favourites = engine.top_genres(3)
    mix = engine.smart_genre_mix(ALL_GENRE_IDS)

    assert mix[:3] == favourites == [18, 53, 35]
    assert mix[3] == 28
    assert len(mix) == 5
    assert mix[4] in ALL_GENRE_IDS
    assert mix[4] not in {18, 53, 35, 28}


def test_stats_summarise_history() -> None:
    engine, store, _ = build_engine()
    watch(store, 1, [28], 7.0)
    store.update_progress(2, "series", 1200, 2400, {"genreIds": [18], "voteAverage": 9.0})
    store.update_progress(3, "movie", 3600, 3600)

    stats = engine.stats()

    assert stats.total_watched == 3
    assert stats.movies_watched == 2
    assert stats.series_watched == 1
    assert stats.total_minutes == 80
    assert stats.average_progress == 75
    assert stats.favorite_genres == [18, 28]
    assert stats.to_payload()["totalWatched"] == 3
