"""HTTP surface tests using an app wired with in-memory collaborators."""

from __future__ import annotations

import asyncio

from fastapi import FastAPI
from fastapi.testclient import TestClient

from cinemix.clock import FrozenClock
from cinemix.config import Settings
from cinemix.history import WatchHistoryStore
from cinemix.main import register_routes
from cinemix.preferences import PreferenceEngine
from cinemix.recommendations import RecommendationAssembler
from cinemix.storage import MemoryStorage

NOW_MS = 1_700_000_000_000


def build_client() -> tuple[TestClient, WatchHistoryStore]:
    settings = Settings(_env_file=None, IDENTITY_LOOKUP_ENABLED=False)
    clock = FrozenClock(NOW_MS, hour=21)
    store = WatchHistoryStore(MemoryStorage(), settings=settings, clock=clock)
    asyncio.run(store.open())
    engine = PreferenceEngine(store, settings=settings, clock=clock)

    app = FastAPI()
    register_routes(app)
    app.state.history_store = store
    app.state.preference_engine = engine
    app.state.recommender = RecommendationAssembler(engine, settings=settings)
    app.state.catalog_client = None
    return TestClient(app), store


def test_healthcheck_reports_persistence() -> None:
    client, _ = build_client()

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "persistent": True}


def test_add_and_list_history() -> None:
    client, _ = build_client()

    created = client.post(
        "/history", json={"id": 550, "mediaType": "movie", "title": "Fight Club", "genreIds": [18]}
    )
    listed = client.get("/history")

    assert created.status_code == 200
    assert created.json()["watched_at"] == NOW_MS
    assert [entry["id"] for entry in listed.json()] == [550]


def test_invalid_identifiers_are_rejected() -> None:
    client, store = build_client()

    response = client.post("/history", json={"id": "abc", "mediaType": "movie"})
    removal = client.delete("/history/movie/abc")

    assert response.status_code == 400
    assert removal.status_code == 400
    assert store.list_recent() == []


def test_progress_reports_feed_continue_watching() -> None:
    client, _ = build_client()

    response = client.post(
        "/history/progress",
        json={"id": 550, "mediaType": "movie", "currentTime": 45, "duration": 90, "metadata": {"title": "Fight Club"}},
    )
    continuing = client.get("/history/continue")

    assert response.status_code == 200
    assert response.json()["entry"]["progress_percent"] == 50.0
    assert [entry["title"] for entry in continuing.json()] == ["Fight Club"]


def test_zero_duration_progress_is_ignored() -> None:
    client, _ = build_client()

    response = client.post(
        "/history/progress", json={"id": 1, "mediaType": "movie", "currentTime": 5, "duration": 0}
    )

    assert response.status_code == 200
    assert response.json() == {"entry": None}


def test_complete_and_delete_entries() -> None:
    client, store = build_client()
    store.update_progress(7, "series", 100, 400)

    completed = client.post("/history/series/7/complete")
    missing = client.post("/history/movie/8/complete")
    first = client.delete("/history/series/7")
    second = client.delete("/history/series/7")

    assert completed.json()["progress_percent"] == 100.0
    assert missing.status_code == 404
    assert first.status_code == second.status_code == 200
    assert store.list_recent() == []


def test_export_and_import_endpoints() -> None:
    client, store = build_client()
    store.add_or_update({"id": 3, "mediaType": "movie"})

    exported = client.get("/history/export").json()
    client.delete("/history")
    assert store.list_recent() == []

    assert client.post("/history/import", json=exported).json() == {"imported": True}
    assert [event.id for event in store.list_recent()] == [3]
    assert client.post("/history/import", json={"history": 5}).status_code == 400


def test_genre_endpoints() -> None:
    client, store = build_client()
    store.add_or_update({"id": 1, "mediaType": "movie", "genreIds": [35], "voteAverage": 8})

    preferences = client.get("/genres/preferences").json()
    mix = client.get("/genres/mix").json()
    stats = client.get("/history/stats").json()

    assert preferences[0]["genreId"] == 35
    assert preferences[0]["name"] == "Comedy"
    assert mix["timeOfDay"] == "evening"
    # One favourite, then the first evening genre, then one discovery pick.
    assert mix["genres"][:2] == [35, 18]
    assert len(mix["genres"]) == 3
    assert stats["totalWatched"] == 1


def test_recommendations_are_empty_without_a_catalog() -> None:
    client, _ = build_client()

    response = client.get("/recommendations")

    assert response.status_code == 200
    assert response.json() == []


def test_malformed_genre_lists_are_rejected() -> None:
    client, store = build_client()

    response = client.post("/history", json={"id": 550, "mediaType": "movie", "genreIds": "18"})
    progress = client.post(
        "/history/progress",
        json={"id": 550, "mediaType": "movie", "currentTime": 10, "duration": 100, "metadata": {"genreIds": [None]}},
    )

    assert response.status_code == 400
    assert progress.status_code == 400
    assert store.list_recent() == []
