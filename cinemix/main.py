"""Entry point for the FastAPI-powered watch history service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .broadcast import HistoryBroadcast
from .config import settings
from .database import Database
from .errors import InvalidArgument
from .genres import ALL_GENRE_IDS, genre_name
from .history import WatchHistoryStore
from .identity import IdentityResolver
from .preferences import PreferenceEngine
from .recommendations import CatalogFetcher, RecommendationAssembler
from .services.tmdb import TMDBClient
from .storage import DatabaseStorage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class ProgressUpdate(BaseModel):
    """Body of a playback progress report."""

    model_config = ConfigDict(populate_by_name=True)

    id: Any
    media_type: Any = Field(validation_alias=AliasChoices("media_type", "mediaType", "type"))
    current_time: float = Field(validation_alias=AliasChoices("current_time", "currentTime"))
    duration: float
    metadata: dict[str, Any] | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    identity_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()
    storage = DatabaseStorage(database.session_factory)

    identity = IdentityResolver(settings, storage, identity_client)
    store = WatchHistoryStore(
        storage, identity, settings=settings, broadcast=HistoryBroadcast()
    )
    engine = PreferenceEngine(store, settings=settings)
    catalog_client: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(settings.catalog_fetch_timeout_seconds, connect=5.0),
            )
        )
        catalog_client = TMDBClient(settings, tmdb_http_client)
    else:
        logger.warning("TMDB_API_KEY is not configured; recommendations will be empty")

    app.state.database = database
    app.state.history_store = store
    app.state.preference_engine = engine
    app.state.recommender = RecommendationAssembler(engine, settings=settings)
    app.state.catalog_client = catalog_client
    await store.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await store.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Watch history and genre-aware recommendations backed by TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_history_store(app: FastAPI) -> WatchHistoryStore:
    store = getattr(app.state, "history_store", None)
    if not isinstance(store, WatchHistoryStore):
        raise RuntimeError("Watch history store not initialised")
    return store


def get_preference_engine(app: FastAPI) -> PreferenceEngine:
    engine = getattr(app.state, "preference_engine", None)
    if not isinstance(engine, PreferenceEngine):
        raise RuntimeError("Preference engine not initialised")
    return engine


def register_routes(fastapi_app: FastAPI) -> None:
    def _events_payload(events) -> list[dict[str, Any]]:
        return [event.model_dump(mode="json") for event in events]

    async def _json_body(request: Request) -> Any:
        try:
            return await request.json()
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        store = get_history_store(fastapi_app)
        return {"status": "ok", "persistent": store.persistent}

    @fastapi_app.get("/history")
    async def list_history(limit: int | None = None) -> list[dict[str, Any]]:
        store = get_history_store(fastapi_app)
        return _events_payload(store.list_recent(limit))

    @fastapi_app.get("/history/continue")
    async def continue_watching(limit: int = 10) -> list[dict[str, Any]]:
        store = get_history_store(fastapi_app)
        return _events_payload(store.list_in_progress(limit))

    @fastapi_app.get("/history/stats")
    async def history_stats() -> dict[str, Any]:
        engine = get_preference_engine(fastapi_app)
        return engine.stats().to_payload()

    @fastapi_app.get("/history/export")
    async def export_history() -> JSONResponse:
        store = get_history_store(fastapi_app)
        return JSONResponse(json.loads(store.export_data()))

    @fastapi_app.post("/history/import")
    async def import_history(request: Request) -> dict[str, bool]:
        store = get_history_store(fastapi_app)
        payload = await _json_body(request)
        if not store.import_data(json.dumps(payload)):
            raise HTTPException(status_code=400, detail="History payload could not be imported")
        return {"imported": True}

    @fastapi_app.post("/history")
    async def add_history_entry(request: Request) -> dict[str, Any]:
        store = get_history_store(fastapi_app)
        payload = await _json_body(request)
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            event = store.add_or_update(payload)
        except InvalidArgument as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return event.model_dump(mode="json")

    @fastapi_app.post("/history/progress")
    async def report_progress(request: Request) -> dict[str, Any]:
        store = get_history_store(fastapi_app)
        try:
            update = ProgressUpdate.model_validate(await _json_body(request))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=exc.errors()) from exc
        try:
            store.update_progress(
                update.id,
                update.media_type,
                update.current_time,
                update.duration,
                update.metadata,
            )
            event = store.get(update.id, update.media_type)
        except InvalidArgument as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"entry": event.model_dump(mode="json") if event else None}

    @fastapi_app.post("/history/{media_type}/{media_id}/complete")
    async def complete_entry(media_type: str, media_id: str) -> dict[str, Any]:
        store = get_history_store(fastapi_app)
        try:
            store.mark_completed(media_id, media_type)
            event = store.get(media_id, media_type)
        except InvalidArgument as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if event is None:
            raise HTTPException(status_code=404, detail="History entry not found")
        return event.model_dump(mode="json")

    @fastapi_app.delete("/history/{media_type}/{media_id}")
    async def remove_entry(media_type: str, media_id: str) -> dict[str, str]:
        store = get_history_store(fastapi_app)
        try:
            store.remove(media_id, media_type)
        except InvalidArgument as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"status": "removed"}

    @fastapi_app.delete("/history")
    async def clear_history() -> dict[str, str]:
        store = get_history_store(fastapi_app)
        store.clear()
        return {"status": "cleared"}

    @fastapi_app.get("/genres/preferences")
    async def genre_preferences(limit: int = 10) -> list[dict[str, Any]]:
        engine = get_preference_engine(fastapi_app)
        return [
            {"genreId": entry.genre_id, "name": genre_name(entry.genre_id), "score": entry.score}
            for entry in engine.genre_preference_scores()[:limit]
        ]

    @fastapi_app.get("/genres/mix")
    async def genre_mix() -> dict[str, Any]:
        engine = get_preference_engine(fastapi_app)
        return {
            "timeOfDay": engine.time_of_day_bucket(),
            "rotationSeed": engine.rotation_seed(),
            "genres": engine.smart_genre_mix(ALL_GENRE_IDS),
        }

    @fastapi_app.get("/recommendations")
    async def recommendations(limit: int | None = None) -> list[dict[str, Any]]:
        recommender = getattr(fastapi_app.state, "recommender", None)
        catalog_client: CatalogFetcher | None = getattr(
            fastapi_app.state, "catalog_client", None
        )
        if not isinstance(recommender, RecommendationAssembler) or catalog_client is None:
            return []
        items = await recommender.recommend(catalog_client, limit=limit)
        return [item.model_dump(mode="json") for item in items]


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "cinemix.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
