"""Catalog client for The Movie Database (TMDB) discover endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import CatalogFetchFailed
from ..models import CatalogItem, CatalogPage, MediaType

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"


class TMDBClient:
    """Fetch genre filtered catalog pages for movies and series."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def fetch_by_genre(
        self, genre_id: int, *, media_type: MediaType, page: int = 1
    ) -> CatalogPage:
        """Return one page of popular titles for ``genre_id``."""

        endpoint = "/discover/movie" if media_type == "movie" else "/discover/tv"
        params = {
            "with_genres": genre_id,
            "include_adult": "false",
            "language": self._settings.tmdb_language,
            "sort_by": "popularity.desc",
            "page": page,
            "api_key": self._settings.tmdb_api_key,
        }

        try:
            response = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            raise CatalogFetchFailed(genre_id, media_type, str(exc)) from exc
        if response.status_code >= 400:
            logger.warning(
                "TMDB discover for genre %s (%s) failed: %s",
                genre_id,
                media_type,
                response.text,
            )
            raise CatalogFetchFailed(
                genre_id, media_type, f"HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise CatalogFetchFailed(genre_id, media_type, "invalid JSON") from exc

        raw_results = data.get("results", []) if isinstance(data, dict) else None
        if not isinstance(raw_results, list):
            raise CatalogFetchFailed(genre_id, media_type, "unexpected response shape")

        results: list[CatalogItem] = []
        for candidate in raw_results:
            item = self._normalise(candidate)
            if item is not None:
                results.append(item)

        try:
            current_page = int(data.get("page") or page)
            total_pages = int(data.get("total_pages") or 1)
        except (TypeError, ValueError) as exc:
            raise CatalogFetchFailed(
                genre_id, media_type, "invalid pagination fields"
            ) from exc
        return CatalogPage(results=results, page=current_page, total_pages=total_pages)

    def _normalise(self, result: Any) -> CatalogItem | None:
        if not isinstance(result, dict) or result.get("id") is None:
            return None
        payload = {
            "id": result["id"],
            "title": result.get("title") or result.get("name") or "",
            "overview": result.get("overview"),
            "poster_path": self._build_image_url(result.get("poster_path"), POSTER_BASE_URL),
            "backdrop_path": self._build_image_url(
                result.get("backdrop_path"), BACKDROP_BASE_URL
            ),
            "vote_average": result.get("vote_average"),
            "genre_ids": result.get("genre_ids") or [],
            "release_date": result.get("release_date") or result.get("first_air_date"),
        }
        try:
            return CatalogItem.model_validate(payload)
        except ValidationError:
            logger.debug("Skipping malformed TMDB result %r", result.get("id"))
            return None

    @staticmethod
    def _build_image_url(path: str | None, base_url: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"
