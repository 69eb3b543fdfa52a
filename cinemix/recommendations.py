"""Assembly of shuffled, deduplicated and genre-diversified recommendations."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Iterable, Protocol, Sequence, TypeVar

import httpx

from .config import Settings
from .errors import CatalogFetchFailed
from .genres import ALL_GENRE_IDS
from .models import CatalogItem, CatalogPage, MediaType

if TYPE_CHECKING:
    from .preferences import PreferenceEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280

DIVERSITY_WINDOW = 3
MAX_GENRE_RUN = 2
MEDIA_TYPES: tuple[MediaType, ...] = ("movie", "series")


class CatalogFetcher(Protocol):
    """Source of catalog pages filtered by genre."""

    async def fetch_by_genre(
        self, genre_id: int, *, media_type: MediaType, page: int = 1
    ) -> CatalogPage: ...


def deterministic_shuffle(items: Sequence[T], seed: int) -> list[T]:
    """Return a Fisher-Yates permutation of ``items`` driven by a seeded LCG.

    The same ``(items, seed)`` always yields the same order.
    """

    result = list(items)
    state = seed

    def _random() -> float:
        nonlocal state
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return state / LCG_MODULUS

    for index in range(len(result) - 1, 0, -1):
        swap = int(_random() * (index + 1))
        result[index], result[swap] = result[swap], result[index]
    return result


def _item_key(item: Any) -> tuple[Any, Any]:
    if isinstance(item, dict):
        return item.get("id"), item.get("media_type") or item.get("mediaType")
    return item.id, item.media_type


def _item_genres(item: Any) -> list[int]:
    if isinstance(item, dict):
        genres = item.get("genre_ids") or item.get("genreIds") or []
    else:
        genres = getattr(item, "genre_ids", None) or []
    return list(genres)


def deduplicate(items: Iterable[T]) -> list[T]:
    """Keep the first occurrence of every ``(id, media_type)`` pair."""

    seen: set[tuple[Any, Any]] = set()
    unique: list[T] = []
    for item in items:
        key = _item_key(item)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def _trailing_run(picked: list[set[int]], genre_id: int) -> int:
    run = 0
    for genres in reversed(picked):
        if genre_id not in genres:
            break
        run += 1
    return run


def _can_spread(genre_id: int, run: int, pool: list[set[int]]) -> bool:
    """Whether ``pool`` can follow a run of ``run`` without exceeding the cap.

    The items carrying the genre must fit into the gaps formed by the items
    that do not.
    """

    if run > MAX_GENRE_RUN:
        return False
    carrying = sum(1 for genres in pool if genre_id in genres)
    others = len(pool) - carrying
    return carrying <= (MAX_GENRE_RUN - run) + MAX_GENRE_RUN * others


def _run_violations(
    picked: list[set[int]],
    candidate: set[int],
    remaining: list[set[int]],
    spreadable: set[int],
) -> int:
    """Count spreadable genres that picking ``candidate`` would make unavoidable runs of."""

    after = picked + [candidate]
    return sum(
        1
        for genre_id in spreadable
        if not _can_spread(genre_id, _trailing_run(after, genre_id), remaining)
    )


def diversify(items: Sequence[T]) -> list[T]:
    """Reorder ``items`` so neighbouring picks share as few genres as possible.

    Each step takes the candidate with the largest share of genres unused by
    the last three picks, earliest first on ties. Only candidates that keep
    the fewest genres from running three items in a row are considered;
    genres that cannot be spread out at all (one carried by every item, say)
    are left out of that check.
    """

    if len(items) <= 2:
        return list(items)

    remaining = list(items)
    remaining_genres = [set(_item_genres(item)) for item in items]
    picked: list[set[int]] = []
    result: list[T] = []
    window: deque[set[int]] = deque(maxlen=DIVERSITY_WINDOW)

    while remaining:
        recent = set().union(*window) if window else set()
        spreadable = {
            genre_id
            for genre_id in set().union(*remaining_genres)
            if _can_spread(genre_id, _trailing_run(picked, genre_id), remaining_genres)
        }
        violations = [
            _run_violations(
                picked,
                genres,
                remaining_genres[:index] + remaining_genres[index + 1 :],
                spreadable,
            )
            for index, genres in enumerate(remaining_genres)
        ]
        fewest = min(violations)
        candidates = [index for index, count in enumerate(violations) if count == fewest]

        best_index = candidates[0]
        best_score = -1.0
        for index in candidates:
            genres = remaining_genres[index]
            # Genre-less items add nothing new to the mix.
            score = (
                sum(1 for genre_id in genres if genre_id not in recent) / len(genres)
                if genres
                else 0.0
            )
            if score > best_score:
                best_score = score
                best_index = index

        result.append(remaining.pop(best_index))
        chosen = remaining_genres.pop(best_index)
        picked.append(chosen)
        window.append(chosen)
    return result


class RecommendationAssembler:
    """Turn a genre mix into a display-ready recommendation list."""

    def __init__(self, engine: "PreferenceEngine", *, settings: Settings):
        self._engine = engine
        self._settings = settings

    async def build_recommendations(
        self,
        genre_mix: Sequence[int],
        fetcher: CatalogFetcher,
        *,
        limit: int | None = None,
        now_ms: int | None = None,
    ) -> list[CatalogItem]:
        """Fetch, merge and order catalog items for the first genres of the mix.

        Failed or slow genre requests are dropped from the pool; the call
        never raises for catalog failures.
        """

        genres = list(dict.fromkeys(genre_mix))[: self._settings.recommendation_genre_limit]
        if not genres:
            return []

        per_genre = await asyncio.gather(
            *(self._collect_genre(genre_id, fetcher) for genre_id in genres)
        )
        pool = [item for batch in per_genre for item in batch]

        unique = deduplicate(pool)
        shuffled = deterministic_shuffle(unique, self._engine.rotation_seed(now_ms))
        diversified = diversify(shuffled)
        display_limit = self._settings.recommendation_limit if limit is None else limit
        logger.info(
            "Assembled %d recommendations from %d candidates across genres %s",
            min(len(diversified), display_limit),
            len(pool),
            genres,
        )
        return diversified[:display_limit]

    async def recommend(
        self,
        fetcher: CatalogFetcher,
        all_known_genre_ids: Sequence[int] = ALL_GENRE_IDS,
        *,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        """Build recommendations from the current smart genre mix."""

        mix = self._engine.smart_genre_mix(all_known_genre_ids)
        return await self.build_recommendations(mix, fetcher, limit=limit)

    async def _collect_genre(
        self, genre_id: int, fetcher: CatalogFetcher
    ) -> list[CatalogItem]:
        pages = await asyncio.gather(
            *(self._fetch(genre_id, media_type, fetcher) for media_type in MEDIA_TYPES)
        )
        collected: list[CatalogItem] = []
        for media_type, page in zip(MEDIA_TYPES, pages):
            if page is None:
                continue
            for item in page.results[: self._settings.items_per_genre]:
                collected.append(item.tagged(media_type))
        return collected

    async def _fetch(
        self, genre_id: int, media_type: MediaType, fetcher: CatalogFetcher
    ) -> CatalogPage | None:
        try:
            return await asyncio.wait_for(
                fetcher.fetch_by_genre(genre_id, media_type=media_type, page=1),
                timeout=self._settings.catalog_fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Catalog fetch for genre %s (%s) timed out", genre_id, media_type
            )
        except (CatalogFetchFailed, httpx.HTTPError) as exc:
            logger.warning(
                "Catalog fetch for genre %s (%s) failed: %s", genre_id, media_type, exc
            )
        except Exception:
            logger.exception(
                "Unexpected error fetching genre %s (%s)", genre_id, media_type
            )
        return None
