"""Pydantic models describing watch history and catalog payloads."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import clamp, coerce_media_id, coerce_media_type

MediaType = Literal["movie", "series"]


def _unique_genres(value: object) -> list[int]:
    if value is None:
        return []
    # Validators raise ValueError so pydantic reports a ValidationError.
    if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
        raise ValueError("genre ids must be a list of integers")
    seen: list[int] = []
    for entry in value:  # type: ignore[union-attr]
        if isinstance(entry, bool):
            raise ValueError(f"invalid genre id {entry!r}")
        try:
            genre_id = int(entry)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid genre id {entry!r}") from exc
        if genre_id not in seen:
            seen.append(genre_id)
    return seen


def _bounded_float(value: object, lower: float, upper: float) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"expected a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"expected a finite number, got {value!r}")
    return clamp(number, lower, upper)


class _MediaFields(BaseModel):
    """Fields shared by history entries and history inputs."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(validation_alias=AliasChoices("id", "videoId"))
    media_type: MediaType = Field(
        validation_alias=AliasChoices("media_type", "mediaType", "type"),
    )
    title: str = Field(
        default="", validation_alias=AliasChoices("title", "name")
    )
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    backdrop_path: str | None = Field(
        default=None, validation_alias=AliasChoices("backdrop_path", "backdropPath")
    )
    vote_average: float = Field(
        default=0.0, validation_alias=AliasChoices("vote_average", "voteAverage")
    )
    genre_ids: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("genre_ids", "genreIds"),
    )
    progress_percent: float | None = Field(
        default=None,
        validation_alias=AliasChoices("progress_percent", "progressPercent", "progress"),
    )
    current_time: float | None = Field(
        default=None, validation_alias=AliasChoices("current_time", "currentTime")
    )
    duration: float | None = None
    season: int | None = None
    episode: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> int:
        return coerce_media_id(value)

    @field_validator("media_type", mode="before")
    @classmethod
    def _coerce_media_type(cls, value: object) -> str:
        return coerce_media_type(value)

    @field_validator("title", mode="before")
    @classmethod
    def _blank_title(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("vote_average", mode="before")
    @classmethod
    def _clamp_rating(cls, value: object) -> float:
        if value is None:
            return 0.0
        return _bounded_float(value, 0.0, 10.0)

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _dedupe_genres(cls, value: object) -> list[int]:
        return _unique_genres(value)

    @field_validator("progress_percent", mode="before")
    @classmethod
    def _clamp_progress(cls, value: object) -> float | None:
        if value is None:
            return None
        return _bounded_float(value, 0.0, 100.0)

    @model_validator(mode="after")
    def _drop_episode_fields_for_movies(self) -> Any:
        if self.media_type == "movie":
            self.season = None
            self.episode = None
        return self

    @property
    def key(self) -> tuple[int, str]:
        """Return the identity used for uniqueness within the history."""

        return (self.id, self.media_type)


class WatchEventInput(_MediaFields):
    """Caller supplied history entry; only ``id`` and ``media_type`` are required."""

    watched_at: int | None = Field(
        default=None, validation_alias=AliasChoices("watched_at", "watchedAt")
    )


class WatchEvent(_MediaFields):
    """A single recorded interaction with a movie or series."""

    watched_at: int = Field(
        validation_alias=AliasChoices("watched_at", "watchedAt", "lastUpdated")
    )

    @classmethod
    def from_input(cls, event: WatchEventInput, *, watched_at: int) -> "WatchEvent":
        data = event.model_dump(exclude={"watched_at"})
        data["watched_at"] = event.watched_at if event.watched_at is not None else watched_at
        return cls.model_validate(data)


class CatalogItem(BaseModel):
    """Catalog entry returned by the external catalog API."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    media_type: MediaType | None = Field(
        default=None,
        validation_alias=AliasChoices("media_type", "mediaType"),
    )
    title: str = Field(
        default="", validation_alias=AliasChoices("title", "name")
    )
    overview: str | None = None
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    backdrop_path: str | None = Field(
        default=None, validation_alias=AliasChoices("backdrop_path", "backdropPath")
    )
    vote_average: float = Field(
        default=0.0, validation_alias=AliasChoices("vote_average", "voteAverage")
    )
    genre_ids: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("genre_ids", "genreIds"),
    )
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "release_date", "releaseDate", "first_air_date", "firstAirDate"
        ),
    )

    @field_validator("title", mode="before")
    @classmethod
    def _blank_title(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("release_date", mode="before")
    @classmethod
    def _blank_date(cls, value: object) -> object:
        return None if value == "" else value

    @field_validator("vote_average", mode="before")
    @classmethod
    def _none_rating(cls, value: object) -> object:
        return 0.0 if value is None else value

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _dedupe_genres(cls, value: object) -> list[int]:
        return _unique_genres(value)

    @property
    def key(self) -> tuple[int, str | None]:
        return (self.id, self.media_type)

    def tagged(self, media_type: MediaType) -> "CatalogItem":
        """Return a copy labelled with the content type it was fetched as."""

        return self.model_copy(update={"media_type": media_type})


class CatalogPage(BaseModel):
    """A page of catalog results for a single genre query."""

    results: list[CatalogItem] = Field(default_factory=list)
    page: int = 1
    total_pages: int = Field(
        default=1, validation_alias=AliasChoices("total_pages", "totalPages")
    )


@dataclass(slots=True)
class GenreScore:
    """Derived affinity for a genre; never persisted."""

    genre_id: int
    score: float


@dataclass(slots=True)
class HistoryStats:
    """Aggregate viewing statistics for the history screen."""

    total_watched: int
    movies_watched: int
    series_watched: int
    total_minutes: int
    average_progress: int
    favorite_genres: list[int]

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalWatched": self.total_watched,
            "moviesWatched": self.movies_watched,
            "seriesWatched": self.series_watched,
            "totalMinutes": self.total_minutes,
            "averageProgress": self.average_progress,
            "favoriteGenres": list(self.favorite_genres),
        }
