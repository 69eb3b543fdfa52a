"""Static genre tables used by the preference engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping


TimeOfDay = Literal["night", "morning", "afternoon", "evening"]


@dataclass(frozen=True)
class GenreDefinition:
    """Describes a TMDB genre known to the recommendation layer."""

    id: int
    name: str


GENRES: tuple[GenreDefinition, ...] = (
    GenreDefinition(id=28, name="Action"),
    GenreDefinition(id=12, name="Adventure"),
    GenreDefinition(id=16, name="Animation"),
    GenreDefinition(id=35, name="Comedy"),
    GenreDefinition(id=80, name="Crime"),
    GenreDefinition(id=99, name="Documentary"),
    GenreDefinition(id=18, name="Drama"),
    GenreDefinition(id=10751, name="Family"),
    GenreDefinition(id=14, name="Fantasy"),
    GenreDefinition(id=36, name="History"),
    GenreDefinition(id=27, name="Horror"),
    GenreDefinition(id=10402, name="Music"),
    GenreDefinition(id=9648, name="Mystery"),
    GenreDefinition(id=10749, name="Romance"),
    GenreDefinition(id=878, name="Science Fiction"),
    GenreDefinition(id=10770, name="TV Movie"),
    GenreDefinition(id=53, name="Thriller"),
    GenreDefinition(id=10752, name="War"),
    GenreDefinition(id=37, name="Western"),
)


ALL_GENRE_IDS: tuple[int, ...] = tuple(genre.id for genre in GENRES)

GENRE_NAMES: Mapping[int, str] = {genre.id: genre.name for genre in GENRES}

# Action, Adventure, Comedy, Drama, Science Fiction.
POPULAR_DEFAULT_GENRES: tuple[int, ...] = (28, 12, 35, 18, 878)

TIME_OF_DAY_GENRES: Mapping[TimeOfDay, tuple[int, ...]] = {
    # Horror, Thriller, Mystery
    "night": (27, 53, 9648),
    # Family, Animation, Comedy
    "morning": (10751, 16, 35),
    # Action, Adventure, Science Fiction
    "afternoon": (28, 12, 878),
    # Drama, Romance, Crime
    "evening": (18, 10749, 80),
}


def genre_name(genre_id: int) -> str:
    """Return a display name for a genre identifier."""

    return GENRE_NAMES.get(genre_id, f"Genre {genre_id}")
