import pytest
from pydantic import ValidationError

from cinemix.models import CatalogItem, WatchEvent, WatchEventInput


def test_watch_event_accepts_camel_case_payloads():
    event = WatchEvent.model_validate(
        {
            "id": 550,
            "mediaType": "movie",
            "title": "Fight Club",
            "posterPath": "https://image.tmdb.org/t/p/w500/poster.jpg",
            "voteAverage": 8.4,
            "genreIds": [18, 53, 18],
            "watchedAt": 1_000,
        }
    )

    assert event.key == (550, "movie")
    assert event.genre_ids == [18, 53]
    assert event.poster_path.endswith("poster.jpg")
    assert event.progress_percent is None


def test_progress_and_rating_are_clamped():
    event = WatchEvent.model_validate(
        {"id": 1, "type": "series", "watched_at": 1, "progress": 140, "vote_average": 12}
    )

    assert event.progress_percent == 100.0
    assert event.vote_average == 10.0


def test_movies_never_carry_episode_fields():
    event = WatchEvent.model_validate(
        {"id": 1, "media_type": "movie", "watched_at": 1, "season": 2, "episode": 3}
    )
    series = WatchEvent.model_validate(
        {"id": 1, "media_type": "series", "watched_at": 1, "season": 2, "episode": 3}
    )

    assert (event.season, event.episode) == (None, None)
    assert (series.season, series.episode) == (2, 3)


def test_input_requires_id_and_media_type():
    with pytest.raises(ValidationError):
        WatchEventInput.model_validate({"id": 1})
    with pytest.raises(ValidationError):
        WatchEventInput.model_validate({"id": "not-a-number", "mediaType": "movie"})


def test_from_input_keeps_supplied_timestamp():
    supplied = WatchEventInput(id=3, media_type="movie", watched_at=42)
    defaulted = WatchEventInput(id=3, media_type="movie")

    assert WatchEvent.from_input(supplied, watched_at=99).watched_at == 42
    assert WatchEvent.from_input(defaulted, watched_at=99).watched_at == 99


def test_catalog_item_reads_series_shape():
    item = CatalogItem.model_validate(
        {"id": 1399, "name": "Game of Thrones", "first_air_date": "2011-04-17", "vote_average": None}
    )

    assert item.title == "Game of Thrones"
    assert item.release_date == "2011-04-17"
    assert item.vote_average == 0.0
    assert item.tagged("series").key == (1399, "series")
    assert item.media_type is None


@pytest.mark.parametrize(
    "fields",
    [
        {"voteAverage": [1]},
        {"voteAverage": float("nan")},
        {"progress": "halfway"},
        {"genreIds": [None]},
        {"genreIds": "18"},
        {"genreIds": [True]},
    ],
)
def test_malformed_fields_raise_validation_errors(fields):
    with pytest.raises(ValidationError):
        WatchEvent.model_validate({"id": 1, "mediaType": "movie", "watchedAt": 1, **fields})
