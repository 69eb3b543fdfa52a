"""Exception types raised by the watch history and recommendation layers."""

from __future__ import annotations


class CinemixError(Exception):
    """Base class for all Cinemix specific failures."""


class InvalidArgument(CinemixError, ValueError):
    """A malformed identifier or media type was passed to the history store."""


class StorageUnavailable(CinemixError):
    """Durable storage could not be read or written."""


class CatalogFetchFailed(CinemixError):
    """A per-genre catalog request failed or returned an error status."""

    def __init__(self, genre_id: int, media_type: str, reason: str):
        super().__init__(f"Catalog fetch for genre {genre_id} ({media_type}) failed: {reason}")
        self.genre_id = genre_id
        self.media_type = media_type
        self.reason = reason


class IdentityResolutionFailed(CinemixError):
    """The per-user scoping identifier could not be resolved remotely."""
