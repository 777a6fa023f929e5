"""Now-playing track model shared by the relay and the client.

The relay maps Spotify's currently-playing payload into a Track; the client
parses the relay's JSON back into one. Missing nested fields degrade to empty
values instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Track:
    name: str
    artist: str
    album: str
    album_art: str | None = None
    is_playing: bool = False

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the relay's camelCase field names."""
        return {
            "name": self.name,
            "artist": self.artist,
            "album": self.album,
            "albumArt": self.album_art,
            "isPlaying": self.is_playing,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any] | None) -> Track | None:
        if not data:
            return None
        return cls(
            name=data.get("name") or "",
            artist=data.get("artist") or "",
            album=data.get("album") or "",
            album_art=data.get("albumArt") or None,
            is_playing=bool(data.get("isPlaying")),
        )


def _first_url(images: Any) -> str | None:
    if not isinstance(images, list) or not images:
        return None
    first = images[0]
    if isinstance(first, dict):
        return first.get("url")
    return None


def track_from_currently_playing(payload: dict[str, Any] | None) -> Track | None:
    """Map a /me/player/currently-playing payload to a Track.

    Returns None when nothing is playing (no payload or no item).
    """
    if not payload:
        return None
    item = payload.get("item")
    if not isinstance(item, dict):
        return None

    album = item.get("album") or {}
    artists = item.get("artists") or []
    artist_name = ""
    if artists and isinstance(artists[0], dict):
        artist_name = artists[0].get("name") or ""

    # Podcast episodes carry a show instead of an album
    show = item.get("show") or {}
    if not album and show:
        return Track(
            name=item.get("name") or "",
            artist=artist_name or show.get("publisher") or "",
            album=show.get("name") or "",
            album_art=_first_url(item.get("images")) or _first_url(show.get("images")),
            is_playing=bool(payload.get("is_playing")),
        )

    return Track(
        name=item.get("name") or "",
        artist=artist_name,
        album=album.get("name") or "",
        album_art=_first_url(album.get("images")),
        is_playing=bool(payload.get("is_playing")),
    )
