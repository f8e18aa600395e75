from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


def _first_image_url(images: list[dict] | None) -> str | None:
    for image in images or []:
        if image and image.get("url"):
            return image["url"]
    return None


@dataclass(slots=True)
class Track:
    id: str
    name: str
    artists: list[str]
    album_image_url: str | None = None
    external_url: str | None = None
    popularity: int | None = None
    release_date: str | None = None

    @classmethod
    def from_api(cls, payload: dict) -> "Track":
        album = payload.get("album") or {}
        return cls(
            id=payload.get("id") or "",
            name=payload.get("name") or "",
            artists=[a.get("name", "") for a in payload.get("artists") or []],
            album_image_url=_first_image_url(album.get("images")),
            external_url=(payload.get("external_urls") or {}).get("spotify"),
            popularity=None if payload.get("popularity") is None else int(payload["popularity"]),
            release_date=album.get("release_date"),
        )


@dataclass(slots=True)
class AudioFeatures:
    danceability: float
    energy: float
    valence: float
    acousticness: float
    tempo: float
    instrumentalness: float
    # Set on substituted values, never on features read from the API.
    estimated: bool = field(default=False, compare=False)

    @classmethod
    def from_api(cls, payload: dict) -> "AudioFeatures":
        return cls(
            danceability=float(payload.get("danceability") or 0.0),
            energy=float(payload.get("energy") or 0.0),
            valence=float(payload.get("valence") or 0.0),
            acousticness=float(payload.get("acousticness") or 0.0),
            tempo=float(payload.get("tempo") or 0.0),
            instrumentalness=float(payload.get("instrumentalness") or 0.0),
        )


# Substituted when the audio-features endpoint is unavailable.
NEUTRAL_FEATURES = AudioFeatures(
    danceability=0.5,
    energy=0.5,
    valence=0.5,
    acousticness=0.5,
    tempo=120.0,
    instrumentalness=0.5,
    estimated=True,
)


@dataclass(slots=True)
class Playlist:
    id: str
    name: str
    owner: str
    track_count: int = 0
    image_url: str | None = None

    @classmethod
    def from_api(cls, payload: dict) -> "Playlist":
        owner = payload.get("owner") or {}
        return cls(
            id=payload.get("id") or "",
            name=payload.get("name") or "",
            owner=owner.get("display_name") or owner.get("id") or "",
            track_count=int((payload.get("tracks") or {}).get("total") or 0),
            image_url=_first_image_url(payload.get("images")),
        )


@dataclass(slots=True)
class Token:
    access_token: str
    refresh_token: str | None
    expires_at: float
    error: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Token":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=float(data.get("expires_at", 0)),
            error=data.get("error"),
        )


@dataclass(slots=True)
class UserSession:
    token: Token
    user: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token.to_dict(), "user": dict(self.user)}

    @classmethod
    def from_dict(cls, data: dict) -> "UserSession":
        return cls(token=Token.from_dict(data["token"]), user=dict(data.get("user") or {}))
