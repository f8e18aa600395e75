from __future__ import annotations

import asyncio
import functools
import logging
import warnings
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import requests
import spotipy

from music_stats_dashboard.config import Settings
from music_stats_dashboard.models import NEUTRAL_FEATURES, AudioFeatures, Playlist
from music_stats_dashboard.recommendations import (
    CascadeResult,
    RecommendationContext,
    recommend,
    recommend_for_genres,
)
from music_stats_dashboard.request_queue import RequestQueue, default_queue
from music_stats_dashboard.retry import retryable_call, status_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIME_RANGES = ("short_term", "medium_term", "long_term")
DEFAULT_GENRES = ["pop", "rock", "indie"]

# The audio-features endpoint accepts at most 100 ids per call.
AUDIO_FEATURES_BATCH_LIMIT = 100
# Pause between audio-feature chunks, in seconds.
CHUNK_DELAY = 0.3

_SCOPE_PROBES = (
    ("user-top-read", "current_user_top_tracks"),
    ("playlist-read-private", "current_user_playlists"),
    ("user-read-recently-played", "current_user_recently_played"),
)


def chunked(items: list[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("size must be at least 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _neutral_features(count: int) -> list[AudioFeatures]:
    return [replace(NEUTRAL_FEATURES) for _ in range(count)]


class SpotifyService:
    def __init__(
        self,
        access_token: str,
        queue: RequestQueue | None = None,
        settings: Settings | None = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not access_token:
            raise ValueError("No access token provided")
        self.settings = settings or Settings.from_env()
        self.queue = queue or default_queue(self.settings.max_concurrent_requests)
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.sleep = sleep
        # A bare session: spotipy's own retry adapter would swallow Retry-After
        # headers, and retries are handled by retryable_call.
        self.client = spotipy.Spotify(
            auth=access_token,
            requests_session=requests.Session(),
            requests_timeout=self.settings.request_timeout,
        )

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        bound = functools.partial(func, *args, **kwargs)
        return await self.queue.submit(
            lambda: retryable_call(
                lambda: asyncio.to_thread(bound),
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
                sleep=self.sleep,
            )
        )

    async def _call_once(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Queued call with no retries, for callers that have their own fallbacks."""
        bound = functools.partial(func, *args, **kwargs)
        return await self.queue.submit(lambda: asyncio.to_thread(bound))

    async def current_user(self) -> dict:
        return await self._call(self.client.current_user)

    async def top_tracks(self, time_range: str = "medium_term", limit: int = 50) -> list[dict]:
        if time_range not in TIME_RANGES:
            raise ValueError(f"Invalid time range {time_range!r}; expected one of {', '.join(TIME_RANGES)}")
        page = await self._call(self.client.current_user_top_tracks, limit=limit, offset=0, time_range=time_range)
        items = page.get("items", [])
        logger.info("Found %d top tracks for %s", len(items), time_range)
        return items

    async def playlists(self, limit: int = 50) -> list[Playlist]:
        page = await self._call(self.client.current_user_playlists, limit=limit)
        return [Playlist.from_api(item) for item in page.get("items", []) if item]

    async def playlist_tracks(self, playlist_id: str, limit: int = 50) -> list[dict]:
        page = await self._call(self.client.playlist_items, playlist_id, limit=limit)
        return [item["track"] for item in page.get("items", []) if item and item.get("track")]

    async def audio_features(self, track_ids: Iterable[str]) -> list[AudioFeatures | None]:
        """Audio features per id, degrading to neutral values when unavailable.

        Entries the API reports as null stay ``None``. A chunk failing with
        anything other than 403 is logged and skipped.
        """

        ids = [tid for tid in track_ids if tid]
        if not ids:
            return []
        if self.settings.use_fallback_features:
            logger.info("Using fallback audio features as configured")
            return _neutral_features(len(ids))

        collected: list[AudioFeatures | None] = []
        had_error = False
        for index, chunk in enumerate(chunked(ids, AUDIO_FEATURES_BATCH_LIMIT)):
            if index:
                await self.sleep(CHUNK_DELAY)
            try:
                raw = await self._call(self.client.audio_features, chunk)
            except Exception as exc:
                if status_of(exc) == 403:
                    warnings.warn(
                        "Spotify audio-features endpoint returned 403 Forbidden. "
                        "This endpoint may be restricted for your app credentials. "
                        "Falling back to neutral features.",
                        RuntimeWarning,
                        stacklevel=2,
                    )
                    return _neutral_features(len(ids))
                logger.error("Error fetching audio features for %d tracks: %s", len(chunk), exc)
                had_error = True
                continue
            collected.extend(AudioFeatures.from_api(item) if item else None for item in raw or [])

        if not collected:
            warnings.warn(
                "No audio features retrieved; falling back to neutral features.",
                RuntimeWarning,
                stacklevel=2,
            )
            return _neutral_features(len(ids))
        if had_error:
            logger.warning("Retrieved %d/%d track features with some errors", len(collected), len(ids))
        return collected

    async def available_genres(self) -> list[str]:
        try:
            result = await self._call(self.client.recommendation_genre_seeds)
        except Exception as exc:
            logger.error("Error fetching available genres: %s", exc)
            return list(DEFAULT_GENRES)
        genres = (result or {}).get("genres") or []
        logger.info("Found %d available genres", len(genres))
        return genres or list(DEFAULT_GENRES)

    async def recommendations(
        self,
        seed_genres: list[str],
        seed_tracks: list[str],
        target_popularity: int,
        limit: int = 20,
    ) -> list[dict]:
        # One attempt per seed set; the cascade moves on to the next strategy.
        result = await self._call_once(
            self.client.recommendations,
            seed_genres=seed_genres or None,
            seed_tracks=seed_tracks or None,
            limit=limit,
            target_popularity=target_popularity,
        )
        return (result or {}).get("tracks") or []

    async def _context(self, obscurity_level: int, limit: int) -> RecommendationContext:
        genres = await self.available_genres()
        top_ids: list[str] = []
        try:
            top_ids = [t["id"] for t in await self.top_tracks() if t and t.get("id")]
        except Exception as exc:
            if status_of(exc) == 401:
                raise
            logger.error("Could not load top tracks for recommendation seeds: %s", exc)
        return RecommendationContext(
            fetch=self.recommendations,
            available_genres=genres,
            top_track_ids=top_ids,
            obscurity_level=obscurity_level,
            limit=limit,
        )

    async def recommend(self, obscurity_level: int = 50, limit: int = 20) -> CascadeResult:
        return await recommend(await self._context(obscurity_level, limit))

    async def recommend_for_genres(self, genres: list[str], obscurity_level: int = 50, limit: int = 20) -> CascadeResult:
        context = RecommendationContext(fetch=self.recommendations, obscurity_level=obscurity_level, limit=limit)
        return await recommend_for_genres(context, genres)

    async def validate_token(self) -> dict:
        try:
            user = await self._call(self.client.current_user)
        except Exception as exc:
            return {"valid": False, "status": status_of(exc), "error": str(exc)}

        async def probe(scope: str, method: str) -> dict:
            try:
                await self._call(getattr(self.client, method), limit=1)
            except Exception as exc:
                return {"scope": scope, "status": status_of(exc), "ok": False}
            return {"scope": scope, "status": 200, "ok": True}

        scopes = await asyncio.gather(*(probe(*check) for check in _SCOPE_PROBES))
        return {"valid": True, "user": user, "scopes": list(scopes)}
