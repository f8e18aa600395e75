"""Recommendation fallback cascade.

Spotify's recommendations endpoint often returns nothing (or errors) for apps
on restricted access tiers, so recommendations are requested through an
ordered list of strategies. The first strategy that produces at least one
track wins; when every remote strategy fails, placeholder tracks keep the
dashboard populated and are tagged so callers can warn the user.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "fallback-"

MAX_SEEDS = 5

GENRE_PRIORITY: list[list[str]] = [
    ["pop", "rock", "indie"],
    ["hip-hop", "electronic", "dance"],
    ["alternative", "indie", "pop"],
]

_TRACK_ID_PATTERN = re.compile(r"^[0-9A-Za-z]{22}$")

# fetch(seed_genres, seed_tracks, target_popularity, limit) -> raw track dicts
RecommendationFetcher = Callable[[list[str], list[str], int, int], Awaitable[list[dict]]]


@dataclass(slots=True)
class RecommendationContext:
    fetch: RecommendationFetcher
    available_genres: list[str] = field(default_factory=list)
    top_track_ids: list[str] = field(default_factory=list)
    obscurity_level: int = 50
    limit: int = 20

    @property
    def target_popularity(self) -> int:
        return max(0, min(100, 100 - self.obscurity_level))


@dataclass(slots=True)
class Strategy:
    name: str
    run: Callable[[RecommendationContext], Awaitable[list[dict]]]


@dataclass(slots=True)
class CascadeResult:
    tracks: list[dict]
    strategy: str | None
    attempts: int
    used_fallback: bool = False


def is_valid_track_id(track_id: str) -> bool:
    return bool(track_id) and _TRACK_ID_PATTERN.match(track_id) is not None


def genre_combinations(available_genres: Sequence[str]) -> list[list[str]]:
    available = set(available_genres)
    combos = [[g for g in combo if g in available] for combo in GENRE_PRIORITY]
    combos.append(list(available_genres[:3]))
    unique: list[list[str]] = []
    seen: set[frozenset[str]] = set()
    for combo in combos:
        key = frozenset(combo)
        if combo and key not in seen:
            seen.add(key)
            unique.append(combo)
    return unique


def track_seed_subsets(track_ids: Sequence[str]) -> list[list[str]]:
    """Valid seed ids taken largest subset first: all of them (≤5) down to one."""
    valid = [tid for tid in track_ids[:MAX_SEEDS] if is_valid_track_id(tid)]
    return [valid[:size] for size in range(len(valid), 0, -1)]


def placeholder_tracks(limit: int) -> list[dict]:
    return [
        {
            "id": f"{FALLBACK_PREFIX}{index}",
            "name": f"Fallback Track {index + 1}",
            "artists": [{"name": "Various Artists"}],
            "album": {"images": [{"url": "/placeholder.svg"}]},
            "external_urls": {"spotify": "https://open.spotify.com"},
        }
        for index in range(max(0, limit))
    ]


def is_fallback(tracks: Sequence[dict]) -> bool:
    return bool(tracks) and str(tracks[0].get("id", "")).startswith(FALLBACK_PREFIX)


def genre_strategy(genres: list[str]) -> Strategy:
    seeds = genres[:MAX_SEEDS]

    async def run(context: RecommendationContext) -> list[dict]:
        return await context.fetch(seeds, [], context.target_popularity, context.limit)

    return Strategy(name=f"genres:{','.join(seeds)}", run=run)


def track_strategy(track_ids: list[str]) -> Strategy:
    seeds = track_ids[:MAX_SEEDS]

    async def run(context: RecommendationContext) -> list[dict]:
        return await context.fetch([], seeds, context.target_popularity, context.limit)

    return Strategy(name=f"tracks:{len(seeds)}", run=run)


def build_strategies(context: RecommendationContext) -> list[Strategy]:
    strategies = [genre_strategy(combo) for combo in genre_combinations(context.available_genres)]
    strategies.extend(track_strategy(seeds) for seeds in track_seed_subsets(context.top_track_ids))
    return strategies


async def run_cascade(strategies: Sequence[Strategy], context: RecommendationContext) -> CascadeResult:
    attempts = 0
    for strategy in strategies:
        attempts += 1
        try:
            tracks = await strategy.run(context)
        except Exception as exc:
            logger.warning("Recommendation strategy %s failed: %s", strategy.name, exc)
            continue
        if tracks:
            logger.info("Recommendation strategy %s returned %d tracks", strategy.name, len(tracks))
            return CascadeResult(tracks=tracks, strategy=strategy.name, attempts=attempts)
        logger.info("Recommendation strategy %s returned no tracks", strategy.name)

    logger.warning("All %d recommendation attempts failed; returning placeholder tracks", attempts)
    return CascadeResult(
        tracks=placeholder_tracks(context.limit),
        strategy=None,
        attempts=attempts,
        used_fallback=True,
    )


async def recommend(context: RecommendationContext) -> CascadeResult:
    return await run_cascade(build_strategies(context), context)


async def recommend_for_genres(context: RecommendationContext, genres: list[str]) -> CascadeResult:
    """Single attempt with hand-picked genres, placeholders otherwise."""
    strategies = [genre_strategy(genres)] if genres else []
    return await run_cascade(strategies, context)
