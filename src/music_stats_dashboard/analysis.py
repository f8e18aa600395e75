from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from music_stats_dashboard.models import AudioFeatures, Track

# Number of distinct genres treated as a fully diverse library.
_DIVERSITY_GENRE_CEILING = 20

# Popularity assumed for tracks that do not report one.
_DEFAULT_POPULARITY = 50

GENRE_CATEGORIES: dict[str, list[str]] = {
    "Pop/Rock": ["pop", "rock", "indie", "alternative", "indie-pop", "pop-film"],
    "Electronic": ["electronic", "edm", "dance", "house", "techno", "trance", "dubstep"],
    "Hip-Hop/R&B": ["hip-hop", "r-n-b", "rap", "trap"],
    "Jazz/Blues": ["jazz", "blues", "soul", "funk"],
    "Folk/Country": ["folk", "country", "americana", "bluegrass"],
    "World": ["latin", "afrobeat", "reggae", "reggaeton", "k-pop", "j-pop"],
    "Classical/Instrumental": ["classical", "instrumental", "ambient", "piano"],
    "Metal/Punk": ["metal", "punk", "hard-rock", "hardcore", "grindcore"],
}
OTHER_CATEGORY = "Other"


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def obscurity_score(popularity: float) -> float:
    return _clamp(100 - popularity)


def mood_score(valence: float, energy: float) -> float:
    return _clamp(((valence + energy) / 2) * 100)


def diversity_score(genres: Iterable[str]) -> float:
    """Share of the 20-genre ceiling covered by the distinct genres given.

    Public helper for callers holding a genre list, such as artist genres
    for a set of tracks. The dashboard routes do not report it.
    """
    return _clamp(len(set(genres)) / _DIVERSITY_GENRE_CEILING * 100)


@dataclass(slots=True)
class FeatureAverages:
    danceability: float = 0.0
    energy: float = 0.0
    valence: float = 0.0
    acousticness: float = 0.0


@dataclass(slots=True)
class TasteSummary:
    track_count: int
    obscurity_score: int
    mood_score: int
    energy_score: int
    danceability_score: int
    acousticness_score: int
    obscurity_label: str
    mood_label: str
    energy_label: str
    using_fallback_features: bool = False


def average_features(features: Iterable[AudioFeatures | None]) -> FeatureAverages:
    """Mean of the perceptual features over the entries that are present."""
    totals = FeatureAverages()
    count = 0
    for item in features:
        if item is None:
            continue
        totals.danceability += item.danceability
        totals.energy += item.energy
        totals.valence += item.valence
        totals.acousticness += item.acousticness
        count += 1
    if count == 0:
        return totals
    return FeatureAverages(
        danceability=totals.danceability / count,
        energy=totals.energy / count,
        valence=totals.valence / count,
        acousticness=totals.acousticness / count,
    )


def average_obscurity(tracks: list[Track]) -> float:
    if not tracks:
        return 0.0
    total = sum(obscurity_score(t.popularity if t.popularity is not None else _DEFAULT_POPULARITY) for t in tracks)
    return total / len(tracks)


def _describe(score: float, high: str, medium: str, low: str) -> str:
    if score > 70:
        return high
    if score > 50:
        return medium
    return low


def describe_obscurity(score: float) -> str:
    return _describe(score, "Very unique taste!", "More obscure than average", "Mostly mainstream tracks")


def describe_mood(score: float) -> str:
    return _describe(
        score, "Very upbeat and energetic!", "Positive and moderately energetic", "More calm and reflective"
    )


def describe_energy(score: float) -> str:
    return _describe(score, "High energy music!", "Moderately energetic", "Calm and relaxed music")


def _uses_estimates(features: list[AudioFeatures | None]) -> bool:
    return any(f is not None and f.estimated for f in features)


def summarize_tracks(tracks: list[Track], features: list[AudioFeatures | None]) -> TasteSummary:
    averages = average_features(features)
    obscurity = round(average_obscurity(tracks))
    mood = round(mood_score(averages.valence, averages.energy))
    energy = round(_clamp(averages.energy * 100))
    return TasteSummary(
        track_count=len(tracks),
        obscurity_score=obscurity,
        mood_score=mood,
        energy_score=energy,
        danceability_score=round(_clamp(averages.danceability * 100)),
        acousticness_score=round(_clamp(averages.acousticness * 100)),
        obscurity_label=describe_obscurity(obscurity),
        mood_label=describe_mood(mood),
        energy_label=describe_energy(energy),
        using_fallback_features=_uses_estimates(features),
    )


def categorize_genres(genres: Iterable[str]) -> dict[str, list[str]]:
    """Group genre seeds for display.

    A genre joins every category with a keyword it contains or is contained
    by, so one genre may land in several categories. Genres matching nothing
    go to "Other". Empty categories are dropped.
    """

    grouped: dict[str, list[str]] = {name: [] for name in GENRE_CATEGORIES}
    grouped[OTHER_CATEGORY] = []
    for genre in genres:
        placed = False
        for category, keywords in GENRE_CATEGORIES.items():
            if any(keyword in genre or genre in keyword for keyword in keywords):
                if genre not in grouped[category]:
                    grouped[category].append(genre)
                placed = True
        if not placed and genre not in grouped[OTHER_CATEGORY]:
            grouped[OTHER_CATEGORY].append(genre)
    return {category: sorted(members) for category, members in grouped.items() if members}


def _decade_of(release_date: str | None) -> str | None:
    if not release_date or len(release_date) < 4 or not release_date[:4].isdigit():
        return None
    year = int(release_date[:4])
    if year <= 0:
        return None
    return f"{year // 10 * 10}s"


def decade_distribution(tracks: Iterable[Track]) -> list[dict]:
    """Share of tracks per release decade, as rounded percentages."""
    counts = Counter(d for d in (_decade_of(t.release_date) for t in tracks) if d is not None)
    total = sum(counts.values())
    if total == 0:
        return []
    return [
        {"name": decade, "value": round(count / total * 100)}
        for decade, count in sorted(counts.items())
    ]
