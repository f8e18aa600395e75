from __future__ import annotations

import argparse
import asyncio
import logging
import os

from music_stats_dashboard.analysis import summarize_tracks
from music_stats_dashboard.config import _env_int, load_local_env_file
from music_stats_dashboard.models import Track
from music_stats_dashboard.spotify_service import TIME_RANGES, SpotifyService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Music stats dashboard report")
    parser.add_argument(
        "--access-token",
        default=os.getenv("SPOTIFY_ACCESS_TOKEN"),
        help="User access token (defaults to SPOTIFY_ACCESS_TOKEN env)",
    )
    parser.add_argument(
        "--time-range",
        choices=TIME_RANGES,
        default="medium_term",
        help="Top-tracks time range",
    )
    parser.add_argument(
        "--obscurity",
        type=int,
        default=_env_int("OBSCURITY_LEVEL", 50),
        help="Obscurity level 0-100 for recommendations (defaults to OBSCURITY_LEVEL env or 50)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=_env_int("RECOMMENDATION_LIMIT", 10),
        help="Number of recommendations (defaults to RECOMMENDATION_LIMIT env or 10)",
    )
    return parser.parse_args(argv)


def resolve_access_token(args: argparse.Namespace) -> str:
    if not args.access_token:
        raise ValueError(
            "No access token. Pass --access-token or set SPOTIFY_ACCESS_TOKEN."
        )
    return args.access_token


def format_track(track: Track) -> str:
    artists = ", ".join(track.artists) or "Unknown"
    return f"{track.name} - {artists} ({track.id})"


async def run_report(args: argparse.Namespace, service: object) -> list[str]:
    raw_tracks = await service.top_tracks(args.time_range)
    tracks = [Track.from_api(t) for t in raw_tracks]
    features = await service.audio_features(t.id for t in tracks[:20])
    summary = summarize_tracks(tracks, features)

    lines = [
        f"Top tracks ({args.time_range}): {summary.track_count}",
        f"Obscurity:  {summary.obscurity_score}% - {summary.obscurity_label}",
        f"Mood:       {summary.mood_score}% - {summary.mood_label}",
        f"Energy:     {summary.energy_score}% - {summary.energy_label}",
    ]
    if summary.using_fallback_features:
        lines.append("Note: audio features unavailable, neutral values were used.")

    result = await service.recommend(obscurity_level=args.obscurity, limit=args.limit)
    lines.append(f"Recommendations ({result.strategy or 'placeholder'}):")
    if result.used_fallback:
        lines.append("  Couldn't get personalized recommendations; showing placeholder tracks.")
    lines.extend(f"  {format_track(Track.from_api(t))}" for t in result.tracks)
    return lines


def main() -> None:
    load_local_env_file()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    args = parse_args()
    service = SpotifyService(resolve_access_token(args))
    for line in asyncio.run(run_report(args, service)):
        print(line)


if __name__ == "__main__":
    main()
