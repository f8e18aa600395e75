import argparse
import os
import unittest
from unittest.mock import patch

from music_stats_dashboard.app import parse_args, resolve_access_token, run_report
from music_stats_dashboard.models import AudioFeatures
from music_stats_dashboard.recommendations import CascadeResult, placeholder_tracks


class _FakeService:
    def __init__(self, result: CascadeResult) -> None:
        self._result = result
        self.recommend_args: dict | None = None

    async def top_tracks(self, time_range: str = "medium_term") -> list[dict]:
        return [
            {"id": "t1", "name": "Quiet", "artists": [{"name": "A"}], "popularity": 10},
            {"id": "t2", "name": "Loud", "artists": [{"name": "B"}], "popularity": 30},
        ]

    async def audio_features(self, track_ids) -> list[AudioFeatures]:
        return [
            AudioFeatures(danceability=0.3, energy=0.2, valence=0.4, acousticness=0.9, tempo=90, instrumentalness=0.5)
            for _ in track_ids
        ]

    async def recommend(self, obscurity_level: int = 50, limit: int = 20) -> CascadeResult:
        self.recommend_args = {"obscurity_level": obscurity_level, "limit": limit}
        return self._result


def _args(**overrides) -> argparse.Namespace:
    values = {"access_token": "tok", "time_range": "short_term", "obscurity": 75, "limit": 2}
    values.update(overrides)
    return argparse.Namespace(**values)


class AppTests(unittest.IsolatedAsyncioTestCase):
    def test_resolve_access_token_requires_value(self) -> None:
        with self.assertRaises(ValueError):
            resolve_access_token(_args(access_token=None))
        self.assertEqual(resolve_access_token(_args()), "tok")

    def test_parse_args_reads_env_defaults(self) -> None:
        with patch.dict(os.environ, {"SPOTIFY_ACCESS_TOKEN": "from-env", "OBSCURITY_LEVEL": "not-a-number"}):
            args = parse_args([])
        self.assertEqual(args.access_token, "from-env")
        self.assertEqual(args.obscurity, 50)
        self.assertEqual(args.time_range, "medium_term")

    async def test_report_lists_scores_and_recommendations(self) -> None:
        result = CascadeResult(
            tracks=[{"id": "r1", "name": "Deep Cut", "artists": [{"name": "C"}]}], strategy="genres:pop", attempts=1
        )
        service = _FakeService(result)

        lines = await run_report(_args(), service)

        self.assertIn("Obscurity:  80% - Very unique taste!", lines)
        self.assertIn("Mood:       30% - More calm and reflective", lines)
        self.assertIn("  Deep Cut - C (r1)", lines)
        self.assertEqual(service.recommend_args, {"obscurity_level": 75, "limit": 2})

    async def test_report_warns_about_placeholders(self) -> None:
        service = _FakeService(CascadeResult(tracks=placeholder_tracks(1), strategy=None, attempts=3, used_fallback=True))

        lines = await run_report(_args(), service)

        self.assertTrue(any("placeholder" in line for line in lines))
        self.assertIn("  Fallback Track 1 - Various Artists (fallback-0)", lines)


if __name__ == "__main__":
    unittest.main()
