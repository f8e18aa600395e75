import unittest

from music_stats_dashboard.recommendations import (
    FALLBACK_PREFIX,
    RecommendationContext,
    Strategy,
    build_strategies,
    genre_combinations,
    is_fallback,
    is_valid_track_id,
    placeholder_tracks,
    recommend,
    recommend_for_genres,
    run_cascade,
    track_seed_subsets,
)

VALID_IDS = [
    "4uLU6hMCjMI75M1A2tKUQC",
    "7ouMYWpwJ422jRcDASZB7P",
    "0VjIjW4GlUZAMYd2vXMi3b",
    "3n3Ppam7vgaVa1iaRUc9Lp",
    "1301WleyT98MSxVHPZCA6M",
    "6habFhsOp2NvshLv26DqMb",
]


class _RecordingFetcher:
    """Answers recommendation requests from a script, recording every call."""

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def __call__(self, seed_genres, seed_tracks, target_popularity, limit):
        self.calls.append({
            "seed_genres": list(seed_genres),
            "seed_tracks": list(seed_tracks),
            "target_popularity": target_popularity,
            "limit": limit,
        })
        response = self.responses.pop(0) if self.responses else []
        if isinstance(response, Exception):
            raise response
        return response


class SeedTests(unittest.TestCase):
    def test_track_id_shape(self) -> None:
        self.assertTrue(is_valid_track_id(VALID_IDS[0]))
        self.assertFalse(is_valid_track_id("fallback-1"))
        self.assertFalse(is_valid_track_id(""))
        self.assertFalse(is_valid_track_id(VALID_IDS[0] + "x"))

    def test_genre_combinations_intersect_available_genres(self) -> None:
        combos = genre_combinations(["acoustic", "dance", "indie", "pop"])
        self.assertEqual(combos, [["pop", "indie"], ["dance"], ["acoustic", "dance", "indie"]])

    def test_genre_combinations_drop_empty(self) -> None:
        self.assertEqual(genre_combinations(["sleep"]), [["sleep"]])
        self.assertEqual(genre_combinations([]), [])

    def test_track_subsets_shrink_from_five(self) -> None:
        subsets = track_seed_subsets(VALID_IDS)
        self.assertEqual([len(s) for s in subsets], [5, 4, 3, 2, 1])
        self.assertEqual(subsets[0], VALID_IDS[:5])
        self.assertEqual(subsets[-1], VALID_IDS[:1])

    def test_track_subsets_only_use_valid_ids_from_first_five(self) -> None:
        subsets = track_seed_subsets(["bad", VALID_IDS[0], "also-bad", VALID_IDS[1], "x", VALID_IDS[2]])
        self.assertEqual(subsets, [[VALID_IDS[0], VALID_IDS[1]], [VALID_IDS[0]]])

    def test_placeholders_are_tagged(self) -> None:
        tracks = placeholder_tracks(3)
        self.assertEqual([t["id"] for t in tracks], ["fallback-0", "fallback-1", "fallback-2"])
        self.assertEqual(tracks[0]["name"], "Fallback Track 1")
        self.assertTrue(is_fallback(tracks))
        self.assertFalse(is_fallback([{"id": VALID_IDS[0]}]))
        self.assertFalse(is_fallback([]))


class CascadeTests(unittest.IsolatedAsyncioTestCase):
    async def test_fourth_genre_combination_wins_after_four_attempts(self) -> None:
        winning = [{"id": VALID_IDS[0], "name": "Found"}]
        fetcher = _RecordingFetcher([[], RuntimeError("500"), [], winning])
        context = RecommendationContext(
            fetch=fetcher,
            available_genres=["alternative", "dance", "electronic", "hip-hop", "indie", "pop", "rock"],
            top_track_ids=VALID_IDS,
            obscurity_level=70,
            limit=20,
        )

        result = await recommend(context)

        self.assertIs(result.tracks, winning)
        self.assertEqual(result.attempts, 4)
        self.assertEqual(len(fetcher.calls), 4)
        self.assertFalse(result.used_fallback)
        self.assertEqual(fetcher.calls[3]["seed_genres"], ["alternative", "dance", "electronic"])
        self.assertTrue(all(call["seed_tracks"] == [] for call in fetcher.calls))
        self.assertTrue(all(call["target_popularity"] == 30 for call in fetcher.calls))

    async def test_falls_back_to_shrinking_track_seeds(self) -> None:
        winning = [{"id": VALID_IDS[5]}]
        fetcher = _RecordingFetcher([[], [], [], winning])
        context = RecommendationContext(
            fetch=fetcher,
            available_genres=["sleep"],
            top_track_ids=VALID_IDS,
            limit=10,
        )

        result = await recommend(context)

        self.assertEqual(result.tracks, winning)
        self.assertEqual([len(c["seed_tracks"]) for c in fetcher.calls[1:]], [5, 4, 3])
        self.assertEqual(fetcher.calls[0]["seed_genres"], ["sleep"])
        self.assertEqual(result.strategy, "tracks:3")

    async def test_no_valid_seeds_returns_exactly_limit_placeholders(self) -> None:
        fetcher = _RecordingFetcher([])
        context = RecommendationContext(
            fetch=fetcher,
            available_genres=[],
            top_track_ids=["not-a-track-id"],
            limit=7,
        )

        result = await recommend(context)

        self.assertEqual(fetcher.calls, [])
        self.assertTrue(result.used_fallback)
        self.assertIsNone(result.strategy)
        self.assertEqual(len(result.tracks), 7)
        self.assertTrue(all(t["id"].startswith(FALLBACK_PREFIX) for t in result.tracks))

    async def test_every_attempt_failing_yields_placeholders(self) -> None:
        fetcher = _RecordingFetcher([RuntimeError("down")] * 10)
        context = RecommendationContext(
            fetch=fetcher,
            available_genres=["pop"],
            top_track_ids=VALID_IDS[:2],
            limit=5,
        )

        result = await recommend(context)

        # One "pop" attempt (repeated seed sets are skipped), then 2 and 1 track seeds.
        self.assertEqual(result.attempts, 3)
        self.assertTrue(result.used_fallback)
        self.assertEqual(len(result.tracks), 5)

    async def test_driver_stops_at_first_named_success(self) -> None:
        ran: list[str] = []

        def strategy(name: str, tracks: list[dict]) -> Strategy:
            async def run(context):
                ran.append(name)
                return tracks
            return Strategy(name=name, run=run)

        context = RecommendationContext(fetch=_RecordingFetcher([]))
        result = await run_cascade(
            [strategy("a", []), strategy("b", [{"id": "x"}]), strategy("c", [{"id": "y"}])], context
        )

        self.assertEqual(ran, ["a", "b"])
        self.assertEqual(result.strategy, "b")
        self.assertEqual(result.attempts, 2)

    async def test_manual_genres_make_one_attempt(self) -> None:
        fetcher = _RecordingFetcher([[]])
        context = RecommendationContext(fetch=fetcher, obscurity_level=100, limit=3)

        result = await recommend_for_genres(context, ["jazz", "soul", "funk", "blues", "folk", "latin"])

        self.assertEqual(len(fetcher.calls), 1)
        self.assertEqual(len(fetcher.calls[0]["seed_genres"]), 5)
        self.assertEqual(fetcher.calls[0]["target_popularity"], 0)
        self.assertTrue(result.used_fallback)
        self.assertEqual(len(result.tracks), 3)

    def test_build_strategies_orders_genres_before_tracks(self) -> None:
        context = RecommendationContext(
            fetch=_RecordingFetcher([]), available_genres=["pop"], top_track_ids=VALID_IDS[:1]
        )
        names = [s.name for s in build_strategies(context)]
        self.assertEqual(names, ["genres:pop", "tracks:1"])


if __name__ == "__main__":
    unittest.main()
