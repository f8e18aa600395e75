"""FastAPI web server for the music stats dashboard."""
import asyncio
import logging
import secrets
from dataclasses import asdict
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from starlette.middleware.sessions import SessionMiddleware

from music_stats_dashboard import auth
from music_stats_dashboard.analysis import (
    categorize_genres,
    decade_distribution,
    obscurity_score,
    summarize_tracks,
)
from music_stats_dashboard.config import Settings
from music_stats_dashboard.models import Track, UserSession
from music_stats_dashboard.recommendations import CascadeResult
from music_stats_dashboard.request_queue import RequestQueue
from music_stats_dashboard.retry import RateLimitExceededError, status_of
from music_stats_dashboard.spotify_service import TIME_RANGES, SpotifyService

logger = logging.getLogger(__name__)

SESSION_KEY = "user_session"
STATE_KEY = "oauth_state"
SESSION_EXPIRED = "Your session has expired. Please sign in again."

# Tracks per time range used for audio-feature averages.
_FEATURE_SAMPLE = 20


def _session_secret() -> str:
    secret = Settings.from_env().session_secret
    if not secret:
        logger.warning("SESSION_SECRET is not set; using a random secret, sessions end on restart")
        secret = secrets.token_urlsafe(32)
    return secret


app = FastAPI(title="Music Stats Dashboard")

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=_session_secret(), max_age=60 * 60)


# Request/Response models
class TrackInfo(BaseModel):
    id: str
    name: str
    artists: list[str] = []
    image_url: str | None = None
    external_url: str | None = None
    popularity: int | None = None
    obscurity: int | None = None


class TasteSummaryModel(BaseModel):
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


class DashboardResponse(BaseModel):
    time_range: str
    summary: TasteSummaryModel
    top_tracks: list[TrackInfo]


class TimeMachineResponse(BaseModel):
    ranges: dict[str, DashboardResponse]


class PlaylistInfo(BaseModel):
    id: str
    name: str
    owner: str
    track_count: int = 0
    image_url: str | None = None


class DecadeShare(BaseModel):
    name: str
    value: int


class PlaylistAnalysis(BaseModel):
    playlist_id: str
    summary: TasteSummaryModel
    decade_distribution: list[DecadeShare]


class GenresResponse(BaseModel):
    genres: list[str]
    categories: dict[str, list[str]]


class RecommendationsResponse(BaseModel):
    tracks: list[TrackInfo]
    strategy: str | None = None
    attempts: int = 0
    using_fallback: bool = False
    message: str | None = None


class GenreRecommendationRequest(BaseModel):
    genres: list[str] = Field(min_length=1, max_length=5)
    obscurity: int = Field(default=50, ge=0, le=100)
    limit: int = Field(default=20, ge=1, le=100)


def get_settings() -> Settings:
    return Settings.from_env()


# One request queue per signed-in user, so a rate-limited user only
# delays their own calls.
_session_queues: dict[str, RequestQueue] = {}


def _queue_key(session: UserSession) -> str | None:
    return session.user.get("id") or session.token.refresh_token


def queue_for(session: UserSession) -> RequestQueue:
    key = _queue_key(session)
    if key is None:
        return RequestQueue(get_settings().max_concurrent_requests)
    queue = _session_queues.get(key)
    if queue is None:
        queue = _session_queues[key] = RequestQueue(get_settings().max_concurrent_requests)
    return queue


def build_service(session: UserSession) -> SpotifyService:
    """Initialize a Spotify service for the signed-in user."""
    return SpotifyService(session.token.access_token, queue=queue_for(session))


async def get_user_session(request: Request) -> UserSession:
    """Load the session, refreshing the access token when it has expired."""
    raw = request.session.get(SESSION_KEY)
    if not raw:
        raise HTTPException(status_code=401, detail=SESSION_EXPIRED)
    session = UserSession.from_dict(raw)
    token = await asyncio.to_thread(auth.ensure_fresh_token, session.token, get_settings())
    if token is not session.token:
        session.token = token
        request.session[SESSION_KEY] = session.to_dict()
    if token.error:
        logger.error("Session error: %s", token.error)
        raise HTTPException(status_code=401, detail=SESSION_EXPIRED)
    return session


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, RateLimitExceededError):
        return HTTPException(status_code=429, detail="Too many requests. Please try again in a few minutes.")
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    status = status_of(exc)
    if status == 401:
        return HTTPException(status_code=401, detail=SESSION_EXPIRED)
    logger.error("Spotify request failed: %s", exc)
    return HTTPException(status_code=502, detail=f"Failed to analyze your music. {exc}")


def _track_info(payload: dict) -> TrackInfo:
    track = Track.from_api(payload)
    return TrackInfo(
        id=track.id,
        name=track.name,
        artists=track.artists,
        image_url=track.album_image_url,
        external_url=track.external_url,
        popularity=track.popularity,
        obscurity=None if track.popularity is None else round(obscurity_score(track.popularity)),
    )


async def _analyze(service: SpotifyService, raw_tracks: list[dict]) -> TasteSummaryModel:
    tracks = [Track.from_api(t) for t in raw_tracks]
    features = await service.audio_features(t.id for t in tracks[:_FEATURE_SAMPLE])
    return TasteSummaryModel(**asdict(summarize_tracks(tracks, features)))


async def _dashboard_for(service: SpotifyService, time_range: str) -> DashboardResponse:
    raw_tracks = await service.top_tracks(time_range)
    return DashboardResponse(
        time_range=time_range,
        summary=await _analyze(service, raw_tracks),
        top_tracks=[_track_info(t) for t in raw_tracks[:10]],
    )


def _recommendations_response(result: CascadeResult, message: str) -> RecommendationsResponse:
    return RecommendationsResponse(
        tracks=[_track_info(t) for t in result.tracks],
        strategy=result.strategy,
        attempts=result.attempts,
        using_fallback=result.used_fallback,
        message=message if result.used_fallback else None,
    )


@app.get("/")
def index():
    return {"message": "Music Stats Dashboard API is running. Sign in at /login."}


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/login")
def login(request: Request):
    settings = get_settings()
    try:
        state = secrets.token_urlsafe(16)
        url = auth.authorize_url(settings, state=state)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))
    request.session[STATE_KEY] = state
    return RedirectResponse(url)


@app.get("/callback")
async def callback(request: Request, code: str | None = None, state: str | None = None, error: str | None = None):
    expected_state = request.session.pop(STATE_KEY, None)
    if error or not code:
        return RedirectResponse(f"/?error={quote(error or 'missing_code', safe='')}")
    if not expected_state or state != expected_state:
        return RedirectResponse("/?error=state_mismatch")

    try:
        token = await asyncio.to_thread(auth.exchange_code, code, get_settings())
        session = UserSession(token=token)
        profile = await build_service(session).current_user()
    except Exception as e:
        logger.error("Sign-in failed: %s", e)
        return RedirectResponse("/?error=signin_failed")

    session.user = {
        "id": profile.get("id"),
        "display_name": profile.get("display_name"),
        "email": profile.get("email"),
    }
    request.session[SESSION_KEY] = session.to_dict()
    logger.info("Signed in Spotify user %s", session.user.get("id"))
    return RedirectResponse("/")


@app.get("/logout")
def logout(request: Request):
    raw = request.session.get(SESSION_KEY)
    if raw:
        _session_queues.pop(_queue_key(UserSession.from_dict(raw)), None)
    request.session.clear()
    return RedirectResponse("/")


@app.get("/api/me")
async def me(session: UserSession = Depends(get_user_session)):
    return session.user


@app.get("/api/dashboard", response_model=DashboardResponse)
async def dashboard(
    time_range: str = Query(default="medium_term"),
    session: UserSession = Depends(get_user_session),
):
    """Obscurity and mood summary of the user's top tracks."""
    try:
        return await _dashboard_for(build_service(session), time_range)
    except Exception as e:
        raise _http_error(e) from e


@app.get("/api/time-machine", response_model=TimeMachineResponse)
async def time_machine(session: UserSession = Depends(get_user_session)):
    """Dashboard summaries for every time range, side by side."""
    service = build_service(session)
    try:
        ranges = {time_range: await _dashboard_for(service, time_range) for time_range in TIME_RANGES}
    except Exception as e:
        raise _http_error(e) from e
    return TimeMachineResponse(ranges=ranges)


@app.get("/api/playlists", response_model=list[PlaylistInfo])
async def playlists(session: UserSession = Depends(get_user_session)):
    try:
        items = await build_service(session).playlists()
    except Exception as e:
        raise _http_error(e) from e
    return [PlaylistInfo(**asdict(p)) for p in items]


@app.get("/api/playlists/{playlist_id}/analysis", response_model=PlaylistAnalysis)
async def playlist_analysis(playlist_id: str, session: UserSession = Depends(get_user_session)):
    service = build_service(session)
    try:
        raw_tracks = await service.playlist_tracks(playlist_id)
        if not raw_tracks:
            raise HTTPException(status_code=404, detail="No tracks found in this playlist")
        summary = await _analyze(service, raw_tracks)
    except Exception as e:
        raise _http_error(e) from e
    return PlaylistAnalysis(
        playlist_id=playlist_id,
        summary=summary,
        decade_distribution=[DecadeShare(**d) for d in decade_distribution(Track.from_api(t) for t in raw_tracks)],
    )


@app.get("/api/genres", response_model=GenresResponse)
async def genres(session: UserSession = Depends(get_user_session)):
    available = await build_service(session).available_genres()
    return GenresResponse(
        genres=available,
        categories=categorize_genres(available),
    )


@app.get("/api/recommendations", response_model=RecommendationsResponse)
async def recommendations(
    obscurity: int = Query(default=50, ge=0, le=100),
    limit: int = Query(default=20, ge=1, le=100),
    session: UserSession = Depends(get_user_session),
):
    """Recommendations tuned towards the requested obscurity level."""
    try:
        result = await build_service(session).recommend(obscurity_level=obscurity, limit=limit)
    except Exception as e:
        raise _http_error(e) from e
    return _recommendations_response(
        result, "Couldn't get personalized recommendations. Showing placeholder tracks instead."
    )


@app.post("/api/recommendations/genres", response_model=RecommendationsResponse)
async def genre_recommendations(
    request: GenreRecommendationRequest,
    session: UserSession = Depends(get_user_session),
):
    try:
        result = await build_service(session).recommend_for_genres(
            request.genres, obscurity_level=request.obscurity, limit=request.limit
        )
    except Exception as e:
        raise _http_error(e) from e
    return _recommendations_response(
        result, f"Couldn't get recommendations with these genres: {', '.join(request.genres)}"
    )


@app.get("/api/token-test")
async def token_test(session: UserSession = Depends(get_user_session)):
    return await build_service(session).validate_token()
