from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth

from music_stats_dashboard.config import Settings
from music_stats_dashboard.models import Token

logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
REFRESH_ERROR = "RefreshAccessTokenError"
DEFAULT_EXPIRES_IN = 3600

SCOPES = [
    "user-read-email",
    "user-read-private",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-top-read",
    "user-library-read",
    "user-read-recently-played",
]

PostFn = Callable[..., requests.Response]


def _expires_in(payload: dict) -> float:
    try:
        return float(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN


def token_from_grant(payload: dict, now: float | None = None) -> Token:
    now = time.time() if now is None else now
    return Token(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=now + _expires_in(payload),
    )


def oauth_manager(settings: Settings, state: str | None = None) -> SpotifyOAuth:
    return SpotifyOAuth(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scope=" ".join(SCOPES),
        state=state,
        show_dialog=True,
        cache_handler=MemoryCacheHandler(),
    )


def authorize_url(settings: Settings, state: str | None = None) -> str:
    settings.require_credentials()
    return oauth_manager(settings, state=state).get_authorize_url(state=state)


def _post_token(settings: Settings, data: dict, post: PostFn) -> dict:
    response = post(
        TOKEN_URL,
        data=data,
        auth=(settings.client_id, settings.client_secret),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=settings.request_timeout,
    )
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise ValueError("Token response did not include an access_token")
    return payload


def exchange_code(
    code: str,
    settings: Settings,
    now: float | None = None,
    post: PostFn = requests.post,
) -> Token:
    """Trade an authorization code from the OAuth callback for a token."""
    settings.require_credentials()
    payload = _post_token(
        settings,
        {"grant_type": "authorization_code", "code": code, "redirect_uri": settings.redirect_uri},
        post,
    )
    return token_from_grant(payload, now)


def refresh_access_token(
    token: Token,
    settings: Settings,
    now: float | None = None,
    post: PostFn = requests.post,
) -> Token:
    """Run the refresh-token grant.

    Failures never raise; the returned token carries ``REFRESH_ERROR`` so the
    caller can force the user to sign in again.
    """

    now = time.time() if now is None else now
    if not token.refresh_token:
        logger.error("Cannot refresh access token: no refresh token stored")
        return replace(token, error=REFRESH_ERROR)

    try:
        payload = _post_token(
            settings,
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token},
            post,
        )
    except (requests.RequestException, ValueError) as exc:
        logger.error("Error refreshing access token: %s", exc)
        return replace(token, error=REFRESH_ERROR)

    logger.info("Access token refreshed")
    return Token(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token") or token.refresh_token,
        expires_at=now + _expires_in(payload),
        error=None,
    )


def ensure_fresh_token(
    token: Token,
    settings: Settings,
    now: float | None = None,
    post: PostFn = requests.post,
) -> Token:
    now = time.time() if now is None else now
    if not token.is_expired(now):
        return token
    logger.info("Access token expired, attempting refresh")
    return refresh_access_token(token, settings, now=now, post=post)
