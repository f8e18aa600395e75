from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


def load_local_env_file(env_path: str = ".env") -> None:
    """Load key=value pairs from a local .env file into process env.

    Existing environment variables are preserved and not overwritten.
    """

    path = Path(env_path)
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")

        if key and key not in os.environ:
            os.environ[key] = value


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return float(raw)
    except ValueError:
        return fallback


def _env_bool(name: str, fallback: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip().lower() in _TRUTHY


@dataclass(slots=True)
class Settings:
    client_id: str = ""
    client_secret: str = ""
    session_secret: str = ""
    callback_base_url: str = "http://localhost:8000"
    use_fallback_features: bool = False
    max_concurrent_requests: int = 3
    request_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=os.getenv("SPOTIFY_CLIENT_ID", ""),
            client_secret=os.getenv("SPOTIFY_CLIENT_SECRET", ""),
            session_secret=os.getenv("SESSION_SECRET", ""),
            callback_base_url=os.getenv("CALLBACK_BASE_URL") or "http://localhost:8000",
            use_fallback_features=_env_bool("USE_FALLBACK_FEATURES"),
            max_concurrent_requests=max(1, _env_int("MAX_CONCURRENT_REQUESTS", 3)),
            request_timeout=_env_float("REQUEST_TIMEOUT", 5.0),
        )

    @property
    def redirect_uri(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/callback"

    def require_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("SPOTIFY_CLIENT_ID", self.client_id),
                ("SPOTIFY_CLIENT_SECRET", self.client_secret),
            )
            if not value
        ]
        if missing:
            missing_list = ", ".join(missing)
            raise ValueError(
                f"Missing Spotify credentials: {missing_list}. "
                "Set them in environment variables or local .env file."
            )
