"""Entry point for running as a module."""
import logging
import os

import uvicorn

from music_stats_dashboard.config import load_local_env_file

if __name__ == "__main__":
    load_local_env_file()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    from music_stats_dashboard.api import app

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
