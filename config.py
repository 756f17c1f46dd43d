"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
Copy ``.env.example`` to ``.env`` and adjust values for your environment.
"""

import os

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Behaviour log
# ---------------------------------------------------------------------------

# Events kept per user; older events are dropped first.
MAX_BEHAVIORS_PER_USER: int = int(os.getenv("MAX_BEHAVIORS_PER_USER", "1000"))

# Optional NDJSON file of behaviour events replayed at start-up.
BEHAVIOR_REPLAY_PATH: str = os.getenv("BEHAVIOR_REPLAY_PATH", "")

# ---------------------------------------------------------------------------
# Recommendation cache
# ---------------------------------------------------------------------------

MAX_CACHE_SIZE: int = int(os.getenv("MAX_CACHE_SIZE", "1000"))

# TTL for section types without an entry in the section TTL table.
DEFAULT_CACHE_TTL_SECONDS: int = int(os.getenv("DEFAULT_CACHE_TTL_SECONDS", "3600"))

CACHE_MAINTENANCE_INTERVAL_SECONDS: int = int(
    os.getenv("CACHE_MAINTENANCE_INTERVAL_SECONDS", "300")
)

# ---------------------------------------------------------------------------
# Trending
# ---------------------------------------------------------------------------

TRENDING_RECOMPUTE_INTERVAL_SECONDS: int = int(
    os.getenv("TRENDING_RECOMPUTE_INTERVAL_SECONDS", "600")
)

# ---------------------------------------------------------------------------
# Track catalogue
# ---------------------------------------------------------------------------

# Optional NDJSON file with one track per line.
CATALOGUE_PATH: str = os.getenv("CATALOGUE_PATH", "")

CATALOGUE_REFRESH_INTERVAL_SECONDS: int = int(
    os.getenv("CATALOGUE_REFRESH_INTERVAL_SECONDS", "300")
)
