"""Entry point: wires all components and runs the periodic maintenance loops."""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import config
from recommendations.behavior_store import BehaviorStore
from recommendations.cache import CacheManager
from recommendations.catalogue import TrackCatalogue
from recommendations.engine import RecommendationCore
from recommendations.models import (
    AudioFeatures,
    BehaviorAction,
    TimeOfDay,
    Track,
    UserBehavior,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# NDJSON loading
# ---------------------------------------------------------------------------


def _read_ndjson(path: str) -> Iterator[dict[str, Any]]:
    """Yield one dict per non-blank line of *path*; malformed lines are logged and skipped."""
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed JSON on %s line %d", path, line_no)


def track_from_dict(record: dict[str, Any]) -> Track:
    """Build a :class:`~recommendations.models.Track` from a catalogue record.

    Raises:
        KeyError: If ``id`` or ``artist_id`` is missing.
    """
    features = record.get("audio_features")
    return Track(
        track_id=record["id"],
        title=record.get("title", ""),
        artist_id=record["artist_id"],
        genres=list(record.get("genres", [])),
        duration=int(record.get("duration", 180)),
        audio_features=AudioFeatures(**features) if features else None,
    )


def behavior_from_dict(record: dict[str, Any]) -> UserBehavior:
    """Build a :class:`~recommendations.models.UserBehavior` from an event record.

    ``timestamp`` is an ISO-8601 string, optionally ``Z``-suffixed (naive
    values are taken as UTC).
    ``time_of_day`` defaults to the part of day of the timestamp.

    Raises:
        KeyError: If a required field is missing.
        ValueError: If ``action``, ``time_of_day`` or ``timestamp`` is invalid.
    """
    # fromisoformat only accepts a trailing "Z" from Python 3.11
    timestamp = datetime.fromisoformat(record["timestamp"].replace("Z", "+00:00"))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    time_of_day = record.get("time_of_day")
    duration = record.get("listen_duration")
    return UserBehavior(
        user_id=record["user_id"],
        track_id=record["track_id"],
        action=BehaviorAction(record["action"]),
        timestamp=timestamp,
        listen_duration=float(duration) if duration is not None else None,
        time_of_day=(
            TimeOfDay(time_of_day) if time_of_day else TimeOfDay.from_hour(timestamp.hour)
        ),
    )


def load_catalogue(path: str) -> list[Track]:
    tracks = []
    for record in _read_ndjson(path):
        try:
            tracks.append(track_from_dict(record))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping invalid catalogue record: %r", record)
    return tracks


def replay_behaviors(core: RecommendationCore, path: str) -> int:
    """Feed every valid event in *path* through *core*. Returns the number replayed.

    Optional ``region`` and ``age_group`` keys are passed on to trending.
    """
    replayed = 0
    for record in _read_ndjson(path):
        try:
            behavior = behavior_from_dict(record)
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping invalid behaviour record: %r", record)
            continue
        core.record_behavior(
            behavior, region=record.get("region"), age_group=record.get("age_group")
        )
        replayed += 1
    return replayed


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_core(catalogue: TrackCatalogue) -> RecommendationCore:
    """Construct the :class:`~recommendations.engine.RecommendationCore` from :mod:`config`.

    Args:
        catalogue: The loaded :class:`~recommendations.catalogue.TrackCatalogue`.

    Returns:
        A ready-to-use core whose background loops are not yet started.
    """
    return RecommendationCore(
        metadata=catalogue,
        behavior_store=BehaviorStore(max_events_per_user=config.MAX_BEHAVIORS_PER_USER),
        cache=CacheManager(
            max_size=config.MAX_CACHE_SIZE,
            default_ttl=timedelta(seconds=config.DEFAULT_CACHE_TTL_SECONDS),
        ),
    )


def main() -> None:
    """Initialise all components and run until signalled.

    Startup sequence:
    1. Load the track catalogue (if ``CATALOGUE_PATH`` is set).
    2. Build the recommendation core.
    3. Replay stored behaviour events (if ``BEHAVIOR_REPLAY_PATH`` is set)
       and compute initial trending state.
    4. Start background threads (catalogue refresh, trending recompute,
       cache maintenance).
    5. Block until ``SIGTERM``/``SIGINT``.
    """
    loader = (lambda: load_catalogue(config.CATALOGUE_PATH)) if config.CATALOGUE_PATH else None
    catalogue = TrackCatalogue(
        loader=loader,
        refresh_interval_seconds=config.CATALOGUE_REFRESH_INTERVAL_SECONDS,
    )
    catalogue.refresh()
    logger.info("Catalogue loaded: %d tracks.", len(catalogue))

    core = build_core(catalogue)

    if config.BEHAVIOR_REPLAY_PATH:
        logger.info("Replaying behaviour events from %s…", config.BEHAVIOR_REPLAY_PATH)
        replayed = replay_behaviors(core, config.BEHAVIOR_REPLAY_PATH)
        logger.info("Replayed %d behaviour events.", replayed)
    core.run_maintenance()

    if loader is not None:
        catalogue.start_refresh_loop()
    core.start_background_loops(
        config.TRENDING_RECOMPUTE_INTERVAL_SECONDS,
        config.CACHE_MAINTENANCE_INTERVAL_SECONDS,
    )

    stop = threading.Event()

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down…", sig_name)
        stop.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    logger.info("Recommendation core running.")
    stop.wait()
    stats = core.cache.get_cache_stats()
    logger.info(
        "Final cache stats: %d entries, hit ratio %.2f", stats.total_entries, stats.hit_ratio
    )
    sys.exit(0)


if __name__ == "__main__":
    main()
