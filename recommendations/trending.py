"""Global popularity counters and sliding-window trending detection."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import numpy as np

from recommendations.catalogue import TrackMetadataProvider
from recommendations.models import (
    DEFAULT_TRACK_DURATION_SECONDS,
    PopularityData,
    TrendingData,
)

logger = logging.getLogger(__name__)

VELOCITY_WINDOW = timedelta(hours=24)
HISTORY_RETENTION = timedelta(days=30)

# Velocity reported for a track with plays now but none in the previous window
NEW_ACTIVITY_VELOCITY = 10.0
TRENDING_VELOCITY_THRESHOLD = 1.5
TRENDING_MIN_PLAY_COUNT = 1000

_COMPLETION_DECAY = 0.95

# Popularity score weights and normalisers
_PLAY_WEIGHT, _PLAY_NORM = 0.40, 1_000_000
_COMPLETION_WEIGHT = 0.25
_SKIP_WEIGHT = 0.20
_SHARE_WEIGHT, _SHARE_NORM = 0.10, 10_000
_PLAYLIST_WEIGHT, _PLAYLIST_NORM = 0.05, 50_000

_MULTI_REGION_BOOST = 1.2
_MULTI_AGE_GROUP_BOOST = 1.1


def compute_velocity(play_times: np.ndarray, now: float) -> float:
    """Ratio of plays in the last 24h to plays in the 24h before that.

    Args:
        play_times: POSIX timestamps of individual plays.
        now: The POSIX timestamp the windows end at.

    Returns:
        ``recent / previous``; when there were no previous plays, 10.0 if
        there are any recent plays (a spike of new activity) and 0.0
        otherwise.
    """
    window = VELOCITY_WINDOW.total_seconds()
    recent = int(np.count_nonzero(play_times > now - window))
    previous = int(
        np.count_nonzero((play_times > now - 2 * window) & (play_times <= now - window))
    )
    if previous == 0:
        return NEW_ACTIVITY_VELOCITY if recent > 0 else 0.0
    return recent / previous


def _rank(counts: dict[str, int]) -> dict[str, int]:
    """Rank keys by descending count (1 = highest); ties broken by key."""
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return {key: position for position, (key, _) in enumerate(ordered, start=1)}


class TrendingAnalyzer:
    """Tracks global per-track popularity and flags trending tracks.

    Every play, skip, share and playlist addition in the system updates the
    track's :class:`~recommendations.models.PopularityData` immediately.
    Trending state is only recomputed by :meth:`recompute_trending`, which
    is meant to run on a periodic sweep (see :meth:`start_recompute_loop`).

    A track is trending when its velocity (plays in the last 24h divided by
    plays in the previous 24h) exceeds 1.5 *and* it has more than 1000
    plays in total.  Trending tracks are ranked by velocity; each track's
    ``peak_rank`` remembers the best rank it ever reached.

    All public methods are thread-safe.

    Args:
        metadata: Source of track durations and genres.
        clock: Returns the current UTC time. Injected for tests.
    """

    def __init__(
        self,
        metadata: TrackMetadataProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._metadata = metadata
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._popularity: dict[str, PopularityData] = {}
        self._trending: dict[str, TrendingData] = {}
        # Per-track play history as (posix_ts, region, age_group) tuples
        self._history: dict[str, list[tuple[float, str | None, str | None]]] = {}
        self._listeners: dict[str, set[str]] = {}
        self._region_plays: dict[str, Counter] = {}
        self._recompute_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Event recording
    # ------------------------------------------------------------------

    def record_play(
        self,
        track_id: str,
        user_id: str,
        listen_duration: float | None,
        *,
        timestamp: datetime | None = None,
        region: str | None = None,
        age_group: str | None = None,
    ) -> None:
        """Count a play of *track_id* by *user_id*.

        Updates the play counter, the unique-listener count and the
        completion rate (an exponential moving average of the fraction of
        the track listened to), and appends to the play history used for
        velocity.  History older than 30 days is pruned.

        Args:
            track_id: The played track.
            user_id: The listening user.
            listen_duration: Seconds listened. ``None`` leaves the
                completion rate untouched.
            timestamp: When the play happened. Defaults to now.
            region: Optional region code of the listener.
            age_group: Optional age bracket of the listener.
        """
        now = self._clock()
        played_at = timestamp or now
        with self._lock:
            popularity = self._get_or_create(track_id)
            popularity.play_count += 1
            popularity.last_updated = now

            listeners = self._listeners.setdefault(track_id, set())
            if user_id not in listeners:
                listeners.add(user_id)
                popularity.unique_listeners += 1

            if listen_duration is not None:
                observed = min(max(listen_duration, 0.0) / self._track_duration(track_id), 1.0)
                if popularity.play_count == 1:
                    popularity.completion_rate = observed
                else:
                    popularity.completion_rate = (
                        popularity.completion_rate * _COMPLETION_DECAY
                        + observed * (1 - _COMPLETION_DECAY)
                    )

            if region:
                self._region_plays.setdefault(track_id, Counter())[region] += 1

            cutoff = (now - HISTORY_RETENTION).timestamp()
            history = self._history.get(track_id, [])
            history.append((played_at.timestamp(), region, age_group))
            self._history[track_id] = [entry for entry in history if entry[0] > cutoff]

    def record_skip(
        self, track_id: str, user_id: str, skip_point: float | None = None
    ) -> None:
        """Count a skip and recompute the track's skip rate."""
        with self._lock:
            popularity = self._get_or_create(track_id)
            popularity.skip_count += 1
            popularity.skip_rate = popularity.skip_count / (
                popularity.play_count + popularity.skip_count
            )
            popularity.last_updated = self._clock()
        logger.debug(
            "Skip of track=%r by user=%r at %ss", track_id, user_id, skip_point
        )

    def record_share(self, track_id: str, user_id: str) -> None:
        with self._lock:
            popularity = self._get_or_create(track_id)
            popularity.share_count += 1
            popularity.last_updated = self._clock()

    def record_playlist_addition(self, track_id: str, user_id: str) -> None:
        with self._lock:
            popularity = self._get_or_create(track_id)
            popularity.playlist_additions += 1
            popularity.last_updated = self._clock()

    def import_popularity(self, records: Iterable[PopularityData]) -> None:
        """Seed baseline counters, replacing any existing record per track.

        Args:
            records: Popularity snapshots, e.g. loaded from the catalogue
                service at start-up.
        """
        count = 0
        with self._lock:
            for record in records:
                self._popularity[record.track_id] = record
                count += 1
        logger.info("Imported popularity data for %d tracks.", count)

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def recompute_trending(self) -> None:
        """Recompute velocity, trending flags and all ranks for every track."""
        now = self._clock()
        now_ts = now.timestamp()
        window_start = now_ts - VELOCITY_WINDOW.total_seconds()
        retention_cutoff = (now - HISTORY_RETENTION).timestamp()

        with self._lock:
            updated: dict[str, TrendingData] = {}
            for track_id, popularity in self._popularity.items():
                history = [
                    entry
                    for entry in self._history.get(track_id, [])
                    if entry[0] > retention_cutoff
                ]
                if track_id in self._history:
                    self._history[track_id] = history
                play_times = np.fromiter(
                    (entry[0] for entry in history), dtype=np.float64, count=len(history)
                )
                velocity = compute_velocity(play_times, now_ts)
                recent = [entry for entry in history if entry[0] > window_start]
                previous = self._trending.get(track_id)
                updated[track_id] = TrendingData(
                    track_id=track_id,
                    play_count=popularity.play_count,
                    velocity=velocity,
                    regions=sorted({e[1] for e in recent if e[1]}),
                    age_groups=sorted({e[2] for e in recent if e[2]}),
                    trending=(
                        velocity > TRENDING_VELOCITY_THRESHOLD
                        and popularity.play_count > TRENDING_MIN_PLAY_COUNT
                    ),
                    peak_rank=previous.peak_rank if previous else None,
                    last_updated=now,
                )

            ranked = sorted(
                (data for data in updated.values() if data.trending),
                key=lambda data: (-data.velocity, data.track_id),
            )
            for rank, data in enumerate(ranked, start=1):
                data.trending_rank = rank
                if data.peak_rank is None or rank < data.peak_rank:
                    data.peak_rank = rank

            self._trending = updated
            self._update_popularity_ranks()

        logger.info(
            "Trending recomputed: %d tracks, %d trending.", len(updated), len(ranked)
        )

    def start_recompute_loop(self, interval_seconds: int = 600) -> None:
        """Start a background daemon thread that periodically calls :meth:`recompute_trending`.

        Safe to call multiple times; only one thread is started.
        """
        if self._recompute_thread is not None and self._recompute_thread.is_alive():
            return
        self._recompute_thread = threading.Thread(
            target=self._recompute_loop,
            args=(interval_seconds,),
            name="trending-recompute",
            daemon=True,
        )
        self._recompute_thread.start()
        logger.debug("Trending recompute loop started (interval=%ds).", interval_seconds)

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def get_trending_tracks(self, limit: int = 50) -> list[TrendingData]:
        """Return currently trending tracks, best trending rank first."""
        with self._lock:
            trending = [replace(d) for d in self._trending.values() if d.trending]
        trending.sort(key=lambda d: d.trending_rank)
        return trending[:limit]

    def get_popular_tracks(self, limit: int = 50) -> list[PopularityData]:
        """Return tracks ordered by total play count, most played first."""
        with self._lock:
            records = [replace(p) for p in self._popularity.values()]
        records.sort(key=lambda p: (-p.play_count, p.track_id))
        return records[:limit]

    def get_genre_popularity(self, genre: str, limit: int = 20) -> list[PopularityData]:
        """Return the most played tracks tagged with *genre*."""
        with self._lock:
            records = [
                replace(p)
                for p in self._popularity.values()
                if genre in self._metadata.get_genres(p.track_id)
            ]
        records.sort(key=lambda p: (-p.play_count, p.track_id))
        return records[:limit]

    def get_regional_trending(self, region: str, limit: int = 30) -> list[TrendingData]:
        """Return tracks recently played in *region*, fastest rising first."""
        with self._lock:
            records = [replace(d) for d in self._trending.values() if region in d.regions]
        records.sort(key=lambda d: (-d.velocity, d.track_id))
        return records[:limit]

    def get_popularity_data(self, track_id: str) -> PopularityData | None:
        with self._lock:
            record = self._popularity.get(track_id)
            return replace(record) if record else None

    def get_trending_data(self, track_id: str) -> TrendingData | None:
        with self._lock:
            record = self._trending.get(track_id)
            return replace(record) if record else None

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    def calculate_popularity_score(self, track_id: str) -> float:
        """Weighted popularity in ``[0, 1]``; 0 for tracks never seen.

        Weights: play count (normalised to millions) 40%, completion rate
        25%, low skip rate 20%, shares 10%, playlist additions 5%.
        """
        with self._lock:
            popularity = self._popularity.get(track_id)
            if popularity is None:
                return 0.0
            score = (
                min(popularity.play_count / _PLAY_NORM, 1) * _PLAY_WEIGHT
                + popularity.completion_rate * _COMPLETION_WEIGHT
                + (1 - popularity.skip_rate) * _SKIP_WEIGHT
                + min(popularity.share_count / _SHARE_NORM, 1) * _SHARE_WEIGHT
                + min(popularity.playlist_additions / _PLAYLIST_NORM, 1) * _PLAYLIST_WEIGHT
            )
        return min(score, 1.0)

    def calculate_trending_score(self, track_id: str) -> float:
        """Normalised velocity with multi-region / multi-age-group boosts, in ``[0, 1]``."""
        with self._lock:
            trending = self._trending.get(track_id)
            if trending is None or not trending.trending:
                return 0.0
            score = min(trending.velocity / NEW_ACTIVITY_VELOCITY, 1)
            if len(trending.regions) > 1:
                score *= _MULTI_REGION_BOOST
            if len(trending.age_groups) > 1:
                score *= _MULTI_AGE_GROUP_BOOST
        return min(score, 1.0)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_or_create(self, track_id: str) -> PopularityData:
        popularity = self._popularity.get(track_id)
        if popularity is None:
            popularity = self._popularity[track_id] = PopularityData(track_id=track_id)
        return popularity

    def _track_duration(self, track_id: str) -> float:
        track = self._metadata.get_track(track_id)
        if track is None or track.duration <= 0:
            return float(DEFAULT_TRACK_DURATION_SECONDS)
        return float(track.duration)

    def _update_popularity_ranks(self) -> None:
        """Recompute global, per-region and per-genre play-count ranks."""
        global_ranks = _rank({tid: p.play_count for tid, p in self._popularity.items()})

        region_counts: dict[str, dict[str, int]] = {}
        for track_id, counts in self._region_plays.items():
            for region, plays in counts.items():
                region_counts.setdefault(region, {})[track_id] = plays
        region_ranks = {region: _rank(counts) for region, counts in region_counts.items()}

        genre_counts: dict[str, dict[str, int]] = {}
        for track_id, popularity in self._popularity.items():
            for genre in self._metadata.get_genres(track_id):
                genre_counts.setdefault(genre, {})[track_id] = popularity.play_count
        genre_ranks = {genre: _rank(counts) for genre, counts in genre_counts.items()}

        for track_id, popularity in self._popularity.items():
            popularity.global_rank = global_ranks[track_id]
            popularity.region_ranks = {
                region: ranks[track_id]
                for region, ranks in region_ranks.items()
                if track_id in ranks
            }
            popularity.genre_ranks = {
                genre: ranks[track_id]
                for genre, ranks in genre_ranks.items()
                if track_id in ranks
            }

    def _recompute_loop(self, interval_seconds: int) -> None:
        """Periodically recompute trending state. Runs in a daemon thread."""
        while True:
            time.sleep(interval_seconds)
            try:
                self.recompute_trending()
            except Exception:
                logger.exception("Trending recompute failed.")
