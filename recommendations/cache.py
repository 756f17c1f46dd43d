"""TTL cache for generated recommendation responses."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from recommendations.models import (
    CacheEntry,
    CacheStats,
    RecommendationContext,
    RecommendationRequest,
    RecommendationResponse,
    ResponseMetadata,
    SectionType,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=1)

# Real-time and social sections expire fastest; broad categories live longest
SECTION_TTLS: dict[SectionType, timedelta] = {
    SectionType.DISCOVER_WEEKLY: timedelta(minutes=60),
    SectionType.DAILY_MIX: timedelta(minutes=30),
    SectionType.RELEASE_RADAR: timedelta(minutes=120),
    SectionType.RECENTLY_PLAYED: timedelta(minutes=10),
    SectionType.JUMP_BACK_IN: timedelta(minutes=15),
    SectionType.HEAVY_ROTATION: timedelta(minutes=60),
    SectionType.BECAUSE_YOU_LIKED: timedelta(minutes=45),
    SectionType.SIMILAR_ARTISTS: timedelta(minutes=90),
    SectionType.TRENDING_NOW: timedelta(minutes=15),
    SectionType.NEW_RELEASES: timedelta(minutes=180),
    SectionType.CHARTS: timedelta(minutes=60),
    SectionType.MORNING_MIX: timedelta(minutes=30),
    SectionType.EVENING_CHILL: timedelta(minutes=30),
    SectionType.WORKOUT_MIX: timedelta(minutes=120),
    SectionType.FOCUS_MUSIC: timedelta(minutes=180),
    SectionType.FRIENDS_LISTENING: timedelta(minutes=5),
    SectionType.POPULAR_IN_NETWORK: timedelta(minutes=30),
    SectionType.GENRE_BASED: timedelta(minutes=240),
    SectionType.MOOD_BASED: timedelta(minutes=90),
    SectionType.ACTIVITY_BASED: timedelta(minutes=120),
}

_EVICTION_FRACTION = 0.1
_MAINTENANCE_FILL_THRESHOLD = 0.9


def _section_value(section_type: SectionType | str) -> str:
    return section_type.value if isinstance(section_type, SectionType) else str(section_type)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("|", "\\|").replace(",", "\\,")


def _join_sorted(values: list[str]) -> str:
    return ",".join(_escape(v) for v in sorted(values))


def cache_key(request: RecommendationRequest) -> str:
    """Build the deterministic cache key for *request*.

    Fields are joined with ``|`` and list items with ``,``; both separators
    (and the ``\\`` escape character) are backslash-escaped inside values,
    so ``["a,b"]`` and ``["a", "b"]`` give different keys.  List-valued
    fields are sorted before joining so requests that differ only in list
    order share a key.
    """
    components = [
        _escape(request.user_id),
        _escape(_section_value(request.section_type)),
        str(request.limit),
        _escape(request.algorithm or "default"),
        _escape(request.diversity_level or "medium"),
        _escape(request.freshness_level or "medium"),
        _join_sorted(request.exclude_track_ids),
        _join_sorted(request.seed_tracks),
        _join_sorted(request.seed_artists),
        _join_sorted(request.seed_genres),
    ]
    context = request.context
    if context is not None:
        components.extend(
            _escape(value)
            for value in (
                context.time_of_day.value,
                context.day_of_week,
                context.season,
                context.activity or "",
                context.mood or "",
                context.location or "",
            )
        )
    return "|".join(components)


class CacheManager:
    """In-memory cache of :class:`~recommendations.models.RecommendationResponse` objects.

    Entries expire after a TTL chosen per section type (see
    :data:`SECTION_TTLS`).  Expiry is lazy: an expired entry is removed
    when a lookup finds it.  :meth:`perform_maintenance` sweeps expired
    entries in bulk and should be run periodically, e.g. via
    :meth:`start_maintenance_loop`.

    When an insert would exceed *max_size*, the 10% of entries with the
    oldest ``last_accessed`` are evicted first.  This is an approximate LRU:
    accesses are O(1) and the O(n log n) sort only happens on eviction.

    All public methods are thread-safe; concurrent maintenance sweeps are
    harmless (a second sweep finds nothing to do).

    Args:
        max_size: Maximum number of entries held. Defaults to 1000.
        default_ttl: TTL for section types missing from the table.
        clock: Returns the current UTC time. Injected for tests.

    Raises:
        ValueError: If *max_size* is less than 1.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size!r}")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._maintenance_thread: threading.Thread | None = None

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Lookups and inserts
    # ------------------------------------------------------------------

    def get(self, request: RecommendationRequest) -> RecommendationResponse | None:
        """Return the cached response for *request*, or ``None`` on a miss.

        An entry past its ``expires_at`` counts as a miss and is removed.
        A hit bumps the entry's ``hit_count`` and ``last_accessed`` and
        returns a response flagged ``cache_hit=True`` with zero processing
        time.
        """
        key = cache_key(request)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if now > entry.expires_at:
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache entry expired for key %r", key)
                return None
            entry.hit_count += 1
            entry.last_accessed = now
            self._hits += 1
            return RecommendationResponse(
                tracks=list(entry.recommendations),
                total_available=len(entry.recommendations),
                algorithm=entry.algorithm,
                generated_at=entry.generated_at,
                valid_until=entry.expires_at,
                metadata=ResponseMetadata(
                    processing_time_ms=0.0,
                    cache_hit=True,
                    user_profile_version=entry.user_profile_version,
                ),
            )

    def set(self, request: RecommendationRequest, response: RecommendationResponse) -> None:
        """Store *response* under *request*'s key.

        Responses without tracks are not cached.  When the cache is full
        and the key is new, the least recently accessed entries are
        evicted first.
        """
        if not response.tracks:
            logger.debug("Not caching empty response for user %r", request.user_id)
            return

        key = cache_key(request)
        now = self._clock()
        entry = CacheEntry(
            user_id=request.user_id,
            section_type=request.section_type,
            recommendations=list(response.tracks),
            generated_at=response.generated_at,
            expires_at=now + self.get_ttl(request.section_type),
            hit_count=0,
            last_accessed=now,
            context=request.context or RecommendationContext.at(now),
            algorithm=response.algorithm,
            user_profile_version=response.metadata.user_profile_version,
        )
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = entry

    def warm_up(
        self,
        requests: Iterable[RecommendationRequest],
        generate: Callable[[RecommendationRequest], RecommendationResponse],
    ) -> int:
        """Fill the cache for every request that is not already cached.

        Args:
            requests: Requests to pre-compute, e.g. a user's home-feed sections.
            generate: Produces a fresh response for a request.

        Returns:
            The number of requests that were generated and offered to the cache.
        """
        generated = 0
        for request in requests:
            with self._lock:
                entry = self._entries.get(cache_key(request))
                if entry is not None and self._clock() <= entry.expires_at:
                    continue
            self.set(request, generate(request))
            generated += 1
        logger.info("Cache warm-up generated %d responses.", generated)
        return generated

    def get_ttl(self, section_type: SectionType | str) -> timedelta:
        """Return the TTL for *section_type*, or the default for unknown sections."""
        try:
            section = SectionType(section_type)
        except ValueError:
            return self._default_ttl
        return SECTION_TTLS.get(section, self._default_ttl)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_user(self, user_id: str) -> int:
        """Drop every entry belonging to *user_id*. Returns the number removed."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.user_id == user_id]
            for key in keys:
                del self._entries[key]
        logger.debug("Invalidated %d cache entries for user %r", len(keys), user_id)
        return len(keys)

    def invalidate_section(self, user_id: str, section_type: SectionType | str) -> int:
        """Drop *user_id*'s entries for one section. Returns the number removed."""
        section = _section_value(section_type)
        with self._lock:
            keys = [
                k
                for k, e in self._entries.items()
                if e.user_id == user_id and _section_value(e.section_type) == section
            ]
            for key in keys:
                del self._entries[key]
        return len(keys)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_expired_entries(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            keys = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def perform_maintenance(self) -> None:
        """Sweep expired entries, then evict if the cache is still over 90% full."""
        with self._lock:
            expired = self.clear_expired_entries()
            if len(self._entries) > self._max_size * _MAINTENANCE_FILL_THRESHOLD:
                self._evict_oldest()
            size = len(self._entries)
        logger.info(
            "Cache maintenance completed. Removed %d expired entries. Current cache size: %d",
            expired,
            size,
        )

    def start_maintenance_loop(self, interval_seconds: int = 300) -> None:
        """Start a background daemon thread that periodically calls :meth:`perform_maintenance`.

        Safe to call multiple times; only one thread is started.
        """
        if self._maintenance_thread is not None and self._maintenance_thread.is_alive():
            return
        self._maintenance_thread = threading.Thread(
            target=self._maintenance_loop,
            args=(interval_seconds,),
            name="cache-maintenance",
            daemon=True,
        )
        self._maintenance_thread.start()
        logger.debug("Cache maintenance loop started (interval=%ds).", interval_seconds)

    def get_cache_stats(self) -> CacheStats:
        with self._lock:
            entries = list(self._entries.values())
            hits, misses = self._hits, self._misses
        lookups = hits + misses
        stats = CacheStats(
            total_entries=len(entries),
            hits=hits,
            misses=misses,
            hit_ratio=hits / lookups if lookups else 0.0,
        )
        if entries:
            generated = [e.generated_at for e in entries]
            stats.average_hit_count = sum(e.hit_count for e in entries) / len(entries)
            stats.oldest_entry = min(generated)
            stats.newest_entry = max(generated)
        return stats

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _evict_oldest(self) -> None:
        """Remove the least recently accessed tenth of the capacity (at least one entry)."""
        to_remove = max(1, math.floor(self._max_size * _EVICTION_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda item: item[1].last_accessed)
        for key, _ in oldest[:to_remove]:
            del self._entries[key]
        logger.debug("Evicted %d cache entries.", min(to_remove, len(oldest)))

    def _maintenance_loop(self, interval_seconds: int) -> None:
        """Periodically run cache maintenance. Runs in a daemon thread."""
        while True:
            time.sleep(interval_seconds)
            try:
                self.perform_maintenance()
            except Exception:
                logger.exception("Cache maintenance failed.")
