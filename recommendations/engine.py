"""Recommendation core: wires behaviour ingestion, trending and the response cache."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from recommendations.behavior_store import BehaviorStore
from recommendations.cache import CacheManager
from recommendations.catalogue import TrackMetadataProvider
from recommendations.models import (
    BehaviorAction,
    RecommendationRequest,
    RecommendationResponse,
    UserBehavior,
    UserProfile,
)
from recommendations.trending import TrendingAnalyzer
from recommendations.user_profile import UserProfileManager

logger = logging.getLogger(__name__)


class RecommendationCore:
    """Owns the profile, trending and cache components for one process.

    Construct one instance at start-up and hand it to whatever serves
    requests.  Every :class:`~recommendations.models.UserBehavior` goes
    through :meth:`record_behavior`, which updates the user's profile and
    the global popularity counters.  The recommendation generator (outside
    this package) reads profiles and trending data, and stores its output
    through :meth:`cache_recommendations`.

    Cached responses are not invalidated on every behaviour event; call
    :meth:`refresh_profile` when a user's profile should be rebuilt, which
    also drops that user's cached responses.

    Args:
        metadata: Source of track metadata shared by all components.
        behavior_store: Optional pre-built store (defaults to a new one).
        cache: Optional pre-built cache (defaults to a new one).
        clock: Returns the current UTC time. Injected for tests.
    """

    def __init__(
        self,
        metadata: TrackMetadataProvider,
        behavior_store: BehaviorStore | None = None,
        cache: CacheManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.behavior_store = behavior_store or BehaviorStore()
        self.profiles = UserProfileManager(self.behavior_store, metadata, clock=self._clock)
        self.trending = TrendingAnalyzer(metadata, clock=self._clock)
        self.cache = cache or CacheManager(clock=self._clock)

    # ------------------------------------------------------------------
    # Behaviour
    # ------------------------------------------------------------------

    def record_behavior(
        self,
        behavior: UserBehavior,
        *,
        region: str | None = None,
        age_group: str | None = None,
    ) -> None:
        """Fold *behavior* into the user's profile and the global counters.

        Args:
            behavior: The interaction to record.
            region: Optional region code of the listener; feeds regional
                trending and the multi-region trending boost for plays.
            age_group: Optional age bracket of the listener; feeds the
                multi-age-group trending boost for plays.
        """
        self.profiles.record_behavior(behavior)

        if behavior.action == BehaviorAction.PLAY:
            self.trending.record_play(
                behavior.track_id,
                behavior.user_id,
                behavior.listen_duration,
                timestamp=behavior.timestamp,
                region=region,
                age_group=age_group,
            )
        elif behavior.action == BehaviorAction.SKIP:
            self.trending.record_skip(
                behavior.track_id, behavior.user_id, behavior.listen_duration
            )
        elif behavior.action == BehaviorAction.SHARE:
            self.trending.record_share(behavior.track_id, behavior.user_id)
        elif behavior.action == BehaviorAction.ADD_TO_PLAYLIST:
            self.trending.record_playlist_addition(behavior.track_id, behavior.user_id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> UserProfile:
        return self.profiles.get_profile(user_id)

    def refresh_profile(self, user_id: str) -> UserProfile:
        """Rebuild *user_id*'s profile and drop their now-stale cached responses."""
        profile = self.profiles.rebuild_profile(user_id)
        removed = self.cache.invalidate_user(user_id)
        logger.debug(
            "Refreshed profile for user %r (version %d); %d cache entries dropped.",
            user_id,
            profile.version,
            removed,
        )
        return profile

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_cached_recommendations(
        self, request: RecommendationRequest
    ) -> RecommendationResponse | None:
        return self.cache.get(request)

    def cache_recommendations(
        self, request: RecommendationRequest, response: RecommendationResponse
    ) -> None:
        """Cache *response*, stamping it with the user's current profile version if unset.

        The caller's *response* is left untouched; a stamped copy is cached.
        """
        if response.metadata.user_profile_version is None:
            version = self.profiles.get_profile(request.user_id).version
            response = replace(
                response,
                metadata=replace(response.metadata, user_profile_version=version),
            )
        self.cache.set(request, response)

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def run_maintenance(self) -> None:
        """Recompute trending state and sweep the cache once."""
        self.trending.recompute_trending()
        self.cache.perform_maintenance()

    def start_background_loops(
        self, trending_interval_seconds: int, cache_interval_seconds: int
    ) -> None:
        """Start the trending recompute and cache maintenance daemon threads."""
        self.trending.start_recompute_loop(trending_interval_seconds)
        self.cache.start_maintenance_loop(cache_interval_seconds)
