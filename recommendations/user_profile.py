"""User profile manager: behaviour ingestion and preference scoring."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone

import numpy as np

from recommendations.behavior_store import BehaviorStore
from recommendations.catalogue import TrackMetadataProvider
from recommendations.models import (
    ArtistPreference,
    AudioFeaturePreferences,
    BehaviorAction,
    GenrePreference,
    ListeningPattern,
    SkipBehavior,
    SocialPreferences,
    TimeOfDay,
    TimePreference,
    UserBehavior,
    UserProfile,
    ValueRange,
    weekday_name,
)

logger = logging.getLogger(__name__)

MAX_GENRE_PREFERENCES = 20
MAX_ARTIST_PREFERENCES = 50

_FULL_LISTEN_SECONDS = 30.0
_FOLLOW_BOOST = 1.2
_DEFAULT_SKIP_POINT = 30.0
_SKIP_AFTER_REPEAT_RATE = 0.7
_SKIP_LONG_TRACKS_POINT = 60.0
_DEFAULT_ENERGY = 0.5

# Seeded preferences for users we know nothing about yet
_DEFAULT_TIME_PREFERENCES = {
    TimeOfDay.MORNING: (["Pop", "Indie"], "medium", ["uplifting"]),
    TimeOfDay.AFTERNOON: (["Rock", "Electronic"], "high", ["energetic"]),
    TimeOfDay.EVENING: (["Jazz", "Folk"], "medium", ["relaxing"]),
    TimeOfDay.NIGHT: (["Ambient", "Classical"], "low", ["calm"]),
}


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _clamp(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


def genre_score(play_count: int, skip_count: int, average_listen_time: float) -> float:
    """Preference score of a genre in ``[0, 1]``.

    ``plays / interactions`` rewards genres that are played rather than
    skipped, ``1 - min(2 * skip_rate, 1)`` zeroes genres skipped half the
    time or more, and ``min(avg_listen / 30, 1)`` discounts genres the user
    only listens to for a few seconds.
    """
    total = play_count + skip_count
    skip_rate = _ratio(skip_count, total)
    score = play_count / max(total, 1)
    score *= 1 - min(skip_rate * 2, 1)
    score *= min(average_listen_time / _FULL_LISTEN_SECONDS, 1)
    return _clamp(score)


def artist_score(play_count: int, skip_count: int, followed: bool) -> float:
    """Preference score of an artist in ``[0, 1]``; followed artists get a x1.2 boost."""
    total = play_count + skip_count
    skip_rate = _ratio(skip_count, total)
    score = play_count / max(total, 1)
    score *= 1 - min(skip_rate * 2, 1)
    if followed:
        score *= _FOLLOW_BOOST
    return _clamp(score)


def _energy_level(energy: float) -> str:
    if energy < 0.4:
        return "low"
    if energy < 0.7:
        return "medium"
    return "high"


def _top_keys(counts: Counter, n: int) -> list[str]:
    return [key for key, _ in counts.most_common(n)]


class UserProfileManager:
    """Maintains one :class:`~recommendations.models.UserProfile` per user.

    Behaviour is pushed in through :meth:`record_behavior`, which appends
    to the :class:`~recommendations.behavior_store.BehaviorStore` and then
    applies a cheap incremental update to the cached profile.  Fields the
    incremental path does not touch (listening patterns, skip behaviour,
    time-based, audio-feature and social preferences) are refreshed by
    :meth:`rebuild_profile`, which also corrects any drift in the
    genre/artist scores.

    Profiles live for the lifetime of the manager; nothing is persisted.

    Args:
        behavior_store: Store holding the raw per-user event logs.
        metadata: Source of genre / artist / audio-feature data per track.
        clock: Returns the current UTC time. Injected for tests.
    """

    def __init__(
        self,
        behavior_store: BehaviorStore,
        metadata: TrackMetadataProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._behaviors = behavior_store
        self._metadata = metadata
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._profiles: dict[str, UserProfile] = {}
        self._follows: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Profile access
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> UserProfile:
        """Return the profile for *user_id*, building it on first access.

        A user with no recorded behaviour gets a default profile seeded with
        time-of-day genre preferences.  This never raises for unknown users.
        """
        with self._lock:
            profile = self._profiles.get(user_id)
        if profile is not None:
            return profile

        with self._behaviors.user_lock(user_id):
            with self._lock:
                profile = self._profiles.get(user_id)
                if profile is not None:
                    return profile
            behaviors = self._behaviors.get_behaviors(user_id)
            if behaviors:
                profile = self._build_profile(user_id, behaviors, version=1)
            else:
                profile = self._default_profile(user_id)
            with self._lock:
                self._profiles[user_id] = profile
            return profile

    def rebuild_profile(self, user_id: str) -> UserProfile:
        """Recompute the whole profile for *user_id* from its behaviour log.

        The new profile's version is one higher than the one it replaces.
        """
        with self._behaviors.user_lock(user_id):
            with self._lock:
                previous = self._profiles.get(user_id)
            version = previous.version + 1 if previous else 1
            behaviors = self._behaviors.get_behaviors(user_id)
            profile = self._build_profile(user_id, behaviors, version=version)
            with self._lock:
                self._profiles[user_id] = profile
        logger.info(
            "Rebuilt profile for user %r from %d events (version %d).",
            user_id,
            len(behaviors),
            version,
        )
        return profile

    def get_behaviors(self, user_id: str) -> list[UserBehavior]:
        return self._behaviors.get_behaviors(user_id)

    # ------------------------------------------------------------------
    # Event recording
    # ------------------------------------------------------------------

    def record_behavior(self, behavior: UserBehavior) -> None:
        """Append *behavior* to the log and fold it into the user's profile.

        If the user has no cached profile yet, the profile is built from
        the (now updated) log.  Otherwise the matching genre and artist
        entries are updated in place and rescored.  Either way the
        profile's ``version`` strictly increases.
        """
        user_id = behavior.user_id
        with self._behaviors.user_lock(user_id):
            self._behaviors.record(behavior)
            with self._lock:
                profile = self._profiles.get(user_id)
            if profile is None:
                profile = self._build_profile(
                    user_id, self._behaviors.get_behaviors(user_id), version=1
                )
                with self._lock:
                    self._profiles[user_id] = profile
                return
            self._apply_incremental(profile, behavior)
            profile.version += 1
            profile.last_updated = self._clock()

    # ------------------------------------------------------------------
    # Follows
    # ------------------------------------------------------------------

    def follow_artist(self, user_id: str, artist_id: str) -> None:
        """Mark *artist_id* as followed by *user_id* and rescore it."""
        self._set_follow(user_id, artist_id, True)

    def unfollow_artist(self, user_id: str, artist_id: str) -> None:
        self._set_follow(user_id, artist_id, False)

    def is_following(self, user_id: str, artist_id: str) -> bool:
        with self._lock:
            return artist_id in self._follows.get(user_id, ())

    def _set_follow(self, user_id: str, artist_id: str, followed: bool) -> None:
        with self._behaviors.user_lock(user_id):
            with self._lock:
                follows = self._follows.setdefault(user_id, set())
                if followed:
                    follows.add(artist_id)
                else:
                    follows.discard(artist_id)
                profile = self._profiles.get(user_id)
            if profile is None:
                return
            for pref in profile.favorite_artists:
                if pref.artist_id == artist_id:
                    pref.follow_status = followed
                    pref.score = artist_score(pref.play_count, pref.skip_count, followed)
            profile.favorite_artists = sorted(
                profile.favorite_artists, key=lambda a: a.score, reverse=True
            )
            profile.version += 1
            profile.last_updated = self._clock()

    # ------------------------------------------------------------------
    # Incremental update
    # ------------------------------------------------------------------

    def _apply_incremental(self, profile: UserProfile, behavior: UserBehavior) -> None:
        """Update the genre/artist entries touched by a single behaviour.

        Args:
            profile: The cached profile, mutated in place.
            behavior: The newly recorded event.
        """
        if behavior.action not in (BehaviorAction.PLAY, BehaviorAction.SKIP):
            return

        is_play = behavior.action == BehaviorAction.PLAY
        listened = behavior.listen_duration or 0.0
        # Readers hold the live profile; lists are rebuilt and swapped, never sorted in place
        genres = list(profile.favorite_genres)
        artists = list(profile.favorite_artists)
        genres_by_name = {g.genre: g for g in genres}

        for genre in self._metadata.get_genres(behavior.track_id):
            pref = genres_by_name.get(genre)
            if pref is None:
                # A first play scores 1.0; a first skip scores 0.0
                new_pref = GenrePreference(
                    genre=genre,
                    score=1.0 if is_play else 0.0,
                    play_count=1 if is_play else 0,
                    skip_count=0 if is_play else 1,
                    skip_rate=0.0 if is_play else 1.0,
                    average_listen_time=listened if is_play else 0.0,
                    recent_activity=behavior.timestamp,
                )
                genres.append(new_pref)
                genres_by_name[genre] = new_pref
                continue
            if is_play:
                total_listen = pref.average_listen_time * pref.play_count + listened
                pref.play_count += 1
                pref.average_listen_time = total_listen / pref.play_count
            else:
                pref.skip_count += 1
            pref.recent_activity = max(pref.recent_activity, behavior.timestamp)
            pref.skip_rate = _ratio(pref.skip_count, pref.play_count + pref.skip_count)
            pref.score = genre_score(pref.play_count, pref.skip_count, pref.average_listen_time)

        artist_id = self._metadata.get_artist_id(behavior.track_id)
        if artist_id is not None:
            artist = next((a for a in artists if a.artist_id == artist_id), None)
            if artist is None:
                artists.append(
                    ArtistPreference(
                        artist_id=artist_id,
                        score=1.0 if is_play else 0.0,
                        play_count=1 if is_play else 0,
                        skip_count=0 if is_play else 1,
                        skip_rate=0.0 if is_play else 1.0,
                        follow_status=self.is_following(profile.user_id, artist_id),
                        last_played=behavior.timestamp,
                    )
                )
            else:
                if is_play:
                    artist.play_count += 1
                    artist.last_played = behavior.timestamp
                else:
                    artist.skip_count += 1
                artist.skip_rate = _ratio(
                    artist.skip_count, artist.play_count + artist.skip_count
                )
                artist.score = artist_score(
                    artist.play_count, artist.skip_count, artist.follow_status
                )

        profile.favorite_genres = sorted(genres, key=lambda g: g.score, reverse=True)[
            :MAX_GENRE_PREFERENCES
        ]
        profile.favorite_artists = sorted(artists, key=lambda a: a.score, reverse=True)[
            :MAX_ARTIST_PREFERENCES
        ]

    # ------------------------------------------------------------------
    # Full rebuild
    # ------------------------------------------------------------------

    def _build_profile(
        self, user_id: str, behaviors: list[UserBehavior], version: int
    ) -> UserProfile:
        if not behaviors:
            profile = self._default_profile(user_id)
            profile.version = version
            return profile
        return UserProfile(
            user_id=user_id,
            favorite_genres=self._calculate_genre_preferences(behaviors),
            favorite_artists=self._calculate_artist_preferences(user_id, behaviors),
            listening_patterns=self._calculate_listening_patterns(behaviors),
            skip_behavior=self._calculate_skip_behavior(behaviors),
            audio_feature_preferences=self._calculate_audio_feature_preferences(behaviors),
            time_based_preferences=self._calculate_time_based_preferences(behaviors),
            social_preferences=self._calculate_social_preferences(behaviors),
            version=version,
            last_updated=self._clock(),
        )

    def _calculate_genre_preferences(
        self, behaviors: list[UserBehavior]
    ) -> list[GenrePreference]:
        stats: dict[str, dict] = {}
        for behavior in behaviors:
            if behavior.action not in (BehaviorAction.PLAY, BehaviorAction.SKIP):
                continue
            for genre in self._metadata.get_genres(behavior.track_id):
                entry = stats.setdefault(
                    genre,
                    {"plays": 0, "skips": 0, "listen": 0.0, "recent": behavior.timestamp},
                )
                if behavior.action == BehaviorAction.PLAY:
                    entry["plays"] += 1
                    entry["listen"] += behavior.listen_duration or 0.0
                else:
                    entry["skips"] += 1
                entry["recent"] = max(entry["recent"], behavior.timestamp)

        preferences = []
        for genre, entry in stats.items():
            average_listen = _ratio(entry["listen"], entry["plays"])
            preferences.append(
                GenrePreference(
                    genre=genre,
                    score=genre_score(entry["plays"], entry["skips"], average_listen),
                    play_count=entry["plays"],
                    skip_count=entry["skips"],
                    skip_rate=_ratio(entry["skips"], entry["plays"] + entry["skips"]),
                    average_listen_time=average_listen,
                    recent_activity=entry["recent"],
                )
            )
        preferences.sort(key=lambda g: g.score, reverse=True)
        return preferences[:MAX_GENRE_PREFERENCES]

    def _calculate_artist_preferences(
        self, user_id: str, behaviors: list[UserBehavior]
    ) -> list[ArtistPreference]:
        stats: dict[str, dict] = {}
        for behavior in behaviors:
            if behavior.action not in (BehaviorAction.PLAY, BehaviorAction.SKIP):
                continue
            artist_id = self._metadata.get_artist_id(behavior.track_id)
            if artist_id is None:
                continue
            entry = stats.setdefault(
                artist_id, {"plays": 0, "skips": 0, "last_played": behavior.timestamp}
            )
            if behavior.action == BehaviorAction.PLAY:
                entry["plays"] += 1
                entry["last_played"] = behavior.timestamp
            else:
                entry["skips"] += 1

        preferences = []
        for artist_id, entry in stats.items():
            followed = self.is_following(user_id, artist_id)
            preferences.append(
                ArtistPreference(
                    artist_id=artist_id,
                    score=artist_score(entry["plays"], entry["skips"], followed),
                    play_count=entry["plays"],
                    skip_count=entry["skips"],
                    skip_rate=_ratio(entry["skips"], entry["plays"] + entry["skips"]),
                    follow_status=followed,
                    last_played=entry["last_played"],
                )
            )
        preferences.sort(key=lambda a: a.score, reverse=True)
        return preferences[:MAX_ARTIST_PREFERENCES]

    def _calculate_listening_patterns(
        self, behaviors: list[UserBehavior]
    ) -> list[ListeningPattern]:
        buckets: dict[tuple[TimeOfDay, str], dict] = {}
        for behavior in behaviors:
            if behavior.action != BehaviorAction.PLAY:
                continue
            key = (behavior.time_of_day, weekday_name(behavior.timestamp))
            bucket = buckets.setdefault(
                key, {"genres": Counter(), "sessions": [], "energy": []}
            )
            bucket["genres"].update(self._metadata.get_genres(behavior.track_id))
            if behavior.listen_duration:
                bucket["sessions"].append(behavior.listen_duration)
            bucket["energy"].append(self._track_energy(behavior.track_id))

        patterns = []
        for (time_of_day, day_of_week), bucket in buckets.items():
            patterns.append(
                ListeningPattern(
                    time_of_day=time_of_day,
                    day_of_week=day_of_week,
                    preferred_genres=_top_keys(bucket["genres"], 5),
                    average_session_length=(
                        float(np.mean(bucket["sessions"])) if bucket["sessions"] else 0.0
                    ),
                    energy_level=_energy_level(float(np.mean(bucket["energy"]))),
                )
            )
        return patterns

    def _calculate_skip_behavior(self, behaviors: list[UserBehavior]) -> SkipBehavior:
        skips = [b for b in behaviors if b.action == BehaviorAction.SKIP]
        total_plays = sum(1 for b in behaviors if b.action == BehaviorAction.PLAY)
        total_skips = len(skips)
        skip_rate = _ratio(total_skips, total_skips + total_plays)

        skip_points = [b.listen_duration for b in skips if b.listen_duration]
        average_skip_point = (
            float(np.mean(skip_points)) if skip_points else _DEFAULT_SKIP_POINT
        )

        reasons: Counter = Counter()
        for behavior in skips:
            reasons.update(self._metadata.get_genres(behavior.track_id))

        return SkipBehavior(
            total_skips=total_skips,
            skip_rate=skip_rate,
            average_skip_point=average_skip_point,
            skip_reasons=dict(reasons),
            skip_after_repeat=skip_rate > _SKIP_AFTER_REPEAT_RATE,
            skip_similar_artists=False,
            skip_long_tracks=total_skips > 0 and average_skip_point < _SKIP_LONG_TRACKS_POINT,
        )

    def _calculate_audio_feature_preferences(
        self, behaviors: list[UserBehavior]
    ) -> AudioFeaturePreferences:
        features = []
        for behavior in behaviors:
            if behavior.action != BehaviorAction.PLAY:
                continue
            track = self._metadata.get_track(behavior.track_id)
            if track is not None and track.audio_features is not None:
                features.append(track.audio_features)
        if not features:
            return AudioFeaturePreferences()

        tempos = np.array([f.tempo for f in features])
        loudness = np.array([f.loudness for f in features])
        return AudioFeaturePreferences(
            danceability=float(np.mean([f.danceability for f in features])),
            energy=float(np.mean([f.energy for f in features])),
            valence=float(np.mean([f.valence for f in features])),
            acousticness=float(np.mean([f.acousticness for f in features])),
            instrumentalness=float(np.mean([f.instrumentalness for f in features])),
            tempo=ValueRange(float(tempos.min()), float(tempos.max()), float(tempos.mean())),
            loudness=ValueRange(
                float(loudness.min()), float(loudness.max()), float(loudness.mean())
            ),
        )

    def _calculate_time_based_preferences(
        self, behaviors: list[UserBehavior]
    ) -> dict[TimeOfDay, TimePreference]:
        counts: dict[TimeOfDay, Counter] = {t: Counter() for t in TimeOfDay}
        for behavior in behaviors:
            if behavior.action == BehaviorAction.PLAY:
                counts[behavior.time_of_day].update(
                    self._metadata.get_genres(behavior.track_id)
                )
        return {
            time_of_day: TimePreference(
                preferred_genres=_top_keys(counts[time_of_day], 3),
                energy_level=_DEFAULT_TIME_PREFERENCES[time_of_day][1],
            )
            for time_of_day in TimeOfDay
        }

    @staticmethod
    def _calculate_social_preferences(behaviors: list[UserBehavior]) -> SocialPreferences:
        shares = sum(1 for b in behaviors if b.action == BehaviorAction.SHARE)
        return SocialPreferences(share_frequency=_ratio(shares, len(behaviors)))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _track_energy(self, track_id: str) -> float:
        track = self._metadata.get_track(track_id)
        if track is None or track.audio_features is None:
            return _DEFAULT_ENERGY
        return track.audio_features.energy

    def _default_profile(self, user_id: str) -> UserProfile:
        return UserProfile(
            user_id=user_id,
            time_based_preferences={
                time_of_day: TimePreference(list(genres), energy, list(moods))
                for time_of_day, (genres, energy, moods) in _DEFAULT_TIME_PREFERENCES.items()
            },
            version=1,
            last_updated=self._clock(),
        )
