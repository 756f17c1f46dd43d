"""Core domain dataclasses shared across all recommendation modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_TRACK_DURATION_SECONDS = 180

_WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"
)


class BehaviorAction(str, Enum):
    """Categories of user interaction pushed in by the player and playlist UI."""

    PLAY = "play"
    SKIP = "skip"
    SHARE = "share"
    ADD_TO_PLAYLIST = "add-to-playlist"


class TimeOfDay(str, Enum):
    """Coarse part of the day an interaction happened in."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def from_hour(cls, hour: int) -> TimeOfDay:
        """Map a 0-23 hour to its part of the day."""
        if 6 <= hour < 12:
            return cls.MORNING
        if 12 <= hour < 17:
            return cls.AFTERNOON
        if 17 <= hour < 22:
            return cls.EVENING
        return cls.NIGHT


class SectionType(str, Enum):
    """Named home-feed sections a recommendation can be generated for."""

    DISCOVER_WEEKLY = "discover_weekly"
    DAILY_MIX = "daily_mix"
    RELEASE_RADAR = "release_radar"
    RECENTLY_PLAYED = "recently_played"
    JUMP_BACK_IN = "jump_back_in"
    HEAVY_ROTATION = "heavy_rotation"
    BECAUSE_YOU_LIKED = "because_you_liked"
    SIMILAR_ARTISTS = "similar_artists"
    TRENDING_NOW = "trending_now"
    NEW_RELEASES = "new_releases"
    CHARTS = "charts"
    MORNING_MIX = "morning_mix"
    EVENING_CHILL = "evening_chill"
    WORKOUT_MIX = "workout_mix"
    FOCUS_MUSIC = "focus_music"
    FRIENDS_LISTENING = "friends_listening"
    POPULAR_IN_NETWORK = "popular_in_network"
    GENRE_BASED = "genre_based"
    MOOD_BASED = "mood_based"
    ACTIVITY_BASED = "activity_based"


def weekday_name(dt: datetime) -> str:
    """Return the lowercase English weekday name of *dt*."""
    return _WEEKDAYS[dt.weekday()]


def season_for(dt: datetime) -> str:
    """Return the (northern hemisphere) season *dt* falls in."""
    month = dt.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


@dataclass
class AudioFeatures:
    """Per-track audio descriptors as supplied by the metadata service."""

    danceability: float = 0.5
    energy: float = 0.5
    valence: float = 0.5
    acousticness: float = 0.5
    instrumentalness: float = 0.5
    tempo: float = 120.0
    loudness: float = -10.0


@dataclass
class Track:
    """A single track in the catalogue.

    Attributes:
        track_id: Unique identifier for the track.
        title: Human-readable title.
        artist_id: Identifier of the primary artist.
        genres: Genre labels (e.g. ``"Pop"``, ``"Jazz"``).
        duration: Length in seconds; used as the reference for completion rates.
        audio_features: Optional audio descriptors. ``None`` when unknown.
    """

    track_id: str
    title: str
    artist_id: str
    genres: list[str] = field(default_factory=list)
    duration: int = DEFAULT_TRACK_DURATION_SECONDS
    audio_features: AudioFeatures | None = None


# ---------------------------------------------------------------------------
# Behaviour events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserBehavior:
    """A single recorded user interaction. Never mutated after creation.

    Attributes:
        user_id: The interacting user.
        track_id: The track involved.
        action: What the user did.
        timestamp: When it happened (UTC).
        listen_duration: Seconds listened before the play ended or the skip
            happened. ``None`` when the client did not report it.
        time_of_day: Part of the user's local day the event happened in.
    """

    user_id: str
    track_id: str
    action: BehaviorAction
    timestamp: datetime
    listen_duration: float | None = None
    time_of_day: TimeOfDay = TimeOfDay.AFTERNOON


# ---------------------------------------------------------------------------
# User profile
# ---------------------------------------------------------------------------


@dataclass
class GenrePreference:
    genre: str
    score: float
    play_count: int
    skip_rate: float
    average_listen_time: float
    recent_activity: datetime
    skip_count: int = 0


@dataclass
class ArtistPreference:
    artist_id: str
    score: float
    play_count: int
    skip_rate: float
    follow_status: bool
    last_played: datetime
    skip_count: int = 0


@dataclass
class ListeningPattern:
    """Aggregated plays for one (time of day, weekday) bucket."""

    time_of_day: TimeOfDay
    day_of_week: str
    preferred_genres: list[str]
    average_session_length: float
    energy_level: str
    mood_tags: list[str] = field(default_factory=list)


@dataclass
class SkipBehavior:
    total_skips: int = 0
    skip_rate: float = 0.0
    average_skip_point: float = 30.0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    skip_after_repeat: bool = False
    skip_similar_artists: bool = False
    skip_long_tracks: bool = False


@dataclass
class ValueRange:
    min: float
    max: float
    preferred: float


@dataclass
class AudioFeaturePreferences:
    danceability: float = 0.5
    energy: float = 0.5
    valence: float = 0.5
    acousticness: float = 0.5
    instrumentalness: float = 0.5
    tempo: ValueRange = field(default_factory=lambda: ValueRange(60, 200, 120))
    loudness: ValueRange = field(default_factory=lambda: ValueRange(-30, 0, -10))


@dataclass
class TimePreference:
    preferred_genres: list[str] = field(default_factory=list)
    energy_level: str = "medium"
    mood_tags: list[str] = field(default_factory=list)


@dataclass
class SocialPreferences:
    share_frequency: float = 0.0
    follows_influencers: bool = False
    discovery_through_friends: bool = False
    collaborative_playlist_participation: float = 0.0
    trends_following: bool = False


@dataclass
class UserProfile:
    """Behaviour-derived preference model for a single user.

    Built by :class:`~recommendations.user_profile.UserProfileManager`,
    either incrementally (one behaviour at a time) or by a full rebuild
    from the user's behaviour log.

    Attributes:
        user_id: Unique identifier for the user.
        favorite_genres: Top 20 genre preferences, best first.
        favorite_artists: Top 50 artist preferences, best first.
        listening_patterns: One entry per (time of day, weekday) bucket.
        skip_behavior: Aggregate skip statistics.
        audio_feature_preferences: Averaged audio features of played tracks.
        time_based_preferences: Preferred genres per part of the day.
        social_preferences: Sharing statistics.
        version: Incremented on every mutation; consumers use it to detect
            that cached recommendations were built from an older profile.
        last_updated: When the profile last changed.
    """

    user_id: str
    favorite_genres: list[GenrePreference] = field(default_factory=list)
    favorite_artists: list[ArtistPreference] = field(default_factory=list)
    listening_patterns: list[ListeningPattern] = field(default_factory=list)
    skip_behavior: SkipBehavior = field(default_factory=SkipBehavior)
    audio_feature_preferences: AudioFeaturePreferences = field(
        default_factory=AudioFeaturePreferences
    )
    time_based_preferences: dict[TimeOfDay, TimePreference] = field(default_factory=dict)
    social_preferences: SocialPreferences = field(default_factory=SocialPreferences)
    version: int = 1
    last_updated: datetime | None = None


# ---------------------------------------------------------------------------
# Popularity / trending
# ---------------------------------------------------------------------------


@dataclass
class PopularityData:
    """Global (cross-user) counters for one track."""

    track_id: str
    play_count: int = 0
    unique_listeners: int = 0
    share_count: int = 0
    playlist_additions: int = 0
    skip_count: int = 0
    skip_rate: float = 0.0
    completion_rate: float = 0.0
    global_rank: int | None = None
    region_ranks: dict[str, int] = field(default_factory=dict)
    genre_ranks: dict[str, int] = field(default_factory=dict)
    last_updated: datetime | None = None


@dataclass
class TrendingData:
    """Velocity-derived trending signal for one track.

    ``peak_rank`` is the best (numerically lowest) ``trending_rank`` the
    track has ever held; it never increases once set.
    """

    track_id: str
    play_count: int
    velocity: float
    regions: list[str] = field(default_factory=list)
    age_groups: list[str] = field(default_factory=list)
    time_frame: str = "1d"
    trending: bool = False
    trending_rank: int | None = None
    peak_rank: int | None = None
    last_updated: datetime | None = None


# ---------------------------------------------------------------------------
# Recommendation requests / responses
# ---------------------------------------------------------------------------


@dataclass
class RecommendationContext:
    time_of_day: TimeOfDay
    day_of_week: str
    season: str
    activity: str | None = None
    mood: str | None = None
    location: str | None = None

    @classmethod
    def at(cls, dt: datetime) -> RecommendationContext:
        """Return the default context for the moment *dt*."""
        return cls(
            time_of_day=TimeOfDay.from_hour(dt.hour),
            day_of_week=weekday_name(dt),
            season=season_for(dt),
        )


@dataclass
class RecommendationRequest:
    user_id: str
    section_type: SectionType | str
    limit: int = 20
    algorithm: str | None = None
    diversity_level: str | None = None
    freshness_level: str | None = None
    exclude_track_ids: list[str] = field(default_factory=list)
    seed_tracks: list[str] = field(default_factory=list)
    seed_artists: list[str] = field(default_factory=list)
    seed_genres: list[str] = field(default_factory=list)
    context: RecommendationContext | None = None


@dataclass
class RecommendedTrack:
    track: Track
    score: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class ResponseMetadata:
    processing_time_ms: float = 0.0
    cache_hit: bool = False
    user_profile_version: int | None = None


@dataclass
class RecommendationResponse:
    tracks: list[RecommendedTrack]
    total_available: int
    algorithm: str
    generated_at: datetime
    valid_until: datetime
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)


@dataclass
class CacheEntry:
    """A stored recommendation response plus its access statistics."""

    user_id: str
    section_type: SectionType | str
    recommendations: list[RecommendedTrack]
    generated_at: datetime
    expires_at: datetime
    hit_count: int
    last_accessed: datetime
    context: RecommendationContext
    algorithm: str
    user_profile_version: int | None = None


@dataclass
class CacheStats:
    total_entries: int = 0
    average_hit_count: float = 0.0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
    hits: int = 0
    misses: int = 0
    hit_ratio: float = 0.0
