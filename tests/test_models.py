"""Tests for recommendations.models dataclasses and enums."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from recommendations.models import (
    BehaviorAction,
    RecommendationContext,
    SectionType,
    TimeOfDay,
    Track,
    UserBehavior,
    UserProfile,
    season_for,
    weekday_name,
)


class TestBehaviorAction:
    def test_values(self) -> None:
        assert BehaviorAction.PLAY == "play"
        assert BehaviorAction.SKIP == "skip"
        assert BehaviorAction.SHARE == "share"
        assert BehaviorAction.ADD_TO_PLAYLIST == "add-to-playlist"

    def test_is_string(self) -> None:
        assert isinstance(BehaviorAction.PLAY, str)

    def test_parse_from_value(self) -> None:
        assert BehaviorAction("add-to-playlist") is BehaviorAction.ADD_TO_PLAYLIST


class TestTimeOfDay:
    @pytest.mark.parametrize(
        "hour, expected",
        [
            (6, TimeOfDay.MORNING),
            (11, TimeOfDay.MORNING),
            (12, TimeOfDay.AFTERNOON),
            (16, TimeOfDay.AFTERNOON),
            (17, TimeOfDay.EVENING),
            (21, TimeOfDay.EVENING),
            (22, TimeOfDay.NIGHT),
            (0, TimeOfDay.NIGHT),
            (5, TimeOfDay.NIGHT),
        ],
    )
    def test_from_hour(self, hour: int, expected: TimeOfDay) -> None:
        assert TimeOfDay.from_hour(hour) is expected


class TestSectionType:
    def test_twenty_sections(self) -> None:
        assert len(SectionType) == 20

    def test_known_values(self) -> None:
        assert SectionType("discover_weekly") is SectionType.DISCOVER_WEEKLY
        assert SectionType("friends_listening") is SectionType.FRIENDS_LISTENING


class TestCalendarHelpers:
    def test_weekday_name(self) -> None:
        assert weekday_name(datetime(2024, 6, 1, tzinfo=timezone.utc)) == "saturday"
        assert weekday_name(datetime(2024, 6, 3, tzinfo=timezone.utc)) == "monday"

    @pytest.mark.parametrize(
        "month, season",
        [(1, "winter"), (3, "spring"), (6, "summer"), (9, "fall"), (12, "winter")],
    )
    def test_season_for(self, month: int, season: str) -> None:
        assert season_for(datetime(2024, month, 15, tzinfo=timezone.utc)) == season


class TestRecommendationContext:
    def test_at_derives_all_fields(self) -> None:
        ctx = RecommendationContext.at(datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc))
        assert ctx.time_of_day is TimeOfDay.MORNING
        assert ctx.day_of_week == "saturday"
        assert ctx.season == "summer"
        assert ctx.activity is None
        assert ctx.mood is None
        assert ctx.location is None


class TestUserBehavior:
    def test_is_immutable(self) -> None:
        behavior = UserBehavior(
            user_id="u1",
            track_id="t1",
            action=BehaviorAction.PLAY,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            listen_duration=42.0,
            time_of_day=TimeOfDay.MORNING,
        )
        with pytest.raises(FrozenInstanceError):
            behavior.track_id = "t2"  # type: ignore[misc]

    def test_listen_duration_optional(self) -> None:
        behavior = UserBehavior(
            "u1", "t1", BehaviorAction.SHARE, datetime(2024, 1, 1, tzinfo=timezone.utc)
        )
        assert behavior.listen_duration is None


class TestTrack:
    def test_defaults(self) -> None:
        track = Track(track_id="t1", title="Song", artist_id="a1")
        assert track.genres == []
        assert track.duration == 180
        assert track.audio_features is None


class TestUserProfile:
    def test_new_profile_defaults(self) -> None:
        profile = UserProfile(user_id="u1")
        assert profile.favorite_genres == []
        assert profile.favorite_artists == []
        assert profile.version == 1
        assert profile.skip_behavior.average_skip_point == 30.0

    def test_mutable_defaults_not_shared(self) -> None:
        a = UserProfile(user_id="a")
        b = UserProfile(user_id="b")
        a.skip_behavior.skip_reasons["Pop"] = 1
        assert b.skip_behavior.skip_reasons == {}
