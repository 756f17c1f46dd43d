"""Tests for the NDJSON loaders and wiring in main.py."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

import config
import main
from recommendations.catalogue import TrackCatalogue
from recommendations.models import BehaviorAction, TimeOfDay


def _write_ndjson(path, lines: list) -> str:
    with open(path, "w", encoding="utf-8") as fh:
        for line in lines:
            fh.write(line if isinstance(line, str) else json.dumps(line))
            fh.write("\n")
    return str(path)


class TestTrackFromDict:
    def test_full_record(self) -> None:
        track = main.track_from_dict(
            {
                "id": "t1",
                "title": "Song",
                "artist_id": "a1",
                "genres": ["Pop"],
                "duration": 210,
                "audio_features": {"energy": 0.8, "tempo": 126},
            }
        )
        assert track.track_id == "t1"
        assert track.duration == 210
        assert track.audio_features.energy == 0.8

    def test_defaults(self) -> None:
        track = main.track_from_dict({"id": "t1", "artist_id": "a1"})
        assert track.genres == []
        assert track.duration == 180
        assert track.audio_features is None

    def test_missing_id_raises(self) -> None:
        with pytest.raises(KeyError):
            main.track_from_dict({"artist_id": "a1"})


class TestBehaviorFromDict:
    def test_naive_timestamp_is_utc(self) -> None:
        behavior = main.behavior_from_dict(
            {"user_id": "u1", "track_id": "t1", "action": "play",
             "timestamp": "2024-06-01T08:15:00", "listen_duration": 95}
        )
        assert behavior.timestamp == datetime(2024, 6, 1, 8, 15, tzinfo=timezone.utc)
        assert behavior.action is BehaviorAction.PLAY
        assert behavior.listen_duration == 95.0
        assert behavior.time_of_day is TimeOfDay.MORNING

    def test_zulu_suffix_is_accepted(self) -> None:
        behavior = main.behavior_from_dict(
            {"user_id": "u1", "track_id": "t1", "action": "skip",
             "timestamp": "2024-06-01T22:30:00Z", "listen_duration": 4}
        )
        assert behavior.timestamp == datetime(2024, 6, 1, 22, 30, tzinfo=timezone.utc)
        assert behavior.time_of_day is TimeOfDay.NIGHT

    def test_replay_keeps_zulu_events(self, tmp_path, catalogue) -> None:
        path = _write_ndjson(
            tmp_path / "events.ndjson",
            [{"user_id": "u1", "track_id": "track-1", "action": "play",
              "timestamp": "2024-06-01T12:00:00Z", "listen_duration": 200}],
        )
        assert main.replay_behaviors(main.build_core(catalogue), path) == 1

    def test_explicit_time_of_day_wins(self) -> None:
        behavior = main.behavior_from_dict(
            {"user_id": "u1", "track_id": "t1", "action": "add-to-playlist",
             "timestamp": "2024-06-01T08:15:00+00:00", "time_of_day": "night"}
        )
        assert behavior.time_of_day is TimeOfDay.NIGHT
        assert behavior.listen_duration is None

    def test_unknown_action_raises(self) -> None:
        with pytest.raises(ValueError):
            main.behavior_from_dict(
                {"user_id": "u1", "track_id": "t1", "action": "like",
                 "timestamp": "2024-06-01T08:15:00"}
            )


class TestLoaders:
    def test_load_catalogue_skips_bad_records(self, tmp_path) -> None:
        path = _write_ndjson(
            tmp_path / "tracks.ndjson",
            [
                {"id": "t1", "artist_id": "a1", "genres": ["Pop"]},
                "{not json",
                "",
                {"title": "no id"},
                {"id": "t2", "artist_id": "a2", "duration": "long"},
                {"id": "t3", "artist_id": "a3"},
            ],
        )
        assert [t.track_id for t in main.load_catalogue(path)] == ["t1", "t3"]

    def test_replay_behaviors(self, tmp_path, catalogue) -> None:
        path = _write_ndjson(
            tmp_path / "events.ndjson",
            [
                {"user_id": "u1", "track_id": "track-1", "action": "play",
                 "timestamp": "2024-06-01T12:00:00", "listen_duration": 200},
                {"user_id": "u1", "track_id": "track-2", "action": "skip",
                 "timestamp": "2024-06-01T12:05:00", "listen_duration": 4},
                {"user_id": "u1", "track_id": "track-2", "action": "rewind",
                 "timestamp": "2024-06-01T12:06:00"},
                {"user_id": "u2", "action": "play", "timestamp": "2024-06-01T12:06:00"},
            ],
        )
        core = main.build_core(catalogue)
        assert main.replay_behaviors(core, path) == 2
        assert core.behavior_store.count("u1") == 2
        assert core.trending.get_popularity_data("track-2").skip_count == 1


class TestBuildCore:
    def test_uses_config(self, monkeypatch) -> None:
        monkeypatch.setattr(config, "MAX_CACHE_SIZE", 7)
        monkeypatch.setattr(config, "MAX_BEHAVIORS_PER_USER", 3)
        core = main.build_core(TrackCatalogue())
        assert core.cache.max_size == 7
        assert core.behavior_store.max_events_per_user == 3


class TestReplayRegions:
    def test_region_and_age_group_forwarded(self, tmp_path, catalogue) -> None:
        path = _write_ndjson(
            tmp_path / "events.ndjson",
            [{"user_id": "u1", "track_id": "track-1", "action": "play",
              "timestamp": datetime.now(timezone.utc).isoformat(), "listen_duration": 200,
              "region": "SE", "age_group": "35-44"}],
        )
        core = main.build_core(catalogue)
        main.replay_behaviors(core, path)
        core.trending.recompute_trending()
        data = core.trending.get_trending_data("track-1")
        assert data.regions == ["SE"]
        assert data.age_groups == ["35-44"]
