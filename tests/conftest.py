"""Shared pytest fixtures for all recommendation tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from recommendations.catalogue import TrackCatalogue, TrackMetadataProvider
from recommendations.models import AudioFeatures, Track


TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)  # a Saturday

_FIXTURE_GENRES = [
    "Pop", "Rock", "Hip Hop", "Electronic", "Indie",
    "Jazz", "Classical", "Country", "R&B", "Folk",
]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = TS) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Hash-based catalogue generator
# ---------------------------------------------------------------------------


def _simple_hash(value: str) -> int:
    """Stable 32-bit string hash used to fabricate metadata for arbitrary track IDs."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def hashed_track(track_id: str) -> Track:
    """Deterministically fabricate a track with 1-3 genres and one of 100 artists."""
    h = _simple_hash(track_id)
    genres: list[str] = []
    for i in range((h % 3) + 1):
        genre = _FIXTURE_GENRES[(h + i * 7) % len(_FIXTURE_GENRES)]
        if genre not in genres:
            genres.append(genre)
    return Track(
        track_id=track_id,
        title=f"Track {track_id}",
        artist_id=f"artist-{h % 100}",
        genres=genres,
    )


class HashedMetadata(TrackMetadataProvider):
    """Metadata provider that knows every track ID by hashing it."""

    def get_track(self, track_id: str) -> Track | None:
        return hashed_track(track_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hashed_metadata() -> HashedMetadata:
    return HashedMetadata()


@pytest.fixture
def pop_track() -> Track:
    return Track(
        "track-1", "Sunny Day", "artist-pop", ["Pop"],
        duration=200, audio_features=AudioFeatures(energy=0.9, tempo=128, loudness=-6),
    )


@pytest.fixture
def rock_track() -> Track:
    return Track(
        "track-2", "Loud Noise", "artist-rock", ["Rock"],
        duration=240, audio_features=AudioFeatures(energy=0.8, tempo=140, loudness=-4),
    )


@pytest.fixture
def jazz_track() -> Track:
    return Track(
        "track-3", "Blue Night", "artist-jazz", ["Jazz", "Blues"],
        duration=300, audio_features=AudioFeatures(energy=0.2, tempo=90, loudness=-14),
    )


@pytest.fixture
def catalogue(pop_track, rock_track, jazz_track) -> TrackCatalogue:
    """Three-track catalogue spanning four genres."""
    cat = TrackCatalogue()
    cat.load([pop_track, rock_track, jazz_track])
    return cat
