"""Track metadata: the lookup interface and an in-memory catalogue."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

from recommendations.models import Track

logger = logging.getLogger(__name__)


class TrackMetadataProvider(ABC):
    """Abstract source of track metadata.

    The profile manager and trending analyzer only need to know which
    genres and which artist a track belongs to, plus its duration and
    (optionally) audio features.  Unknown tracks must yield ``None`` / an
    empty genre list rather than raising, so a missing catalogue entry
    degrades to "no signal" instead of an error.
    """

    @abstractmethod
    def get_track(self, track_id: str) -> Track | None:
        """Return the :class:`~recommendations.models.Track`, or ``None``."""

    def get_genres(self, track_id: str) -> list[str]:
        track = self.get_track(track_id)
        return list(track.genres) if track else []

    def get_artist_id(self, track_id: str) -> str | None:
        track = self.get_track(track_id)
        return track.artist_id if track else None


class TrackCatalogue(TrackMetadataProvider):
    """Thread-safe in-memory track catalogue.

    Contents are replaced wholesale by :meth:`load`, or by :meth:`refresh`
    which pulls a fresh listing from *loader*.  A background daemon thread
    started with :meth:`start_refresh_loop` calls :meth:`refresh` every
    *refresh_interval_seconds*.

    Args:
        loader: Zero-argument callable returning an iterable of
            :class:`~recommendations.models.Track`.  Optional; without one
            the catalogue is only populated through :meth:`load`.
        refresh_interval_seconds: How often the background thread refreshes
            the catalogue. Defaults to 300 (5 minutes).
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[Track]] | None = None,
        refresh_interval_seconds: int = 300,
    ) -> None:
        self._loader = loader
        self._refresh_interval = refresh_interval_seconds
        self._lock = threading.RLock()
        self._tracks: dict[str, Track] = {}
        self._refresh_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, tracks: Iterable[Track]) -> None:
        """Replace the catalogue contents with *tracks*."""
        new_tracks = {t.track_id: t for t in tracks}
        with self._lock:
            self._tracks = new_tracks
        logger.info("Track catalogue loaded: %d tracks.", len(new_tracks))

    def refresh(self) -> None:
        """Pull the full listing from the loader and update the cache.

        On failure, logs an error and preserves the existing contents so
        scoring can continue with slightly stale metadata.
        """
        if self._loader is None:
            return
        try:
            tracks = list(self._loader())
        except Exception:
            logger.exception(
                "Failed to refresh track catalogue; keeping existing %d tracks.",
                len(self._tracks),
            )
            return
        self.load(tracks)

    def start_refresh_loop(self) -> None:
        """Start a background daemon thread that periodically calls :meth:`refresh`.

        Safe to call multiple times; only one refresh thread is started.
        """
        if self._refresh_thread is not None and self._refresh_thread.is_alive():
            return
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop,
            name="catalogue-refresh",
            daemon=True,
        )
        self._refresh_thread.start()
        logger.debug("Catalogue refresh loop started (interval=%ds).", self._refresh_interval)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_track(self, track_id: str) -> Track | None:
        with self._lock:
            return self._tracks.get(track_id)

    def get_all_tracks(self) -> list[Track]:
        """Return a snapshot list of all cached tracks."""
        with self._lock:
            return list(self._tracks.values())

    def get_all_genres(self) -> list[str]:
        """Return a sorted list of every genre label in the catalogue."""
        with self._lock:
            genres: set[str] = set()
            for track in self._tracks.values():
                genres.update(track.genres)
            return sorted(genres)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _refresh_loop(self) -> None:
        """Periodically refresh the catalogue. Runs in a daemon thread."""
        while True:
            time.sleep(self._refresh_interval)
            self.refresh()
