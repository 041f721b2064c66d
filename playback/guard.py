"""
Playback guard (anti-forwarding).

Tracks the furthest point the learner has genuinely watched and rejects
seeks beyond it. Comparing against a monotonic high-water mark rather than
the previous position stops rewind/forward oscillation from creeping
ahead; the small tolerance absorbs decoder jitter.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeekDecision:
    """Outcome of a seek attempt."""
    allowed: bool
    clamped_time: float


class PlaybackGuard:
    """
    Owns the PlaybackState of the bound media element.

    All operations are no-ops while no media is bound.
    """

    def __init__(self, tolerance_seconds: float = config.SEEK_TOLERANCE_SECONDS):
        """
        Args:
            tolerance_seconds: Allowed overshoot past the high-water mark.
        """
        self.tolerance_seconds = tolerance_seconds
        self.media: Optional[Any] = None
        self.max_watched_time: float = 0.0
        self.watched_seconds: float = 0.0
        self._last_time: Optional[float] = None

    @property
    def has_media(self) -> bool:
        """True when a media element is bound."""
        return self.media is not None

    def load_media(self, media: Any) -> None:
        """
        Bind a new media item and reset its playback state.

        Args:
            media: Media controller used to force the position on rejection.
        """
        self.media = media
        self.max_watched_time = 0.0
        self.watched_seconds = 0.0
        self._last_time = None
        logger.debug("Playback guard bound to new media")

    def unbind(self) -> None:
        """Drop the bound media (playback state is kept for reporting)."""
        self.media = None
        self._last_time = None

    def take_watched_seconds(self) -> float:
        """
        Hand over the watched time accumulated so far and restart the count.

        Returns:
            Seconds watched since the last call (or since load_media).
        """
        watched = self.watched_seconds
        self.watched_seconds = 0.0
        return watched

    def on_time_update(self, current_time: float, is_seeking: bool) -> None:
        """
        Advance the high-water mark from a playback position report.

        Args:
            current_time: Playback position in seconds.
            is_seeking: Whether the element is mid-seek.
        """
        if self.media is None:
            logger.debug("Time update with no bound media ignored")
            return
        if is_seeking:
            # Position during a seek is not evidence of watching
            self._last_time = None
            return

        if self._last_time is not None:
            delta = current_time - self._last_time
            if 0 < delta <= config.WATCH_DELTA_MAX_SECONDS:
                self.watched_seconds += delta
        self._last_time = current_time

        if current_time > self.max_watched_time:
            self.max_watched_time = current_time

    def on_seek_attempt(self, target_time: float) -> SeekDecision:
        """
        Decide whether a seek may proceed.

        On rejection the media position is forced back to the high-water
        mark; the caller is responsible for the user-visible notice.

        Args:
            target_time: Requested playback position in seconds.

        Returns:
            SeekDecision with allowed flag and the position to use.
        """
        if self.media is None:
            logger.debug("Seek attempt with no bound media ignored")
            return SeekDecision(allowed=True, clamped_time=target_time)

        if target_time <= self.max_watched_time + self.tolerance_seconds:
            return SeekDecision(allowed=True, clamped_time=target_time)

        logger.info(f"Forward seek to {target_time:.2f}s rejected (max watched {self.max_watched_time:.2f}s)")
        self._last_time = None
        try:
            self.media.set_current_time(self.max_watched_time)
        except Exception as e:
            logger.debug(f"set_current_time failed: {e}")
        return SeekDecision(allowed=False, clamped_time=self.max_watched_time)
