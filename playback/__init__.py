"""Playback guard (anti-forwarding)."""

from playback.guard import PlaybackGuard, SeekDecision

__all__ = ["PlaybackGuard", "SeekDecision"]
