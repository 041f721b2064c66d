"""
Interfaces of the collaborators the engine drives.

The engine never renders anything itself: it issues commands to a media
controller and an overlay renderer supplied by the host (player page,
CLI replay, tests).
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MediaControllerProtocol(Protocol):
    """Commands the engine sends to the bound media element."""

    def pause(self) -> None:
        ...

    def play(self) -> None:
        ...

    def set_current_time(self, seconds: float) -> None:
        """Force the playback position."""
        ...

    def set_opacity(self, opacity: int) -> None:
        """Show (1) or hide (0) the video picture."""
        ...

    def detach(self) -> None:
        """Remove the media element from the page (lockout)."""
        ...


@runtime_checkable
class OverlayRendererProtocol(Protocol):
    """Commands the engine sends to the notification/overlay layer."""

    def show_blackout(self, persistent: bool) -> None:
        """
        Cover the content.

        Args:
            persistent: True for the recalibration overlay that stays
                        until the countdown completes; False for a
                        momentary blackout.
        """
        ...

    def hide_blackout(self) -> None:
        ...

    def show_countdown(self, seconds_remaining: int) -> None:
        ...

    def show_toast(self, message: str) -> None:
        ...

    def show_lockout_notice(self) -> None:
        ...
