"""
Typed learner signals consumed by the integrity engine.

The browser/platform layer turns DOM events into these records and hands
them to SessionEngine.dispatch(). Keeping them as plain immutable values
lets the state machine run (and be tested) without any rendering layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

# FocusLost reasons
REASON_VISIBILITY_HIDDEN = "visibility_hidden"  # Tab switched or window minimised
REASON_WINDOW_BLUR = "window_blur"  # Another app took focus


class KeyComboId(Enum):
    """Key combinations the signal source reports."""
    PRINT_SCREEN = "print_screen"
    F12 = "f12"
    CTRL_SHIFT_I = "ctrl_shift_i"
    CTRL_SHIFT_J = "ctrl_shift_j"
    CTRL_U = "ctrl_u"
    CTRL_S = "ctrl_s"
    CTRL_P = "ctrl_p"


class BlockedInput(Enum):
    """Input actions suppressed at the source with no penalty."""
    CONTEXT_MENU = "contextmenu"
    DRAG_START = "dragstart"
    DROP = "drop"
    COPY = "copy"
    CUT = "cut"
    PASTE = "paste"
    SELECT_START = "selectstart"


@dataclass(frozen=True)
class FocusLost:
    """Window lost focus or the document became hidden."""
    reason: str = REASON_WINDOW_BLUR


@dataclass(frozen=True)
class FocusReturned:
    """Focus or visibility restored."""


@dataclass(frozen=True)
class WindowResized:
    """The viewport was resized (screen-recording heuristic)."""


@dataclass(frozen=True)
class KeyCombo:
    """A monitored key combination was pressed."""
    combo: KeyComboId


@dataclass(frozen=True)
class PlaybackTimeUpdate:
    """Periodic playback position report from the media element."""
    current_time: float
    seeking: bool = False


@dataclass(frozen=True)
class PlaybackSeekAttempt:
    """The learner tried to move the playback position."""
    target_time: float


@dataclass(frozen=True)
class BlockedAction:
    """A suppressed input action (right click, copy, drag...)."""
    action: BlockedInput


Signal = Union[
    FocusLost, FocusReturned, WindowResized, KeyCombo,
    PlaybackTimeUpdate, PlaybackSeekAttempt, BlockedAction,
]


def signal_from_dict(data: Dict[str, Any]) -> Signal:
    """
    Decode the JSON form of a signal (as used by recorded replays).

    Args:
        data: Mapping with a "type" key plus type-specific fields, e.g.
              {"type": "key_combo", "combo": "print_screen"}.

    Returns:
        The matching signal record.

    Raises:
        ValueError: If the type or one of its fields is not recognised.
    """
    signal_type = data.get("type")

    if signal_type == "focus_lost":
        return FocusLost(reason=str(data.get("reason", REASON_WINDOW_BLUR)))
    if signal_type == "focus_returned":
        return FocusReturned()
    if signal_type == "window_resized":
        return WindowResized()
    if signal_type == "key_combo":
        return KeyCombo(combo=KeyComboId(data.get("combo")))
    if signal_type == "time_update":
        return PlaybackTimeUpdate(
            current_time=float(data["current_time"]),
            seeking=bool(data.get("seeking", False)),
        )
    if signal_type == "seek_attempt":
        return PlaybackSeekAttempt(target_time=float(data["target_time"]))
    if signal_type == "blocked_action":
        return BlockedAction(action=BlockedInput(data.get("action")))

    raise ValueError(f"Unknown signal type: {signal_type!r}")
