"""
Learner signal records and input mapping.

The signal source (browser/platform layer) emits these; the engine only
consumes them.
"""

from signals.events import (
    BlockedAction,
    BlockedInput,
    FocusLost,
    FocusReturned,
    KeyCombo,
    KeyComboId,
    PlaybackSeekAttempt,
    PlaybackTimeUpdate,
    REASON_VISIBILITY_HIDDEN,
    REASON_WINDOW_BLUR,
    Signal,
    WindowResized,
    signal_from_dict,
)
from signals.keyboard import key_combo_from_keydown

__all__ = [
    "BlockedAction",
    "BlockedInput",
    "FocusLost",
    "FocusReturned",
    "KeyCombo",
    "KeyComboId",
    "PlaybackSeekAttempt",
    "PlaybackTimeUpdate",
    "REASON_VISIBILITY_HIDDEN",
    "REASON_WINDOW_BLUR",
    "Signal",
    "WindowResized",
    "key_combo_from_keydown",
    "signal_from_dict",
]
