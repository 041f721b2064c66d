"""Map raw keydown descriptors to monitored key combinations."""

from typing import Optional

from signals.events import KeyComboId

# Legacy keyCode reported for PrintScreen by some browsers
PRINT_SCREEN_KEY_CODE = 44


def key_combo_from_keydown(
    key: str,
    ctrl: bool = False,
    shift: bool = False,
    key_code: Optional[int] = None,
) -> Optional[KeyComboId]:
    """
    Identify a monitored key combination from a keydown event.

    Args:
        key: The event's key value ("F12", "I", "s", "PrintScreen", ...).
        ctrl: Whether Ctrl was held.
        shift: Whether Shift was held.
        key_code: Legacy numeric key code, if the platform reports one.

    Returns:
        The KeyComboId, or None for keys the engine does not care about.
    """
    if key == "PrintScreen" or key_code == PRINT_SCREEN_KEY_CODE:
        return KeyComboId.PRINT_SCREEN

    if key == "F12":
        return KeyComboId.F12

    if ctrl and shift:
        # Shift changes the reported key to upper case
        if key in ("I", "i"):
            return KeyComboId.CTRL_SHIFT_I
        if key in ("J", "j"):
            return KeyComboId.CTRL_SHIFT_J

    if ctrl and not shift:
        lowered = key.lower()
        if lowered == "u":
            return KeyComboId.CTRL_U
        if lowered == "s":
            return KeyComboId.CTRL_S
        if lowered == "p":
            return KeyComboId.CTRL_P

    return None
