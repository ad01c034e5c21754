"""Keyboard control surface for the prompter view."""

from __future__ import annotations

from enum import Enum
import logging

from domain.prompter import RATE_STEP_WPM
from service.coordinator import PrompterCoordinator

LOGGER = logging.getLogger("focus_prompter.controls")


class KeyCommand(str, Enum):
    """Operator commands bound to keys."""

    TOGGLE_PLAY = "toggle_play"
    SEEK_BACK = "seek_back"
    SEEK_FORWARD = "seek_forward"
    RATE_UP = "rate_up"
    RATE_DOWN = "rate_down"
    EXIT = "exit"
    TOGGLE_CAMERA = "toggle_camera"
    TOGGLE_RECORDING = "toggle_recording"
    RESET = "reset"


# cv2.waitKeyEx codes differ per highgui backend: GTK/X11, Win32, Cocoa.
KEY_BINDINGS: dict[int, KeyCommand] = {
    32: KeyCommand.TOGGLE_PLAY,
    27: KeyCommand.EXIT,
    ord("c"): KeyCommand.TOGGLE_CAMERA,
    ord("C"): KeyCommand.TOGGLE_CAMERA,
    ord("r"): KeyCommand.TOGGLE_RECORDING,
    ord("R"): KeyCommand.TOGGLE_RECORDING,
    ord("0"): KeyCommand.RESET,
    65360: KeyCommand.RESET,
    65361: KeyCommand.SEEK_BACK,
    65362: KeyCommand.RATE_UP,
    65363: KeyCommand.SEEK_FORWARD,
    65364: KeyCommand.RATE_DOWN,
    2359296: KeyCommand.RESET,
    2424832: KeyCommand.SEEK_BACK,
    2490368: KeyCommand.RATE_UP,
    2555904: KeyCommand.SEEK_FORWARD,
    2621440: KeyCommand.RATE_DOWN,
    63232: KeyCommand.RATE_UP,
    63233: KeyCommand.RATE_DOWN,
    63234: KeyCommand.SEEK_BACK,
    63235: KeyCommand.SEEK_FORWARD,
    63273: KeyCommand.RESET,
}


def resolve_key(key_code: int) -> KeyCommand | None:
    """Map a key code from ``cv2.waitKeyEx`` to a command."""
    if key_code < 0:
        return None
    return KEY_BINDINGS.get(key_code)


def apply_command(command: KeyCommand, coordinator: PrompterCoordinator) -> bool:
    """Run a command; returns False once the operator leaves the view."""
    engine = coordinator.engine
    if command is KeyCommand.TOGGLE_PLAY:
        engine.toggle()
    elif command is KeyCommand.SEEK_BACK:
        engine.seek(-1)
    elif command is KeyCommand.SEEK_FORWARD:
        engine.seek(1)
    elif command is KeyCommand.RATE_UP:
        engine.adjust_rate(RATE_STEP_WPM)
    elif command is KeyCommand.RATE_DOWN:
        engine.adjust_rate(-RATE_STEP_WPM)
    elif command is KeyCommand.TOGGLE_CAMERA:
        coordinator.toggle_camera()
    elif command is KeyCommand.TOGGLE_RECORDING:
        coordinator.toggle_recording()
    elif command is KeyCommand.RESET:
        engine.reset()
    elif command is KeyCommand.EXIT:
        coordinator.exit_view()
        return False
    LOGGER.debug(
        "%s: cursor %d/%d at %d wpm",
        command.value,
        engine.cursor,
        engine.token_count,
        engine.rate,
    )
    return True
