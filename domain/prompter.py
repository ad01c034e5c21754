"""Domain types, tokenization and ORP math for focus_prompter."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

INVALID_CONFIG_CODE = "focus_prompter.input.invalid_config"
INVALID_THEME_CODE = "focus_prompter.input.invalid_theme"
INPUT_FILE_CODE = "focus_prompter.input.file_error"
FONT_LOAD_CODE = "focus_prompter.input.font_load"

MIN_WPM = 50
MAX_WPM = 1000
DEFAULT_WPM = 250
RATE_STEP_WPM = 10
MIN_FONT_SIZE = 40
MAX_FONT_SIZE = 300
DEFAULT_FONT_SIZE = 120
DEFAULT_CAPTURE_WIDTH = 1920
DEFAULT_CAPTURE_HEIGHT = 1080
DEFAULT_CAPTURE_FPS = 30

SENTENCE_END_PUNCTUATION = ".!?"
CLAUSE_PUNCTUATION = ","
SENTENCE_END_MULTIPLIER = 2.0
CLAUSE_MULTIPLIER = 1.5


class PrompterValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class PrompterPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class Theme(str, Enum):
    """Operator chrome themes."""

    DARK = "dark"
    GLASS = "glass"


@dataclass(frozen=True)
class PrompterConfig:
    """Validated configuration surface shared by pacing and compositing."""

    wpm: int = DEFAULT_WPM
    font_size: int = DEFAULT_FONT_SIZE
    show_orp: bool = True
    theme: Theme = Theme.DARK

    def __post_init__(self) -> None:
        if self.wpm < MIN_WPM or self.wpm > MAX_WPM:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE,
                f"wpm must be between {MIN_WPM} and {MAX_WPM}: {self.wpm}",
            )
        if self.font_size < MIN_FONT_SIZE or self.font_size > MAX_FONT_SIZE:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE,
                f"font_size must be between {MIN_FONT_SIZE} and {MAX_FONT_SIZE}: "
                f"{self.font_size}",
            )
        if not isinstance(self.theme, Theme):
            raise PrompterValidationError(INVALID_THEME_CODE, "theme is invalid")


@dataclass(frozen=True)
class CaptureConstraints:
    """Requested camera capture settings."""

    device_index: int = 0
    ideal_width: int = DEFAULT_CAPTURE_WIDTH
    ideal_height: int = DEFAULT_CAPTURE_HEIGHT
    frame_rate: int = DEFAULT_CAPTURE_FPS

    def __post_init__(self) -> None:
        if self.device_index < 0:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "camera index must be non-negative"
            )
        if self.ideal_width <= 0 or self.ideal_height <= 0:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "capture width and height must be positive"
            )
        if self.frame_rate <= 0:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "capture frame rate must be positive"
            )


@dataclass(frozen=True)
class FocusSplit:
    """A token split around its focus character."""

    before: str
    focus: str
    after: str

    @property
    def text(self) -> str:
        return self.before + self.focus + self.after


def parse_theme(value: str) -> Theme:
    """Parse a theme name into a Theme."""
    normalized = value.strip().lower()
    try:
        return Theme(normalized)
    except ValueError as exc:
        raise PrompterValidationError(
            INVALID_THEME_CODE, f"invalid theme: {value!r}"
        ) from exc


def clamp_int(value: int, min_value: int, max_value: int) -> int:
    """Clamp an integer between min and max."""
    return max(min_value, min(max_value, value))


def clamp_rate(rate: int) -> int:
    """Clamp a words-per-minute rate to the supported range."""
    return clamp_int(int(rate), MIN_WPM, MAX_WPM)


def tokenize_script(script: str) -> Tuple[str, ...]:
    """Split a script into whitespace-delimited tokens."""
    return tuple(script.split())


def compute_focus_index(token: str) -> int:
    """Compute the ORP focus index for a token."""
    length = len(token)
    if length <= 1:
        return 0
    if length <= 5:
        return (length - 1) // 2
    if length <= 9:
        return 2
    return 3


def split_focus(token: str) -> FocusSplit:
    """Split a token into the text before, at and after its focus index."""
    index = compute_focus_index(token)
    if index >= len(token):
        return FocusSplit(before=token, focus="", after="")
    return FocusSplit(
        before=token[:index],
        focus=token[index : index + 1],
        after=token[index + 1 :],
    )


def punctuation_multiplier(token: str) -> float:
    """Return the delay multiplier for a token's trailing character."""
    if not token:
        return 1.0
    trailing = token[-1]
    if trailing in SENTENCE_END_PUNCTUATION:
        return SENTENCE_END_MULTIPLIER
    if trailing in CLAUSE_PUNCTUATION:
        return CLAUSE_MULTIPLIER
    return 1.0


def base_delay_ms(rate: int) -> float:
    """Milliseconds per word at the given rate."""
    return 60_000.0 / rate


def compute_token_delay_ms(token: str, rate: int) -> float:
    """Compute how long a token stays on screen at the given rate."""
    return base_delay_ms(rate) * punctuation_multiplier(token)


def read_script_file(file_path: str) -> str:
    """Read a UTF-8 script file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise PrompterValidationError(
            INPUT_FILE_CODE, f"script file not found: {file_path}"
        ) from exc
    except OSError as exc:
        raise PrompterValidationError(
            INPUT_FILE_CODE, f"script file unreadable: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict").replace("\ufeff", "")
    except UnicodeDecodeError as exc:
        raise PrompterValidationError(
            INPUT_FILE_CODE,
            f"script file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc
