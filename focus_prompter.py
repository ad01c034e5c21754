#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26",
#   "opencv-python>=4.8",
#   "google-genai>=1.0",
# ]
# ///
"""Pace a script word by word over a live camera feed and record it."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import functools
import json
import logging
import os
from pathlib import Path
import sys
from typing import Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw

from domain.prompter import (
    DEFAULT_CAPTURE_FPS,
    DEFAULT_CAPTURE_HEIGHT,
    DEFAULT_CAPTURE_WIDTH,
    DEFAULT_FONT_SIZE,
    DEFAULT_WPM,
    INVALID_CONFIG_CODE,
    CaptureConstraints,
    PrompterConfig,
    PrompterPipelineError,
    PrompterValidationError,
    Theme,
    compute_focus_index,
    compute_token_delay_ms,
    parse_theme,
    read_script_file,
    tokenize_script,
)
from service.camera import AudioInput, default_audio_input, open_camera
from service.compositor import FrameCompositor
from service.controls import apply_command, resolve_key
from service.coordinator import PrompterCoordinator
from service.enhancer import GeminiScriptEnhancer
from service.pacing import PacingEngine, TimerQueue
from service.recording import RecordingPipeline

LOGGER = logging.getLogger("focus_prompter")

LOG_LEVEL_ENV = "FOCUS_PROMPTER_LOG_LEVEL"
WINDOW_NAME = "focus_prompter"
DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 720
DEFAULT_OUTPUT_DIR = "recordings"
MAX_WAIT_MS = 15
PROGRESS_BAR_HEIGHT = 4
HUD_MARGIN = 16
HUD_FONT_SIZE = 18
REC_LABEL = "REC + CAPTION"
HELP_LABEL = "space play  arrows seek/speed  c camera  r record  esc exit"


@dataclass(frozen=True)
class ChromePalette:
    """Colors for the operator-only overlay."""

    track_rgb: Tuple[int, int, int]
    fill_rgb: Tuple[int, int, int]
    text_rgb: Tuple[int, int, int]
    rec_rgb: Tuple[int, int, int]


THEME_PALETTES = {
    Theme.DARK: ChromePalette(
        track_rgb=(24, 24, 27),
        fill_rgb=(220, 38, 38),
        text_rgb=(113, 113, 122),
        rec_rgb=(220, 38, 38),
    ),
    Theme.GLASS: ChromePalette(
        track_rgb=(63, 63, 70),
        fill_rgb=(244, 244, 245),
        text_rgb=(212, 212, 216),
        rec_rgb=(239, 68, 68),
    ),
}


@dataclass(frozen=True)
class PrompterRequest:
    """Parsed CLI request and runtime options."""

    config: PrompterConfig
    script_text: str
    font_file: str | None
    capture: CaptureConstraints
    audio: AudioInput | None
    viewport_size: Tuple[int, int]
    output_dir: Path
    enhance: bool
    start_camera: bool
    emit_schedule: bool

    def __post_init__(self) -> None:
        if self.viewport_size[0] <= 0 or self.viewport_size[1] <= 0:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "viewport width and height must be positive"
            )


def configure_logging() -> None:
    """Configure logging for CLI output."""
    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")


def parse_args(argv: Sequence[str]) -> PrompterRequest:
    """Parse CLI arguments into a PrompterRequest."""
    parser = argparse.ArgumentParser(prog="focus_prompter.py", add_help=True)
    parser.add_argument("--script-file", required=True)
    parser.add_argument("--wpm", type=int, default=DEFAULT_WPM)
    parser.add_argument("--font-size", type=int, default=DEFAULT_FONT_SIZE)
    parser.add_argument("--hide-orp", action="store_true")
    parser.add_argument("--theme", default=Theme.DARK.value)
    parser.add_argument("--font-file", default=None)
    parser.add_argument("--camera-index", type=int, default=0)
    parser.add_argument("--capture-width", type=int, default=DEFAULT_CAPTURE_WIDTH)
    parser.add_argument("--capture-height", type=int, default=DEFAULT_CAPTURE_HEIGHT)
    parser.add_argument("--capture-fps", type=int, default=DEFAULT_CAPTURE_FPS)
    audio_group = parser.add_mutually_exclusive_group()
    audio_group.add_argument("--no-audio", action="store_true")
    audio_group.add_argument("--audio-device", default=None)
    parser.add_argument("--audio-format", default=None)
    parser.add_argument("--viewport-width", type=int, default=DEFAULT_VIEWPORT_WIDTH)
    parser.add_argument("--viewport-height", type=int, default=DEFAULT_VIEWPORT_HEIGHT)
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--enhance", action="store_true")
    parser.add_argument("--start-camera", action="store_true")
    parser.add_argument("--emit-schedule", action="store_true")

    parsed = parser.parse_args(list(argv))
    config = PrompterConfig(
        wpm=parsed.wpm,
        font_size=parsed.font_size,
        show_orp=not parsed.hide_orp,
        theme=parse_theme(parsed.theme),
    )
    if parsed.font_file is not None and not os.path.isfile(parsed.font_file):
        raise PrompterValidationError(
            INVALID_CONFIG_CODE, f"font file not found: {parsed.font_file}"
        )
    if parsed.no_audio:
        if parsed.audio_format is not None:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "audio-format cannot be used with no-audio"
            )
        audio = None
    else:
        default_audio = default_audio_input()
        audio = AudioInput(
            input_format=parsed.audio_format or default_audio.input_format,
            device=parsed.audio_device or default_audio.device,
        )

    return PrompterRequest(
        config=config,
        script_text=read_script_file(parsed.script_file),
        font_file=parsed.font_file,
        capture=CaptureConstraints(
            device_index=parsed.camera_index,
            ideal_width=parsed.capture_width,
            ideal_height=parsed.capture_height,
            frame_rate=parsed.capture_fps,
        ),
        audio=audio,
        viewport_size=(parsed.viewport_width, parsed.viewport_height),
        output_dir=Path(parsed.output_dir),
        enhance=parsed.enhance,
        start_camera=parsed.start_camera,
        emit_schedule=parsed.emit_schedule,
    )


def build_schedule_payload(tokens: Sequence[str], wpm: int) -> dict[str, object]:
    """Describe how long each token would stay on screen."""
    entries = [
        {
            "text": token,
            "focus_index": compute_focus_index(token),
            "delay_ms": compute_token_delay_ms(token, wpm),
        }
        for token in tokens
    ]
    return {
        "wpm": wpm,
        "token_count": len(entries),
        "total_ms": sum(entry["delay_ms"] for entry in entries),
        "tokens": entries,
    }


def emit_schedule(tokens: Sequence[str], wpm: int) -> None:
    """Emit the pacing schedule to stdout."""
    payload = build_schedule_payload(tokens, wpm)
    sys.stdout.write(json.dumps(payload, ensure_ascii=False))


def compute_wait_ms(seconds_until_next: float | None) -> int:
    """Milliseconds to wait for a key before the next timer is due."""
    if seconds_until_next is None:
        return MAX_WAIT_MS
    return max(1, min(MAX_WAIT_MS, int(seconds_until_next * 1000)))


def render_preview(
    coordinator: PrompterCoordinator,
    compositor: FrameCompositor,
    viewport_size: Tuple[int, int],
    notice: str | None,
) -> Image.Image:
    """Build the operator view: live frame or text-only display plus chrome."""
    engine = coordinator.engine
    config = coordinator.config
    latest_frame = coordinator.latest_frame
    if latest_frame is None:
        preview = compositor.render_text_only(
            engine.current_token, viewport_size, config.font_size, config.show_orp
        )
    else:
        preview = latest_frame.resize(viewport_size, Image.Resampling.BILINEAR)
        token = engine.current_token
        if token and not engine.running:
            compositor.draw_word(preview, token, config.font_size, config.show_orp)

    palette = THEME_PALETTES[config.theme]
    draw = ImageDraw.Draw(preview)
    hud_font = compositor.font_for_size(HUD_FONT_SIZE)
    width, height = viewport_size
    draw.rectangle((0, 0, width, PROGRESS_BAR_HEIGHT), fill=palette.track_rgb)
    draw.rectangle(
        (0, 0, int(width * engine.progress), PROGRESS_BAR_HEIGHT),
        fill=palette.fill_rgb,
    )
    draw.text(
        (HUD_MARGIN, height - HUD_MARGIN),
        f"{engine.rate} wpm   {HELP_LABEL}",
        fill=palette.text_rgb,
        font=hud_font,
        anchor="ls",
    )
    if coordinator.recording:
        draw.text(
            (width - HUD_MARGIN, HUD_MARGIN + PROGRESS_BAR_HEIGHT),
            REC_LABEL,
            fill=palette.rec_rgb,
            font=hud_font,
            anchor="ra",
        )
    if notice:
        draw.text(
            (HUD_MARGIN, HUD_MARGIN + PROGRESS_BAR_HEIGHT),
            notice,
            fill=palette.rec_rgb,
            font=hud_font,
            anchor="la",
        )
    return preview


def show_preview(image: Image.Image) -> None:
    """Display an RGB preview in the OpenCV window."""
    cv2.imshow(WINDOW_NAME, cv2.cvtColor(np.asarray(image), cv2.COLOR_RGB2BGR))


def window_closed() -> bool:
    """Return True once the operator closed the preview window."""
    return cv2.getWindowProperty(WINDOW_NAME, cv2.WND_PROP_VISIBLE) < 1


def apply_enhancement(coordinator: PrompterCoordinator) -> None:
    """Improve the loaded script when an API key is configured."""
    try:
        enhancer = GeminiScriptEnhancer.from_environment()
    except PrompterValidationError as exc:
        LOGGER.warning("%s: enhancement skipped (%s)", exc.code, str(exc).strip())
        return
    coordinator.enhance_script(enhancer)


def run_prompter(request: PrompterRequest) -> int:
    """Open the prompter view and run until the operator exits."""
    notices: list[str] = []
    scheduler = TimerQueue()
    engine = PacingEngine(
        scheduler, tokenize_script(request.script_text), request.config.wpm
    )
    compositor = FrameCompositor(font_path=request.font_file)
    coordinator = PrompterCoordinator(
        engine=engine,
        compositor=compositor,
        recorder=RecordingPipeline(),
        scheduler=scheduler,
        camera_opener=functools.partial(open_camera, request.capture, request.audio),
        config=request.config,
        reference_viewport_width=request.viewport_size[0],
        output_dir=request.output_dir,
        notify=notices.append,
    )
    engine.add_change_listener(
        lambda: LOGGER.debug(
            "%s: %d/%d at %d wpm",
            engine.state.value,
            engine.cursor,
            engine.token_count,
            engine.rate,
        )
    )
    coordinator.load_script(request.script_text)
    if request.enhance:
        apply_enhancement(coordinator)

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
    cv2.resizeWindow(WINDOW_NAME, *request.viewport_size)
    try:
        if request.start_camera:
            coordinator.activate_camera()
        while True:
            scheduler.run_due()
            notice = notices[-1] if notices else None
            show_preview(
                render_preview(coordinator, compositor, request.viewport_size, notice)
            )
            key_code = cv2.waitKeyEx(compute_wait_ms(scheduler.seconds_until_next()))
            command = resolve_key(key_code)
            if command is not None:
                notices.clear()
                if not apply_command(command, coordinator):
                    break
            if window_closed():
                break
    finally:
        coordinator.exit_view()
        cv2.destroyAllWindows()

    for saved_path in coordinator.saved_recordings:
        LOGGER.info("recording: %s", saved_path)
    return 0


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:])
        if request.emit_schedule:
            emit_schedule(tokenize_script(request.script_text), request.config.wpm)
            return 0
        return run_prompter(request)
    except PrompterValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except PrompterPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("focus_prompter.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
