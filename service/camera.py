"""Camera and microphone acquisition for the live prompter view."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import sys
from typing import Callable, Protocol, Tuple

import cv2
import numpy as np
from PIL import Image

from domain.prompter import (
    INVALID_CONFIG_CODE,
    CaptureConstraints,
    PrompterPipelineError,
    PrompterValidationError,
)

LOGGER = logging.getLogger("focus_prompter.camera")

CAMERA_UNAVAILABLE_CODE = "focus_prompter.camera.unavailable"
CAMERA_READ_CODE = "focus_prompter.camera.read_failed"

DEFAULT_AUDIO_INPUTS = {
    "linux": ("pulse", "default"),
    "darwin": ("avfoundation", ":0"),
    "win32": ("dshow", "audio=Microphone"),
}


class VideoSource(Protocol):
    """A live video track."""

    @property
    def size(self) -> Tuple[int, int]: ...

    def read(self) -> Image.Image | None: ...

    def release(self) -> None: ...


@dataclass(frozen=True)
class AudioInput:
    """A microphone described as an ffmpeg input device."""

    input_format: str
    device: str

    def __post_init__(self) -> None:
        if not self.input_format.strip():
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "audio input format must be non-empty"
            )
        if not self.device.strip():
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "audio device must be non-empty"
            )

    def ffmpeg_args(self) -> Tuple[str, ...]:
        return ("-f", self.input_format, "-i", self.device)


def default_audio_input(platform_name: str = sys.platform) -> AudioInput:
    """Pick the platform's default microphone input."""
    for prefix, (input_format, device) in DEFAULT_AUDIO_INPUTS.items():
        if platform_name.startswith(prefix):
            return AudioInput(input_format=input_format, device=device)
    return AudioInput(*DEFAULT_AUDIO_INPUTS["linux"])


class OpenCvVideoSource:
    """Video track backed by ``cv2.VideoCapture``."""

    def __init__(self, capture: cv2.VideoCapture) -> None:
        self._capture = capture
        self._released = False
        width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._size = (width, height)

    @property
    def size(self) -> Tuple[int, int]:
        return self._size

    def read(self) -> Image.Image | None:
        if self._released:
            return None
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return Image.fromarray(np.ascontiguousarray(rgb_frame))

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._capture.release()


class CameraSession:
    """Owns the live video and audio tracks until ``stop`` is called."""

    def __init__(
        self,
        video: VideoSource,
        audio: AudioInput | None,
        frame_rate: int,
    ) -> None:
        self._video = video
        self._audio = audio
        self._frame_rate = frame_rate
        self._video_live = True
        self._audio_live = audio is not None

    @property
    def surface_size(self) -> Tuple[int, int]:
        return self._video.size

    @property
    def frame_rate(self) -> int:
        return self._frame_rate

    @property
    def audio(self) -> AudioInput | None:
        return self._audio if self._audio_live else None

    @property
    def live_track_count(self) -> int:
        return int(self._video_live) + int(self._audio_live)

    @property
    def active(self) -> bool:
        return self._video_live

    def read_frame(self) -> Image.Image:
        """Read the latest video frame or raise when the track is gone."""
        if not self._video_live:
            raise PrompterPipelineError(CAMERA_READ_CODE, "camera session stopped")
        frame = self._video.read()
        if frame is None:
            raise PrompterPipelineError(CAMERA_READ_CODE, "camera frame unavailable")
        return frame

    def stop(self) -> None:
        """Stop every track; safe to call more than once."""
        if self._video_live:
            self._video_live = False
            self._video.release()
        self._audio_live = False


CameraOpener = Callable[[], CameraSession]


def open_camera(
    constraints: CaptureConstraints,
    audio: AudioInput | None,
    capture_factory: Callable[[int], cv2.VideoCapture] = cv2.VideoCapture,
) -> CameraSession:
    """Open the camera at its native resolution near the requested size."""
    capture = capture_factory(constraints.device_index)
    if not capture.isOpened():
        capture.release()
        raise PrompterPipelineError(
            CAMERA_UNAVAILABLE_CODE,
            f"camera {constraints.device_index} could not be opened",
        )
    capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.ideal_width)
    capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.ideal_height)
    capture.set(cv2.CAP_PROP_FPS, constraints.frame_rate)
    capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    source = OpenCvVideoSource(capture)
    width, height = source.size
    if width <= 0 or height <= 0 or source.read() is None:
        source.release()
        raise PrompterPipelineError(
            CAMERA_UNAVAILABLE_CODE,
            f"camera {constraints.device_index} returned no frames",
        )
    LOGGER.info(
        "camera %d opened at %dx%d", constraints.device_index, width, height
    )
    return CameraSession(video=source, audio=audio, frame_rate=constraints.frame_rate)
