"""Camera, render loop and recording lifecycle for the prompter view."""

from __future__ import annotations

from enum import Enum
import logging
from pathlib import Path
from typing import Callable

from PIL import Image

from domain.prompter import (
    PrompterConfig,
    PrompterPipelineError,
    tokenize_script,
)
from service.camera import CameraOpener, CameraSession
from service.compositor import CompositionFrame, FrameCompositor
from service.enhancer import ScriptEnhancer, improve_script
from service.pacing import PacingEngine, TimerHandle, TimerQueue
from service.recording import (
    RecordingPipeline,
    RecordingSession,
    save_artifact,
)

LOGGER = logging.getLogger("focus_prompter.coordinator")

Notifier = Callable[[str], None]


class CoordinatorState(str, Enum):
    """Camera and recording lifecycle states."""

    CAMERA_OFF = "camera_off"
    CAMERA_ON = "camera_on"
    RECORDING = "recording"


def log_notice(message: str) -> None:
    """Default notifier: operator notices go to the log."""
    LOGGER.warning("%s", message)


class PrompterCoordinator:
    """The only component with cross-component side effects.

    It owns the camera session and the render loop timer, starts and stops
    recordings, and listens for the pacing engine to finish.
    """

    def __init__(
        self,
        engine: PacingEngine,
        compositor: FrameCompositor,
        recorder: RecordingPipeline,
        scheduler: TimerQueue,
        camera_opener: CameraOpener,
        config: PrompterConfig,
        reference_viewport_width: float,
        output_dir: Path,
        notify: Notifier = log_notice,
    ) -> None:
        self._engine = engine
        self._compositor = compositor
        self._recorder = recorder
        self._scheduler = scheduler
        self._camera_opener = camera_opener
        self._config = config
        self._reference_viewport_width = reference_viewport_width
        self._output_dir = output_dir
        self._notify = notify
        self._script = " ".join(engine.tokens)
        self._camera: CameraSession | None = None
        self._render_timer: TimerHandle | None = None
        self._recording: RecordingSession | None = None
        self._saved_recordings: list[Path] = []
        engine.add_finished_listener(self._on_pacing_finished)

    @property
    def engine(self) -> PacingEngine:
        return self._engine

    @property
    def config(self) -> PrompterConfig:
        return self._config

    @property
    def script(self) -> str:
        return self._script

    @property
    def state(self) -> CoordinatorState:
        if self._recording is not None:
            return CoordinatorState.RECORDING
        if self._camera is not None:
            return CoordinatorState.CAMERA_ON
        return CoordinatorState.CAMERA_OFF

    @property
    def camera_active(self) -> bool:
        return self._camera is not None

    @property
    def recording(self) -> bool:
        return self._recording is not None

    @property
    def render_loop_active(self) -> bool:
        return self._render_timer is not None and not self._render_timer.cancelled

    @property
    def reference_viewport_width(self) -> float:
        return self._reference_viewport_width

    @property
    def latest_frame(self) -> Image.Image | None:
        """Most recent composited frame while the camera is on."""
        if self._camera is None:
            return None
        return self._compositor.surface

    @property
    def saved_recordings(self) -> tuple[Path, ...]:
        return tuple(self._saved_recordings)

    def update_config(self, config: PrompterConfig) -> None:
        """Apply a new configuration surface; the rate takes effect at once."""
        self._config = config
        self._engine.set_rate(config.wpm)

    def set_reference_viewport_width(self, width: float) -> None:
        """Operator viewport width; applies from the next rendered frame."""
        if width > 0:
            self._reference_viewport_width = width

    def load_script(self, script: str) -> None:
        """Replace the script and return the cursor to the first token."""
        self._script = script
        self._engine.load(tokenize_script(script))
        LOGGER.info("script loaded: %d tokens", self._engine.token_count)

    def enhance_script(self, enhancer: ScriptEnhancer) -> str:
        """Replace the script with an improved version; keeps it on failure."""
        improved = improve_script(self._script, enhancer)
        if improved != self._script:
            self.load_script(improved)
        return self._script

    def activate_camera(self) -> bool:
        """Open the camera and start the render loop; False on failure."""
        if self._camera is not None:
            return True
        try:
            session = self._camera_opener()
        except PrompterPipelineError as exc:
            LOGGER.error("%s: %s", exc.code, str(exc).strip())
            self._notify("Camera or microphone unavailable.")
            return False
        self._camera = session
        self._compositor.resize_surface(session.surface_size)
        self._start_render_loop()
        return True

    def deactivate_camera(self) -> None:
        """Cancel rendering, finalise any recording and release all tracks."""
        self._cancel_render_loop()
        if self._recording is not None:
            self.stop_recording()
        if self._camera is not None:
            camera = self._camera
            self._camera = None
            camera.stop()
            LOGGER.info("camera released")

    def toggle_camera(self) -> None:
        """Switch the camera on or off."""
        if self._camera is None:
            self.activate_camera()
        else:
            self.deactivate_camera()

    def start_recording(self) -> bool:
        """Record the composited output; requires an active camera."""
        if self._camera is None:
            LOGGER.info("recording ignored: camera is off")
            return False
        if self._recording is not None:
            return True
        if self._engine.finished:
            self._engine.reset()
        if self._engine.finished:
            LOGGER.info("recording ignored: script has no tokens")
            return False
        if not self.render_loop_active:
            self._start_render_loop()
            if self._camera is None:
                return False
        camera = self._camera
        try:
            self._recording = self._recorder.start(
                camera.surface_size, camera.frame_rate, camera.audio
            )
        except PrompterPipelineError as exc:
            LOGGER.error("%s: %s", exc.code, str(exc).strip())
            self._notify("Recording could not start.")
            return False
        if not self._engine.running:
            self._engine.play()
        return True

    def stop_recording(self) -> Path | None:
        """Finalise the active recording and save it locally."""
        session = self._recording
        if session is None:
            return None
        self._recording = None
        artifact = self._recorder.stop(session)
        try:
            saved_path = save_artifact(artifact, self._output_dir)
        except OSError as exc:
            LOGGER.error("focus_prompter.recording.save_failed: %s", exc)
            self._notify("Recording could not be saved.")
            return None
        self._saved_recordings.append(saved_path)
        return saved_path

    def toggle_recording(self) -> None:
        """Start or stop recording."""
        if self._recording is None:
            self.start_recording()
        else:
            self.stop_recording()

    def exit_view(self) -> None:
        """Leave the prompter view: pause pacing and tear everything down."""
        self._engine.pause()
        self.deactivate_camera()

    def _start_render_loop(self) -> None:
        if self.render_loop_active:
            return
        self._render_tick()

    def _cancel_render_loop(self) -> None:
        if self._render_timer is not None:
            self._render_timer.cancel()
            self._render_timer = None

    def _render_tick(self) -> None:
        self._render_timer = None
        camera = self._camera
        if camera is None:
            return
        try:
            surface = self._render_frame(camera)
            if self._recording is not None:
                self._recorder.write_frame(self._recording, surface)
        except PrompterPipelineError as exc:
            LOGGER.error("%s: %s", exc.code, str(exc).strip())
            self._notify("Capture stopped unexpectedly.")
            self.deactivate_camera()
            return
        self._render_timer = self._scheduler.call_later(
            1.0 / camera.frame_rate, self._render_tick
        )

    def _render_frame(self, camera: CameraSession) -> Image.Image:
        frame = CompositionFrame(
            source_frame=camera.read_frame(),
            current_token=self._engine.current_token,
            is_pacing_running=self._engine.running,
            surface_size=camera.surface_size,
            reference_viewport_width=self._reference_viewport_width,
            font_size_px=self._config.font_size,
            show_orp=self._config.show_orp,
        )
        return self._compositor.composite(frame)

    def _on_pacing_finished(self) -> None:
        if self._recording is not None:
            LOGGER.info("script finished, stopping recording")
            self.stop_recording()
