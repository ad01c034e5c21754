"""Record composited frames plus microphone audio through ffmpeg."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
import subprocess
import threading
import time
from typing import IO, Callable, FrozenSet, Sequence, Tuple

from PIL import Image

from domain.prompter import PrompterPipelineError
from service.camera import AudioInput

LOGGER = logging.getLogger("focus_prompter.recording")

FFMPEG_NOT_FOUND_CODE = "focus_prompter.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "focus_prompter.ffmpeg.exec_error"
RECORDING_UNSUPPORTED_CODE = "focus_prompter.recording.unsupported"
RECORDING_WRITE_CODE = "focus_prompter.recording.write_failed"
RECORDING_PROCESS_CODE = "focus_prompter.recording.process_failed"

ARTIFACT_PREFIX = "focus-prompter"
VIDEO_BITRATE = "8M"
AUDIO_BITRATE = "128k"
VIDEO_PIXEL_FORMAT = "yuv420p"
EVEN_DIMENSIONS_FILTER = "pad=ceil(iw/2)*2:ceil(ih/2)*2"
AUDIO_THREAD_QUEUE_SIZE = "1024"
READ_CHUNK_BYTES = 64 * 1024
STDERR_TAIL_LINES = 20
STOP_TIMEOUT_SECONDS = 10.0
REALTIME_VPX_ARGS = ("-deadline", "realtime", "-cpu-used", "8")


@dataclass(frozen=True)
class EncodingFormat:
    """A container plus codecs that ffmpeg may be able to produce."""

    mime_type: str
    muxer: str
    extension: str
    video_codec: str
    audio_codec: str
    video_args: Tuple[str, ...] = ()

    @property
    def container_type(self) -> str:
        """Mime type without codec parameters."""
        return self.mime_type.split(";", 1)[0].strip()

    def is_supported(self, encoder_names: FrozenSet[str], include_audio: bool) -> bool:
        if self.video_codec not in encoder_names:
            return False
        return not include_audio or self.audio_codec in encoder_names


PREFERRED_FORMATS = (
    EncodingFormat(
        mime_type="video/webm;codecs=vp9,opus",
        muxer="webm",
        extension="webm",
        video_codec="libvpx-vp9",
        audio_codec="libopus",
        video_args=REALTIME_VPX_ARGS + ("-row-mt", "1"),
    ),
    EncodingFormat(
        mime_type="video/webm;codecs=vp8,opus",
        muxer="webm",
        extension="webm",
        video_codec="libvpx",
        audio_codec="libopus",
        video_args=REALTIME_VPX_ARGS,
    ),
    EncodingFormat(
        mime_type="video/webm",
        muxer="webm",
        extension="webm",
        video_codec="libvpx",
        audio_codec="libvorbis",
        video_args=REALTIME_VPX_ARGS,
    ),
)
BASELINE_FORMAT = EncodingFormat(
    mime_type="video/x-matroska",
    muxer="matroska",
    extension="mkv",
    video_codec="mpeg4",
    audio_codec="aac",
)


@dataclass(frozen=True)
class RecordingArtifact:
    """A finalised recording ready to be saved locally."""

    data: bytes
    mime_type: str
    filename: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class RecordingSession:
    """Encoder process and the ordered chunks it has produced so far."""

    encoding: EncodingFormat
    frame_size: Tuple[int, int]
    process: subprocess.Popen[bytes]
    active: bool = True
    started_at_ms: int = 0
    chunks: list[bytes] = field(default_factory=list)
    stderr_tail: deque[str] = field(
        default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES)
    )
    readers: list[threading.Thread] = field(default_factory=list)
    artifact: RecordingArtifact | None = None
    frames_written: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def append_chunk(self, data: bytes) -> None:
        with self.lock:
            self.chunks.append(data)

    def collected_bytes(self) -> bytes:
        with self.lock:
            return b"".join(self.chunks)


def parse_encoder_names(encoders_output: str) -> FrozenSet[str]:
    """Extract encoder names from ``ffmpeg -encoders`` output."""
    names: set[str] = set()
    for line in encoders_output.splitlines():
        parts = line.split()
        if len(parts) < 2 or parts[1] == "=":
            continue
        flags = parts[0]
        if len(flags) == 6 and flags[0] in "VAS":
            names.add(parts[1])
    return frozenset(names)


def select_encoding_format(
    encoder_names: FrozenSet[str],
    include_audio: bool,
    preferences: Sequence[EncodingFormat] = PREFERRED_FORMATS,
) -> EncodingFormat:
    """Pick the first supported format, falling back to the baseline."""
    for encoding in (*preferences, BASELINE_FORMAT):
        if encoding.is_supported(encoder_names, include_audio):
            return encoding
    raise PrompterPipelineError(
        RECORDING_UNSUPPORTED_CODE, "ffmpeg supports no usable recording format"
    )


def probe_ffmpeg_encoders() -> FrozenSet[str]:
    """List the encoders available to the installed ffmpeg."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise PrompterPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise PrompterPipelineError(
            FFMPEG_EXEC_CODE,
            f"ffmpeg -encoders failed: {result.stderr.strip()}",
        )
    return parse_encoder_names(result.stdout)


def build_ffmpeg_command(
    encoding: EncodingFormat,
    frame_size: Tuple[int, int],
    frame_rate: int,
    audio: AudioInput | None,
) -> list[str]:
    """Build an ffmpeg command reading RGB frames on stdin, muxing to stdout."""
    width, height = frame_size
    command = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-s",
        f"{width}x{height}",
        "-r",
        str(frame_rate),
        "-i",
        "-",
    ]
    if audio is not None:
        command.extend(["-thread_queue_size", AUDIO_THREAD_QUEUE_SIZE])
        command.extend(audio.ffmpeg_args())
        command.extend(["-map", "0:v:0", "-map", "1:a:0"])
    else:
        command.append("-an")
    command.extend(["-vf", EVEN_DIMENSIONS_FILTER, "-c:v", encoding.video_codec])
    command.extend(encoding.video_args)
    command.extend(["-b:v", VIDEO_BITRATE, "-pix_fmt", VIDEO_PIXEL_FORMAT])
    if audio is not None:
        command.extend(
            ["-c:a", encoding.audio_codec, "-b:a", AUDIO_BITRATE, "-shortest"]
        )
    command.extend(["-f", encoding.muxer, "pipe:1"])
    return command


def build_artifact_filename(timestamp_ms: int, extension: str) -> str:
    return f"{ARTIFACT_PREFIX}-{timestamp_ms}.{extension}"


def save_artifact(artifact: RecordingArtifact, output_dir: Path) -> Path:
    """Write the artifact as a single local file."""
    output_dir.mkdir(parents=True, exist_ok=True)
    target_path = output_dir / artifact.filename
    target_path.write_bytes(artifact.data)
    LOGGER.info(
        "recording saved to %s (%s, %d bytes)",
        target_path,
        artifact.mime_type,
        artifact.size_bytes,
    )
    return target_path


def pump_chunks(stream: IO[bytes], session: RecordingSession) -> None:
    """Append encoder output to the session as it becomes available."""
    while True:
        data = stream.read1(READ_CHUNK_BYTES)
        if not data:
            break
        session.append_chunk(data)


def pump_stderr(stream: IO[bytes], session: RecordingSession) -> None:
    for raw_line in iter(stream.readline, b""):
        session.stderr_tail.append(raw_line.decode("utf-8", errors="replace").strip())


def current_time_ms() -> int:
    return int(time.time() * 1000)


class RecordingPipeline:
    """Start and stop ffmpeg recordings of the compositor's output."""

    def __init__(
        self,
        encoder_probe: Callable[[], FrozenSet[str]] = probe_ffmpeg_encoders,
        process_factory: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
        clock_ms: Callable[[], int] = current_time_ms,
        stop_timeout_seconds: float = STOP_TIMEOUT_SECONDS,
    ) -> None:
        self._encoder_probe = encoder_probe
        self._process_factory = process_factory
        self._clock_ms = clock_ms
        self._stop_timeout_seconds = stop_timeout_seconds

    def start(
        self,
        frame_size: Tuple[int, int],
        frame_rate: int,
        audio: AudioInput | None,
    ) -> RecordingSession:
        """Start an encoder for frames of ``frame_size`` at ``frame_rate``."""
        encoding = select_encoding_format(self._encoder_probe(), audio is not None)
        command = build_ffmpeg_command(encoding, frame_size, frame_rate, audio)
        try:
            process = self._process_factory(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise PrompterPipelineError(
                FFMPEG_NOT_FOUND_CODE, "ffmpeg not found"
            ) from exc

        session = RecordingSession(
            encoding=encoding,
            frame_size=frame_size,
            process=process,
            started_at_ms=self._clock_ms(),
        )
        if process.stdout is not None:
            session.readers.append(
                threading.Thread(
                    target=pump_chunks,
                    args=(process.stdout, session),
                    name="focus-prompter-encoder-output",
                    daemon=True,
                )
            )
        if process.stderr is not None:
            session.readers.append(
                threading.Thread(
                    target=pump_stderr,
                    args=(process.stderr, session),
                    name="focus-prompter-encoder-log",
                    daemon=True,
                )
            )
        for reader in session.readers:
            reader.start()
        LOGGER.info(
            "recording started: %s at %dx%d, %d fps, audio %s",
            encoding.mime_type,
            frame_size[0],
            frame_size[1],
            frame_rate,
            "on" if audio is not None else "off",
        )
        return session

    def write_frame(self, session: RecordingSession, image: Image.Image) -> None:
        """Send one composited frame to the encoder."""
        if not session.active:
            return
        stdin = session.process.stdin
        if stdin is None:
            raise PrompterPipelineError(
                RECORDING_WRITE_CODE, "ffmpeg stdin unavailable"
            )
        if image.mode != "RGB":
            image = image.convert("RGB")
        if image.size != session.frame_size:
            image = image.resize(session.frame_size, Image.Resampling.BILINEAR)
        try:
            stdin.write(image.tobytes())
        except (BrokenPipeError, ValueError, OSError) as exc:
            raise PrompterPipelineError(
                RECORDING_WRITE_CODE, "ffmpeg stopped accepting frames"
            ) from exc
        session.frames_written += 1

    def stop(self, session: RecordingSession) -> RecordingArtifact:
        """Finalise the session into one artifact; repeated calls return it."""
        if session.artifact is not None:
            return session.artifact
        session.active = False
        process = session.process
        if process.stdin is not None and not process.stdin.closed:
            try:
                process.stdin.close()
            except OSError as exc:
                LOGGER.warning(
                    "%s: closing ffmpeg stdin failed (%s)", RECORDING_PROCESS_CODE, exc
                )
        try:
            return_code = process.wait(timeout=self._stop_timeout_seconds)
        except subprocess.TimeoutExpired:
            LOGGER.warning(
                "%s: ffmpeg did not exit in %.1fs, killing it",
                RECORDING_PROCESS_CODE,
                self._stop_timeout_seconds,
            )
            process.kill()
            return_code = process.wait()
        for reader in session.readers:
            reader.join(timeout=self._stop_timeout_seconds)
        if return_code != 0:
            LOGGER.warning(
                "%s: ffmpeg exited with code %d. %s",
                RECORDING_PROCESS_CODE,
                return_code,
                " ".join(session.stderr_tail),
            )

        stopped_at_ms = self._clock_ms()
        artifact = RecordingArtifact(
            data=session.collected_bytes(),
            mime_type=session.encoding.container_type,
            filename=build_artifact_filename(
                stopped_at_ms, session.encoding.extension
            ),
        )
        session.artifact = artifact
        LOGGER.info(
            "recording stopped after %d frames in %.1fs, %d bytes",
            session.frames_written,
            (stopped_at_ms - session.started_at_ms) / 1000.0,
            artifact.size_bytes,
        )
        return artifact
