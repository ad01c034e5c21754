"""Tests for recording format negotiation and the ffmpeg encoder pipeline."""

from __future__ import annotations

import io
from pathlib import Path
import shutil
import subprocess
from typing import List

from PIL import Image
import pytest

from domain.prompter import PrompterPipelineError
from service.camera import AudioInput
from service.recording import (
    BASELINE_FORMAT,
    FFMPEG_NOT_FOUND_CODE,
    PREFERRED_FORMATS,
    RECORDING_UNSUPPORTED_CODE,
    RECORDING_WRITE_CODE,
    RecordingArtifact,
    RecordingPipeline,
    build_artifact_filename,
    build_ffmpeg_command,
    parse_encoder_names,
    save_artifact,
    select_encoding_format,
)

ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libvpx               libvpx VP8 (codec vp8)
 V....D libvpx-vp9           libvpx VP9 (codec vp9)
 V.S... mpeg4                MPEG-4 part 2
 A....D aac                  AAC (Advanced Audio Coding)
 A....D libopus              libopus Opus (codec opus)
 A....D libvorbis            libvorbis (codec vorbis)
"""
FULL_ENCODERS = parse_encoder_names(ENCODERS_OUTPUT)
MICROPHONE = AudioInput(input_format="pulse", device="default")


class RecordingStdin(io.BytesIO):
    """Stdin that remembers what was written after it is closed."""

    def __init__(self) -> None:
        super().__init__()
        self.captured = b""

    def close(self) -> None:
        self.captured = self.getvalue()
        super().close()


class FakeProcess:
    """Stands in for an ffmpeg Popen with canned output."""

    def __init__(self, output_chunks: List[bytes], return_code: int = 0) -> None:
        self.stdin = RecordingStdin()
        self.stdout = io.BytesIO(b"".join(output_chunks))
        self.stderr = io.BytesIO(b"encoder log line\n")
        self.return_code = return_code
        self.wait_calls = 0
        self.killed = False

    def wait(self, timeout: float | None = None) -> int:
        self.wait_calls += 1
        return self.return_code

    def kill(self) -> None:
        self.killed = True


class FakeProcessFactory:
    def __init__(self, process: FakeProcess) -> None:
        self.process = process
        self.commands: List[List[str]] = []

    def __call__(self, command: List[str], **kwargs: object) -> FakeProcess:
        self.commands.append(command)
        return self.process


def build_pipeline(
    process: FakeProcess, encoders: frozenset = FULL_ENCODERS
) -> tuple[RecordingPipeline, FakeProcessFactory]:
    factory = FakeProcessFactory(process)
    pipeline = RecordingPipeline(
        encoder_probe=lambda: encoders,
        process_factory=factory,
        clock_ms=lambda: 1700000000123,
    )
    return pipeline, factory


def test_parse_encoder_names_skips_legend() -> None:
    assert FULL_ENCODERS == frozenset(
        {"libvpx", "libvpx-vp9", "mpeg4", "aac", "libopus", "libvorbis"}
    )


def test_select_prefers_vp9_opus() -> None:
    encoding = select_encoding_format(FULL_ENCODERS, include_audio=True)
    assert encoding is PREFERRED_FORMATS[0]
    assert encoding.container_type == "video/webm"


def test_select_falls_back_in_order() -> None:
    without_vp9 = FULL_ENCODERS - {"libvpx-vp9"}
    assert select_encoding_format(without_vp9, True) is PREFERRED_FORMATS[1]

    without_opus = without_vp9 - {"libopus"}
    assert select_encoding_format(without_opus, True) is PREFERRED_FORMATS[2]

    baseline_only = frozenset({"mpeg4", "aac"})
    assert select_encoding_format(baseline_only, True) is BASELINE_FORMAT


def test_select_ignores_audio_codec_without_microphone() -> None:
    video_only = frozenset({"libvpx-vp9"})
    assert select_encoding_format(video_only, False) is PREFERRED_FORMATS[0]


def test_select_raises_when_nothing_is_supported() -> None:
    with pytest.raises(PrompterPipelineError) as excinfo:
        select_encoding_format(frozenset({"h264_nvenc"}), True)
    assert excinfo.value.code == RECORDING_UNSUPPORTED_CODE


def test_ffmpeg_command_with_audio() -> None:
    command = build_ffmpeg_command(PREFERRED_FORMATS[0], (1280, 720), 30, MICROPHONE)
    assert command[0] == "ffmpeg"
    assert command[command.index("-s") + 1] == "1280x720"
    assert command[command.index("-pix_fmt") + 1] == "rgb24"
    assert command[command.index("-c:v") + 1] == "libvpx-vp9"
    assert command[command.index("-c:a") + 1] == "libopus"
    assert "-shortest" in command
    assert ["-f", "pulse", "-i", "default"] == command[
        command.index("pulse") - 1 : command.index("pulse") + 3
    ]
    assert command[-3:] == ["-f", "webm", "pipe:1"]


def test_ffmpeg_command_without_audio() -> None:
    command = build_ffmpeg_command(BASELINE_FORMAT, (640, 480), 24, None)
    assert "-an" in command
    assert "-c:a" not in command
    assert command[-3:] == ["-f", "matroska", "pipe:1"]


def test_artifact_filename() -> None:
    assert (
        build_artifact_filename(1700000000123, "webm")
        == "focus-prompter-1700000000123.webm"
    )


def test_recording_concatenates_chunks_in_order(tmp_path: Path) -> None:
    process = FakeProcess([b"\x1aE\xdf\xa3", b"cluster-1", b"cluster-2"])
    pipeline, factory = build_pipeline(process)

    session = pipeline.start((4, 2), 30, MICROPHONE)
    pipeline.write_frame(session, Image.new("RGB", (4, 2), (255, 0, 0)))
    pipeline.write_frame(session, Image.new("RGBA", (8, 4), (0, 255, 0, 255)))
    artifact = pipeline.stop(session)

    assert factory.commands and factory.commands[0][0] == "ffmpeg"
    assert session.frames_written == 2
    assert len(process.stdin.captured) == 2 * 4 * 2 * 3
    assert process.stdin.captured[:3] == b"\xff\x00\x00"
    assert artifact.data == b"\x1aE\xdf\xa3cluster-1cluster-2"
    assert artifact.mime_type == "video/webm"
    assert artifact.filename == "focus-prompter-1700000000123.webm"
    assert session.started_at_ms == 1700000000123

    saved_path = save_artifact(artifact, tmp_path / "out")
    assert saved_path.read_bytes() == artifact.data


def test_stop_is_idempotent_and_ignores_late_frames() -> None:
    process = FakeProcess([b"data"])
    pipeline, _ = build_pipeline(process)
    session = pipeline.start((2, 2), 30, None)

    first = pipeline.stop(session)
    second = pipeline.stop(session)
    pipeline.write_frame(session, Image.new("RGB", (2, 2)))

    assert first is second
    assert process.wait_calls == 1
    assert session.frames_written == 0


def test_stop_keeps_output_when_encoder_fails() -> None:
    process = FakeProcess([b"partial"], return_code=1)
    pipeline, _ = build_pipeline(process)
    session = pipeline.start((2, 2), 30, None)
    artifact = pipeline.stop(session)
    assert artifact.data == b"partial"
    assert "encoder log line" in session.stderr_tail


def test_write_failure_raises_coded_error() -> None:
    process = FakeProcess([])
    pipeline, _ = build_pipeline(process)
    session = pipeline.start((2, 2), 30, None)
    process.stdin.close()
    with pytest.raises(PrompterPipelineError) as excinfo:
        pipeline.write_frame(session, Image.new("RGB", (2, 2)))
    assert excinfo.value.code == RECORDING_WRITE_CODE


def test_missing_ffmpeg_binary_raises_coded_error() -> None:
    def missing_binary(command: List[str], **kwargs: object) -> subprocess.Popen:
        raise FileNotFoundError("ffmpeg")

    pipeline = RecordingPipeline(
        encoder_probe=lambda: FULL_ENCODERS, process_factory=missing_binary
    )
    with pytest.raises(PrompterPipelineError) as excinfo:
        pipeline.start((2, 2), 30, None)
    assert excinfo.value.code == FFMPEG_NOT_FOUND_CODE


def test_artifact_size() -> None:
    artifact = RecordingArtifact(data=b"abc", mime_type="video/webm", filename="x")
    assert artifact.size_bytes == 3


def test_real_ffmpeg_records_frames(tmp_path: Path) -> None:
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")

    pipeline = RecordingPipeline()
    session = pipeline.start((64, 48), 10, None)
    for shade in range(0, 250, 25):
        pipeline.write_frame(session, Image.new("RGB", (64, 48), (shade, 0, 0)))
    artifact = pipeline.stop(session)

    assert session.frames_written == 10
    assert artifact.size_bytes > 0
    assert artifact.data.startswith(b"\x1aE\xdf\xa3")
    assert artifact.filename.endswith(f".{session.encoding.extension}")
    assert save_artifact(artifact, tmp_path).stat().st_size == artifact.size_bytes
