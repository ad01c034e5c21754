"""Integration tests for the focus_prompter CLI."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import List

import focus_prompter


def run_focus_prompter(args: List[str], repo_root: Path) -> subprocess.CompletedProcess[str]:
    """Run focus_prompter.py with the provided arguments."""
    return subprocess.run(
        [sys.executable, str(repo_root / "focus_prompter.py"), *args],
        cwd=repo_root,
        text=True,
        capture_output=True,
        check=False,
    )


def test_emit_schedule(tmp_path: Path) -> None:
    """Emit per-token focus indices and delays without opening a camera."""
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "script.txt"
    script_path.write_text("Hello, world. Again", encoding="utf-8")

    result = run_focus_prompter(
        ["--script-file", str(script_path), "--wpm", "250", "--emit-schedule"],
        repo_root,
    )

    assert result.returncode == 0, result.stderr
    payload = json.loads(result.stdout)
    assert payload["wpm"] == 250
    assert payload["token_count"] == 3
    assert [entry["text"] for entry in payload["tokens"]] == [
        "Hello,",
        "world.",
        "Again",
    ]
    assert [entry["focus_index"] for entry in payload["tokens"]] == [2, 2, 2]
    assert [entry["delay_ms"] for entry in payload["tokens"]] == [360.0, 480.0, 240.0]
    assert payload["total_ms"] == 1080.0


def test_invalid_wpm_is_rejected(tmp_path: Path) -> None:
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "script.txt"
    script_path.write_text("Hello", encoding="utf-8")

    result = run_focus_prompter(
        ["--script-file", str(script_path), "--wpm", "5", "--emit-schedule"],
        repo_root,
    )

    assert result.returncode == 1
    assert "focus_prompter.input.invalid_config" in result.stderr


def test_missing_script_file(tmp_path: Path) -> None:
    repo_root = Path(__file__).resolve().parents[1]

    result = run_focus_prompter(
        ["--script-file", str(tmp_path / "missing.txt"), "--emit-schedule"],
        repo_root,
    )

    assert result.returncode == 1
    assert "focus_prompter.input.file_error" in result.stderr


def test_invalid_theme(tmp_path: Path) -> None:
    repo_root = Path(__file__).resolve().parents[1]
    script_path = tmp_path / "script.txt"
    script_path.write_text("Hello", encoding="utf-8")

    result = run_focus_prompter(
        ["--script-file", str(script_path), "--theme", "neon", "--emit-schedule"],
        repo_root,
    )

    assert result.returncode == 1
    assert "focus_prompter.input.invalid_theme" in result.stderr


def test_compute_wait_ms_caps_and_floors() -> None:
    assert focus_prompter.compute_wait_ms(None) == focus_prompter.MAX_WAIT_MS
    assert focus_prompter.compute_wait_ms(5.0) == focus_prompter.MAX_WAIT_MS
    assert focus_prompter.compute_wait_ms(0.0078125) == 7
    assert focus_prompter.compute_wait_ms(0.0) == 1


def test_parse_args_builds_request(tmp_path: Path) -> None:
    script_path = tmp_path / "script.txt"
    script_path.write_text("One two", encoding="utf-8")
    request = focus_prompter.parse_args(
        [
            "--script-file",
            str(script_path),
            "--no-audio",
            "--hide-orp",
            "--theme",
            "glass",
            "--output-dir",
            str(tmp_path / "out"),
        ]
    )
    assert request.audio is None
    assert request.script_text == "One two"
    assert not request.config.show_orp
    assert request.config.theme.value == "glass"
    assert request.viewport_size == (1280, 720)
    assert request.output_dir == tmp_path / "out"

    request = focus_prompter.parse_args(
        [
            "--script-file",
            str(script_path),
            "--audio-format",
            "alsa",
            "--audio-device",
            "hw:1",
        ]
    )
    assert request.audio is not None
    assert request.audio.ffmpeg_args() == ("-f", "alsa", "-i", "hw:1")
