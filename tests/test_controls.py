"""Tests for keyboard bindings."""

from __future__ import annotations

from pathlib import Path

import pytest

from domain.prompter import PrompterConfig
from service.compositor import FrameCompositor
from service.controls import KeyCommand, apply_command, resolve_key
from service.coordinator import PrompterCoordinator
from service.pacing import PacingEngine, TimerQueue
from service.recording import RecordingPipeline


def build_coordinator(tmp_path: Path) -> PrompterCoordinator:
    scheduler = TimerQueue(clock=lambda: 0.0)
    engine = PacingEngine(scheduler, ["one", "two", "three"], 250)

    def no_camera():
        raise AssertionError("camera should not open")

    return PrompterCoordinator(
        engine=engine,
        compositor=FrameCompositor(),
        recorder=RecordingPipeline(encoder_probe=lambda: frozenset()),
        scheduler=scheduler,
        camera_opener=no_camera,
        config=PrompterConfig(),
        reference_viewport_width=1280,
        output_dir=tmp_path,
        notify=lambda message: None,
    )


@pytest.mark.parametrize(
    ("key_code", "command"),
    [
        (32, KeyCommand.TOGGLE_PLAY),
        (27, KeyCommand.EXIT),
        (ord("c"), KeyCommand.TOGGLE_CAMERA),
        (ord("R"), KeyCommand.TOGGLE_RECORDING),
        (65361, KeyCommand.SEEK_BACK),
        (65363, KeyCommand.SEEK_FORWARD),
        (2490368, KeyCommand.RATE_UP),
        (63233, KeyCommand.RATE_DOWN),
    ],
)
def test_resolve_key(key_code: int, command: KeyCommand) -> None:
    assert resolve_key(key_code) is command


def test_unbound_keys_resolve_to_none() -> None:
    assert resolve_key(-1) is None
    assert resolve_key(ord("z")) is None


def test_apply_command_drives_engine(tmp_path: Path) -> None:
    coordinator = build_coordinator(tmp_path)
    engine = coordinator.engine

    assert apply_command(KeyCommand.SEEK_FORWARD, coordinator)
    assert engine.cursor == 1
    assert apply_command(KeyCommand.RATE_UP, coordinator)
    assert engine.rate == 260
    assert apply_command(KeyCommand.RATE_DOWN, coordinator)
    assert apply_command(KeyCommand.RATE_DOWN, coordinator)
    assert engine.rate == 240
    assert apply_command(KeyCommand.TOGGLE_PLAY, coordinator)
    assert engine.running
    assert apply_command(KeyCommand.RESET, coordinator)
    assert engine.cursor == 0
    assert not engine.running


def test_recording_key_without_camera_does_nothing(tmp_path: Path) -> None:
    coordinator = build_coordinator(tmp_path)
    assert apply_command(KeyCommand.TOGGLE_RECORDING, coordinator)
    assert not coordinator.recording


def test_exit_pauses_and_leaves_view(tmp_path: Path) -> None:
    coordinator = build_coordinator(tmp_path)
    apply_command(KeyCommand.TOGGLE_PLAY, coordinator)
    assert not apply_command(KeyCommand.EXIT, coordinator)
    assert not coordinator.engine.running
