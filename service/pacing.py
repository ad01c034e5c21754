"""Word pacing on a cooperative, single-threaded timer queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import heapq
import itertools
import logging
import time
from typing import Callable, Sequence, Tuple

from domain.prompter import (
    DEFAULT_WPM,
    clamp_int,
    clamp_rate,
    compute_token_delay_ms,
)

LOGGER = logging.getLogger("focus_prompter.pacing")

Clock = Callable[[], float]
Listener = Callable[[], None]


@dataclass(order=True)
class TimerHandle:
    """A scheduled callback that can be cancelled before it fires."""

    deadline: float
    sequence: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        """Mark the callback so the queue skips it."""
        self.cancelled = True


class TimerQueue:
    """Deadline-ordered callbacks run cooperatively by the owner's loop."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._heap: list[TimerHandle] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        """Current reading of the injected clock."""
        return self._clock()

    def call_later(
        self, delay_seconds: float, callback: Callable[[], None]
    ) -> TimerHandle:
        """Schedule a callback after the given delay."""
        handle = TimerHandle(
            deadline=self._clock() + max(0.0, delay_seconds),
            sequence=next(self._sequence),
            callback=callback,
        )
        heapq.heappush(self._heap, handle)
        return handle

    def run_due(self) -> int:
        """Run every due callback in deadline order and return how many ran."""
        now = self._clock()
        executed = 0
        while self._heap and self._heap[0].deadline <= now:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.cancelled = True
            handle.callback()
            executed += 1
        return executed

    def seconds_until_next(self) -> float | None:
        """Seconds until the next live deadline, or None when idle."""
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
        if not self._heap:
            return None
        return max(0.0, self._heap[0].deadline - self._clock())

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._heap if not handle.cancelled)


class PacingState(str, Enum):
    """Observable pacing states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


class PacingEngine:
    """Advance a cursor over tokens with a punctuation-aware delay.

    At most one timer is pending at any time. Every operation that changes
    ``running``, ``cursor`` or ``rate`` cancels the pending timer before it
    schedules a replacement, so a stale timer can never advance the cursor.
    """

    def __init__(
        self,
        scheduler: TimerQueue,
        tokens: Sequence[str] = (),
        rate: int = DEFAULT_WPM,
    ) -> None:
        self._scheduler = scheduler
        self._tokens: Tuple[str, ...] = tuple(tokens)
        self._cursor = 0
        self._rate = clamp_rate(rate)
        self._running = False
        self._timer: TimerHandle | None = None
        self._finished_listeners: list[Listener] = []
        self._change_listeners: list[Listener] = []

    @property
    def tokens(self) -> Tuple[str, ...]:
        return self._tokens

    @property
    def token_count(self) -> int:
        return len(self._tokens)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def rate(self) -> int:
        return self._rate

    @property
    def running(self) -> bool:
        return self._running

    @property
    def finished(self) -> bool:
        return self._cursor >= len(self._tokens)

    @property
    def state(self) -> PacingState:
        # Idle is defined by cursor 0 with the clock stopped, so a pause on the
        # first token reads as IDLE rather than PAUSED.
        if self.finished:
            return PacingState.FINISHED
        if self._running:
            return PacingState.RUNNING
        if self._cursor == 0:
            return PacingState.IDLE
        return PacingState.PAUSED

    @property
    def current_token(self) -> str | None:
        """Token under the cursor, read fresh on every access."""
        if self.finished:
            return None
        return self._tokens[self._cursor]

    @property
    def progress(self) -> float:
        if not self._tokens:
            return 1.0
        return self._cursor / len(self._tokens)

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def add_finished_listener(self, listener: Listener) -> None:
        self._finished_listeners.append(listener)

    def add_change_listener(self, listener: Listener) -> None:
        self._change_listeners.append(listener)

    def load(self, tokens: Sequence[str]) -> None:
        """Replace the script; the cursor returns to the start."""
        self._cancel_timer()
        self._tokens = tuple(tokens)
        self._cursor = 0
        self._running = False
        LOGGER.debug("pacing loaded %d tokens", len(self._tokens))
        self._notify_change()

    def play(self) -> None:
        if self._running or self.finished:
            return
        self._running = True
        self._schedule_current()
        self._notify_change()

    def pause(self) -> None:
        if not self._running:
            return
        self._cancel_timer()
        self._running = False
        self._notify_change()

    def toggle(self) -> None:
        if self.finished:
            return
        if self._running:
            self.pause()
        else:
            self.play()

    def seek(self, delta: int) -> None:
        """Move the cursor by ``delta`` tokens, clamped to the script."""
        last_index = max(0, len(self._tokens) - 1)
        self._cancel_timer()
        self._cursor = clamp_int(self._cursor + delta, 0, last_index)
        if self.finished:
            self._running = False
        if self._running:
            self._schedule_current()
        self._notify_change()

    def set_rate(self, rate: int) -> None:
        """Set words per minute; a running clock restarts the current delay."""
        self._rate = clamp_rate(rate)
        if self._running:
            self._cancel_timer()
            self._schedule_current()
        self._notify_change()

    def adjust_rate(self, delta: int) -> None:
        self.set_rate(self._rate + delta)

    def reset(self) -> None:
        self._cancel_timer()
        self._running = False
        self._cursor = 0
        self._notify_change()

    def current_delay_ms(self) -> float:
        token = self.current_token
        if token is None:
            return 0.0
        return compute_token_delay_ms(token, self._rate)

    def _schedule_current(self) -> None:
        self._cancel_timer()
        delay_ms = self.current_delay_ms()
        self._timer = self._scheduler.call_later(
            delay_ms / 1000.0, self._on_tick
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_tick(self) -> None:
        self._timer = None
        if not self._running or self.finished:
            return
        self._cursor += 1
        if self.finished:
            self._running = False
            LOGGER.info("pacing finished after %d tokens", len(self._tokens))
            self._notify_change()
            for listener in list(self._finished_listeners):
                listener()
            return
        self._schedule_current()
        self._notify_change()

    def _notify_change(self) -> None:
        for listener in list(self._change_listeners):
            listener()
