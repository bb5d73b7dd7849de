"""
Countdown timer for time-limited (TIMED) attempts.
"""
import asyncio
import logging
import math
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_timer_start(attempt_id: str, duration: int) -> None:
        logger.info(
            f"Countdown lifecycle: START - Attempt {attempt_id}, Duration {duration}s",
            extra={
                'event_type': 'countdown_start',
                'attempt_id': attempt_id,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(attempt_id: str, remaining_time: int, total_duration: int) -> None:
        """Log countdown updates (throttled to avoid spam)."""
        if remaining_time % 60 == 0 or remaining_time <= 10:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Countdown lifecycle: UPDATE - Attempt {attempt_id}, Remaining {remaining_time}s ({progress_percent:.1f}% elapsed)",
                extra={
                    'event_type': 'countdown_update',
                    'attempt_id': attempt_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(attempt_id: str, completion_type: str, total_duration: int) -> None:
        """Log countdown completion (natural expiry or cancellation)."""
        logger.info(
            f"Countdown lifecycle: COMPLETED - Attempt {attempt_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'countdown_completed',
                'attempt_id': attempt_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(attempt_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        logger.info(
            f"Countdown lifecycle: STATE_TRANSITION - Attempt {attempt_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'countdown_state_transition',
                'attempt_id': attempt_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(attempt_id: str, error_type: str, error_message: str, operation: str) -> None:
        logger.error(
            f"Countdown lifecycle: ERROR - Attempt {attempt_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'countdown_error',
                'attempt_id': attempt_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class AttemptCountdown:
    """
    Counts down the time left on an attempt against a fixed deadline.

    The remaining time is always derived from a monotonic deadline, so slow
    update callbacks or a busy event loop never stretch the attempt. Pausing
    freezes the remaining time and resuming sets a fresh deadline from it.
    """

    def __init__(self, attempt_id: str = None, tick: float = 1.0):
        """
        Initialize the countdown.

        Args:
            attempt_id: Attempt the countdown belongs to (used for logging)
            tick: Wall-clock seconds per countdown second
        """
        self._task: Optional[asyncio.Task] = None
        self._resumed: Optional[asyncio.Event] = None
        self._is_paused = False
        self._is_cancelled = False
        self._deadline: Optional[float] = None
        self._frozen_remaining = 0.0
        self._total_duration = 0
        self._attempt_id = attempt_id
        self._tick = tick

    def start(
        self,
        duration: int,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> asyncio.Task:
        """Run the countdown as a background task and return the task."""
        if self.is_running:
            raise RuntimeError(f"Countdown already running for attempt {self._attempt_id}")
        self._arm(duration)
        self._task = asyncio.create_task(
            self._count_down(update_callback, completion_callback)
        )
        return self._task

    async def run_countdown(
        self,
        duration: int,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        """
        Count down ``duration`` seconds in the current task.

        Args:
            duration: Seconds left on the attempt
            update_callback: Awaited with the remaining whole seconds each time that value drops
            completion_callback: Awaited once when time runs out (not on cancellation)
        """
        self._arm(duration)
        await self._count_down(update_callback, completion_callback)

    def _arm(self, duration: int) -> None:
        self._total_duration = max(int(duration), 0)
        self._frozen_remaining = float(self._total_duration)
        self._is_cancelled = False
        if self._is_paused:
            self._deadline = None
        else:
            self._deadline = time.monotonic() + self._total_duration * self._tick

    def _seconds_left(self) -> float:
        if self._is_paused or self._deadline is None:
            return self._frozen_remaining
        return max((self._deadline - time.monotonic()) / self._tick, 0.0)

    async def _count_down(
        self,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        # The event must be created on the loop that runs the countdown
        self._resumed = asyncio.Event()
        if not self._is_paused:
            self._resumed.set()

        TimerLifecycleLogger.log_timer_start(self._attempt_id, self._total_duration)

        last_reported = None
        try:
            while not self._is_cancelled:
                if self._is_paused:
                    await self._resumed.wait()
                    continue

                left = self._seconds_left()
                whole = math.ceil(left)
                if whole <= 0:
                    break

                if whole != last_reported:
                    last_reported = whole
                    TimerLifecycleLogger.log_timer_update(self._attempt_id, whole, self._total_duration)
                    await update_callback(whole)
                    continue

                # Sleep until the displayed value drops by one
                await asyncio.sleep((left - (whole - 1)) * self._tick)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._attempt_id, "cancelled", self._total_duration)
            else:
                self._frozen_remaining = 0.0
                TimerLifecycleLogger.log_timer_completion(self._attempt_id, "natural_expiry", self._total_duration)
                await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._attempt_id, "asyncio_cancelled", self._total_duration)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._attempt_id,
                "countdown_execution_error",
                str(e),
                "run_countdown"
            )
            raise

    def pause(self) -> None:
        if self._is_paused:
            return
        TimerLifecycleLogger.log_timer_state_transition(self._attempt_id, "running", "paused", "pause requested")
        self._frozen_remaining = self._seconds_left()
        self._is_paused = True
        if self._resumed is not None:
            self._resumed.clear()

    def resume(self) -> None:
        if not self._is_paused:
            return
        TimerLifecycleLogger.log_timer_state_transition(self._attempt_id, "paused", "running", "resume requested")
        self._deadline = time.monotonic() + self._frozen_remaining * self._tick
        self._is_paused = False
        if self._resumed is not None:
            self._resumed.set()

    def cancel(self) -> None:
        TimerLifecycleLogger.log_timer_state_transition(
            self._attempt_id,
            "paused" if self._is_paused else "running",
            "cancelled",
            "cancel requested"
        )
        self._frozen_remaining = self._seconds_left()
        self._deadline = None
        self._is_cancelled = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        """Whole countdown seconds left, computed from the deadline."""
        return math.ceil(self._seconds_left())
