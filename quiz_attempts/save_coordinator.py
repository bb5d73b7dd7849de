"""
Automatic and manual saving of unsynced answers for batch-mode attempts.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .answer_store import AnswerStore
from .errors import EncodingError
from .gateway import RemoteAttemptGateway
from .models import AnswerSubmission, AnswerSubmissionResult, SessionSettings

logger = logging.getLogger(__name__)


class SaveLifecycleLogger:
    """Structured logging for save lifecycle events."""

    @staticmethod
    def log_save_start(attempt_id: str, trigger: str, answer_count: int) -> float:
        started = time.time()
        logger.info(
            f"Save lifecycle: START - Attempt {attempt_id}, Trigger {trigger}, Answers {answer_count}",
            extra={
                'event_type': 'save_start',
                'attempt_id': attempt_id,
                'trigger': trigger,
                'answer_count': answer_count,
                'timestamp': started
            }
        )
        return started

    @staticmethod
    def log_save_complete(attempt_id: str, trigger: str, saved_count: int, started: float) -> None:
        duration = time.time() - started
        logger.info(
            f"Save lifecycle: COMPLETE - Attempt {attempt_id}, Trigger {trigger}, Saved {saved_count}, Duration {duration:.3f}s",
            extra={
                'event_type': 'save_complete',
                'attempt_id': attempt_id,
                'trigger': trigger,
                'saved_count': saved_count,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_save_failed(attempt_id: str, trigger: str, error: Exception) -> None:
        logger.error(
            f"Save lifecycle: FAILED - Attempt {attempt_id}, Trigger {trigger}, {type(error).__name__}: {error}",
            extra={
                'event_type': 'save_failed',
                'attempt_id': attempt_id,
                'trigger': trigger,
                'error_type': type(error).__name__,
                'error_message': str(error),
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_save_skipped(attempt_id: str, reason: str) -> None:
        logger.debug(
            f"Save lifecycle: SKIPPED - Attempt {attempt_id}: {reason}",
            extra={
                'event_type': 'save_skipped',
                'attempt_id': attempt_id,
                'reason': reason,
                'timestamp': time.time()
            }
        )


@dataclass
class SaveResult:
    """Outcome of one flush."""
    trigger: str
    submitted: List[AnswerSubmissionResult] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def saved_count(self) -> int:
        return len(self.submitted)


async def invoke_callback(callback: Optional[Callable[..., Any]], *args) -> None:
    """Call a sync or async callback, awaiting its result when needed."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SaveCoordinator:
    """
    Flushes AnswerStore changes through the batch-submit endpoint.

    All flushes run under the session's lock, so an auto-save, a manual save
    and a submission never overlap. A failed flush leaves dirty flags in
    place; the next save retries the same diff.
    """

    def __init__(
        self,
        store: AnswerStore,
        gateway: RemoteAttemptGateway,
        lock: asyncio.Lock,
        settings: Optional[SessionSettings] = None,
        on_error: Optional[Callable[[Exception, str], Any]] = None,
        on_saved: Optional[Callable[[SaveResult], Any]] = None
    ):
        """
        Initialize the save coordinator.

        Args:
            store: Answer store owned by the session
            gateway: Remote attempt service
            lock: The session's submission lock
            settings: Session settings (auto-save interval, grading flags)
            on_error: Called with (error, operation) when an auto-save fails
            on_saved: Called with the SaveResult after every successful flush
        """
        self.store = store
        self.gateway = gateway
        self.settings = settings or SessionSettings()
        self.on_error = on_error
        self.on_saved = on_saved
        self._lock = lock
        self._attempt_id: Optional[str] = None
        self._auto_save_task: Optional[asyncio.Task] = None
        self._in_flight_task: Optional[asyncio.Task] = None
        self._is_saving = False
        self._closed = False
        self.last_saved_at: Optional[datetime] = None
        self.last_error: Optional[Exception] = None

    def bind(self, attempt_id: str) -> None:
        self._attempt_id = attempt_id

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def auto_save_active(self) -> bool:
        return self._auto_save_task is not None and not self._auto_save_task.done()

    def pending_count(self) -> int:
        """Number of unsynced answers that are complete enough to send."""
        return sum(1 for record in self.store.diff_dirty() if self.store.is_answered(record.question_id))

    def has_pending(self) -> bool:
        return self.pending_count() > 0

    async def flush(self, trigger: str) -> SaveResult:
        """
        Submit every unsynced, complete answer in one batch.

        The caller must hold the session lock.

        Returns:
            SaveResult listing submitted answers and skipped question ids

        Raises:
            GatewayError: If the batch submission fails (dirty flags are kept)
        """
        if not self._lock.locked():
            raise RuntimeError("flush() requires the session lock")
        if self._attempt_id is None:
            raise RuntimeError("SaveCoordinator is not bound to an attempt")

        result = SaveResult(trigger=trigger)
        submissions: List[AnswerSubmission] = []

        for record in self.store.diff_dirty():
            question_id = record.question_id
            if not self.store.is_answered(question_id):
                result.skipped[question_id] = "incomplete answer"
                continue
            try:
                response = self.store.codec.encode_answer(self.store.question(question_id), record.user_response)
            except EncodingError as e:
                result.skipped[question_id] = str(e)
                continue
            submissions.append(AnswerSubmission(
                question_id=question_id,
                response=response,
                include_correctness=self.settings.include_correctness,
                include_correct_answer=self.settings.include_correct_answer,
                include_explanation=self.settings.include_explanation,
            ))

        if not submissions:
            SaveLifecycleLogger.log_save_skipped(self._attempt_id, "no complete unsynced answers")
            return result

        started = SaveLifecycleLogger.log_save_start(self._attempt_id, trigger, len(submissions))
        self._is_saving = True
        try:
            submitted = await self.gateway.submit_batch_answers(self._attempt_id, submissions)
        except Exception as e:
            self.last_error = e
            SaveLifecycleLogger.log_save_failed(self._attempt_id, trigger, e)
            raise
        finally:
            self._is_saving = False

        accepted = {answer.question_id for answer in submitted}
        for submission in submissions:
            if submission.question_id in accepted:
                self.store.mark_synced(submission.question_id, submission.response)

        result.submitted = list(submitted)
        self.last_error = None
        self.last_saved_at = datetime.now()
        SaveLifecycleLogger.log_save_complete(self._attempt_id, trigger, result.saved_count, started)
        await invoke_callback(self.on_saved, result)
        return result

    async def save_now(self) -> SaveResult:
        """
        Manually save unsynced answers.

        Waits for an in-flight save instead of running in parallel with it.
        """
        async with self._lock:
            return await self.flush("manual")

    def start_auto_save(self) -> bool:
        """Start the auto-save loop. Returns False when the loop was not started."""
        if self._closed:
            SaveLifecycleLogger.log_save_skipped(self._attempt_id, "auto-save requested after close")
            return False
        interval = self.settings.auto_save_interval
        if not interval or interval <= 0:
            logger.debug(f"Auto-save disabled for attempt {self._attempt_id}")
            return False
        if self.auto_save_active:
            return False
        self._auto_save_task = asyncio.create_task(self._auto_save_loop(interval))
        logger.info(
            f"Auto-save started for attempt {self._attempt_id} every {interval}s",
            extra={
                'event_type': 'auto_save_started',
                'attempt_id': self._attempt_id,
                'interval': interval,
                'timestamp': time.time()
            }
        )
        return True

    def stop_auto_save(self) -> bool:
        """
        Cancel the auto-save timer.

        An auto-save request that is already in flight keeps running.
        """
        if not self.auto_save_active:
            self._auto_save_task = None
            return False
        if self._auto_save_task is not asyncio.current_task():
            self._auto_save_task.cancel()
        self._auto_save_task = None
        logger.info(
            f"Auto-save stopped for attempt {self._attempt_id}",
            extra={
                'event_type': 'auto_save_stopped',
                'attempt_id': self._attempt_id,
                'timestamp': time.time()
            }
        )
        return True

    def close(self) -> None:
        """Stop auto-saving for good; later start requests are ignored."""
        self._closed = True
        self.stop_auto_save()

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def drain(self) -> None:
        """Wait for an in-flight auto-save to finish."""
        task = self._in_flight_task
        if task is not None and not task.done():
            await asyncio.wait([task])

    async def _auto_save_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._lock.locked():
                SaveLifecycleLogger.log_save_skipped(self._attempt_id, "save already in flight")
                continue
            if not self.has_pending():
                continue
            self._in_flight_task = asyncio.create_task(self._auto_save_once())
            # Shielded so that stopping the timer never aborts a request on the wire
            await asyncio.shield(self._in_flight_task)

    async def _auto_save_once(self) -> Optional[SaveResult]:
        async with self._lock:
            try:
                return await self.flush("auto")
            except Exception as e:
                await invoke_callback(self.on_error, e, "auto_save")
                return None
