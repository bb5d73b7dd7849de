"""
Attempt session for the quiz attempt engine.

Drives one quiz attempt from start to completion or abandonment: loads
questions, routes answers through the AnswerStore, submits them one at a time
(ONE_BY_ONE) or in batches (ALL_AT_ONCE, TIMED), and keeps local state in step
with what the attempt service acknowledges.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .answer_store import AnswerStore
from .attempt_timer import AttemptCountdown
from .errors import (
    AttemptNotFoundError,
    GatewayError,
    InvalidSessionStateError,
    StateConflictError,
    UnsupportedQuestionType,
    ValidationError,
    user_message,
)
from .gateway import RemoteAttemptGateway
from .models import (
    AnswerRecord,
    AnswerSubmission,
    AnswerSubmissionResult,
    Attempt,
    AttemptMode,
    AttemptResult,
    AttemptReview,
    AttemptStats,
    AttemptStatus,
    CurrentQuestion,
    ProgressSnapshot,
    Question,
    SessionSettings,
    StartAttemptResult,
)
from .progress_tracker import ProgressTracker
from .question_codec import QuestionCodec
from .save_coordinator import SaveCoordinator, SaveResult, invoke_callback


class SessionState(Enum):
    """Enumeration of possible attempt session states."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ABANDONED)


_STATE_FOR_STATUS = {
    AttemptStatus.IN_PROGRESS: SessionState.IN_PROGRESS,
    AttemptStatus.PAUSED: SessionState.PAUSED,
    AttemptStatus.COMPLETED: SessionState.COMPLETED,
    AttemptStatus.ABANDONED: SessionState.ABANDONED,
}


class AttemptSession:
    """
    State machine for a single quiz attempt.

    Every mutating operation runs under one asyncio.Lock, so at most one
    request that changes the attempt is in flight at a time. Local state only
    moves after the attempt service acknowledges a transition.
    """

    def __init__(
        self,
        gateway: RemoteAttemptGateway,
        store: Optional[AnswerStore] = None,
        settings: Optional[SessionSettings] = None,
        codec: Optional[QuestionCodec] = None,
        on_state_change: Optional[Callable[["SessionState", "SessionState"], Any]] = None,
        on_error: Optional[Callable[[Exception, str], Any]] = None,
        on_time_update: Optional[Callable[[int], Any]] = None
    ):
        """
        Initialize the attempt session.

        Args:
            gateway: Remote attempt service
            store: Answer store to use; a fresh one is created if None
            settings: Session settings, defaults to SessionSettings()
            codec: Question codec for a freshly created store
            on_state_change: Called with (old_state, new_state) after every transition
            on_error: Called with (error, operation) for failures of timer-driven work
            on_time_update: Called each second with the remaining time of a TIMED attempt
        """
        self.logger = logging.getLogger(__name__)
        self.gateway = gateway
        self.settings = settings or SessionSettings()
        self.store = store if store is not None else AnswerStore(codec)
        self.progress = ProgressTracker()
        self.on_state_change = on_state_change
        self.on_error = on_error
        self.on_time_update = on_time_update

        self._lock = asyncio.Lock()
        self.saver = SaveCoordinator(
            self.store,
            gateway,
            self._lock,
            self.settings,
            on_error=self._on_background_error,
            on_saved=self._on_saved
        )
        self._countdown: Optional[AttemptCountdown] = None
        self._closed = False

        self._state = SessionState.NOT_STARTED
        self.attempt: Optional[Attempt] = None
        self.mode: Optional[AttemptMode] = None
        self.quiz_id: Optional[str] = None
        self.stats: Optional[AttemptStats] = None
        self.result: Optional[AttemptResult] = None
        self.last_submission: Optional[AnswerSubmissionResult] = None

        self._current: Optional[Question] = None
        self._current_number = 0
        self._awaiting_completion = False
        self._questions: List[Question] = []
        self._unsupported: List[str] = []

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempt_id(self) -> Optional[str]:
        return self.attempt.attempt_id if self.attempt else None

    @property
    def current_question(self) -> Optional[Question]:
        """The question to answer next (ONE_BY_ONE only)."""
        return self._current

    @property
    def questions(self) -> List[Question]:
        """Questions the UI should render: the current one, or the whole batch."""
        if self.mode is AttemptMode.ONE_BY_ONE:
            return [self._current] if self._current else []
        return list(self._questions)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def remaining_time(self) -> Optional[int]:
        """Seconds left on a TIMED attempt, None when no countdown runs."""
        if self._countdown is None:
            return None
        return self._countdown.remaining_time

    def progress_snapshot(self) -> ProgressSnapshot:
        return self.progress.snapshot()

    def completion_warnings(self) -> List[str]:
        """
        Warnings to show before completing a batch attempt.

        Unanswered questions are graded as incorrect; completing anyway is allowed.
        """
        if self.mode is None or not self.mode.is_batch:
            return []
        warnings = []
        unanswered = self.store.unanswered_ids()
        total = len(self._questions) or len(self.store)
        if unanswered:
            warnings.append(
                f"{len(unanswered)} of {total} questions are unanswered and will be graded as incorrect"
            )
        if self._unsupported:
            warnings.append(
                f"{len(self._unsupported)} questions use an unsupported type and cannot be answered"
            )
        return warnings

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def set_answer(self, question_id: str, response: Any) -> AnswerRecord:
        """Replace the answer to a question (UI shape)."""
        self._require_state("edit answers", SessionState.IN_PROGRESS)
        record = self.store.set(question_id, response)
        self._after_edit()
        return record

    def update_answer(self, question_id: str, partial: Any) -> AnswerRecord:
        """Merge a partial edit into the answer to a question."""
        self._require_state("edit answers", SessionState.IN_PROGRESS)
        record = self.store.update(question_id, partial)
        self._after_edit()
        return record

    def is_answered(self, question_id: str) -> bool:
        return self.store.is_answered(question_id)

    def _after_edit(self) -> None:
        if self.mode is not None and self.mode.is_batch:
            self.progress.record_local_answers(self.store.answered_count())

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def start(self, quiz_id: str, mode: AttemptMode) -> StartAttemptResult:
        """
        Start a new attempt.

        The session moves to IN_PROGRESS once the service confirms the
        attempt. If loading the questions then fails the session stays
        IN_PROGRESS and ``refresh()`` retries the load.

        Args:
            quiz_id: Quiz to attempt
            mode: Delivery mode

        Returns:
            The service's start response

        Raises:
            InvalidSessionStateError: If the session was already started
            GatewayError: If the attempt could not be created (session stays NOT_STARTED)
        """
        mode = mode if isinstance(mode, AttemptMode) else AttemptMode(mode)
        async with self._lock:
            self._require_state("start", SessionState.NOT_STARTED)
            self.logger.info(
                f"Starting {mode.value} attempt for quiz {quiz_id}",
                extra={
                    'event_type': 'attempt_start_requested',
                    'quiz_id': quiz_id,
                    'mode': mode.value,
                    'timestamp': time.time()
                }
            )
            try:
                started = await self.gateway.start_attempt(quiz_id, mode)
            except GatewayError as e:
                self._log_operation_error("start", e)
                raise

            self.quiz_id = started.quiz_id or quiz_id
            self.mode = started.mode or mode
            self.attempt = Attempt(
                attempt_id=started.attempt_id,
                quiz_id=self.quiz_id,
                mode=self.mode,
                status=AttemptStatus.IN_PROGRESS,
                started_at=started.started_at or datetime.now(timezone.utc),
                total_questions=started.total_questions,
                time_limit_minutes=started.time_limit_minutes
            )
            self.progress.reset()
            self.progress.set_total(started.total_questions)
            self.saver.bind(started.attempt_id)
            await self._set_state(SessionState.IN_PROGRESS, "attempt started")

            try:
                await self._load_questions(first_question=started.first_question)
            except GatewayError as e:
                self._log_operation_error("load_questions", e)
                raise
            return started

    async def attach(self, attempt_id: str) -> Attempt:
        """
        Take over an attempt that was started earlier, e.g. one listed by
        ``RemoteAttemptGateway.get_attempts``.

        The session adopts the server's status. An IN_PROGRESS attempt has its
        question(s) loaded; a PAUSED one loads them on ``resume()``. Answers
        saved before attaching live on the server only and are reflected in
        the stats, not in the local answer store.

        Args:
            attempt_id: Attempt to continue

        Returns:
            The attempt as the service reports it

        Raises:
            InvalidSessionStateError: If the session was already started
            GatewayError: If the attempt could not be read (session stays NOT_STARTED)
        """
        async with self._lock:
            self._require_state("attach", SessionState.NOT_STARTED)
            try:
                attempt = await self.gateway.get_attempt(attempt_id)
            except GatewayError as e:
                self._log_operation_error("attach", e)
                raise
            if attempt.mode is None:
                raise GatewayError(f"Attempt {attempt_id} was returned without a delivery mode")

            self.logger.info(
                f"Attaching to {attempt.mode.value} attempt {attempt_id} ({attempt.status.value})",
                extra={
                    'event_type': 'attempt_attached',
                    'attempt_id': attempt_id,
                    'quiz_id': attempt.quiz_id,
                    'status': attempt.status.value,
                    'timestamp': time.time()
                }
            )
            self.quiz_id = attempt.quiz_id
            self.mode = attempt.mode
            self.progress.reset()
            self.saver.bind(attempt.attempt_id)
            await self._apply_attempt(attempt, "attached to existing attempt")

            if self._state is SessionState.IN_PROGRESS:
                try:
                    await self._load_questions()
                except GatewayError as e:
                    self._log_operation_error("load_questions", e)
                    raise
            if not self._state.is_terminal:
                await self._refresh_stats()
            return self.attempt

    async def pause(self) -> Attempt:
        """
        Pause the attempt.

        Batch modes save unsynced answers first; if that save fails the pause
        is not sent and the error propagates.

        Raises:
            InvalidSessionStateError: If not in progress or the mode is not pausable
            GatewayError: If saving or pausing fails
        """
        async with self._lock:
            self._require_state("pause", SessionState.IN_PROGRESS)
            if self.mode not in self.settings.pausable_modes:
                raise InvalidSessionStateError(f"{self.mode.value} attempts cannot be paused")

            if self.mode.is_batch:
                await self._flush("pause")

            attempt = await self._call(
                "pause", self.gateway.pause_attempt, self.attempt_id,
                accept=(SessionState.PAUSED,)
            )
            if attempt is not None:
                await self._apply_attempt(attempt, "pause acknowledged")
            return self.attempt

    async def resume(self) -> Attempt:
        """
        Resume a paused attempt.

        If the service reports the attempt as already completed the session
        moves to COMPLETED instead of raising.

        Raises:
            InvalidSessionStateError: If the session is not paused
            GatewayError: If resuming or reloading the attempt fails
        """
        async with self._lock:
            self._require_state("resume", SessionState.PAUSED)
            attempt = await self._call(
                "resume", self.gateway.resume_attempt, self.attempt_id,
                accept=(SessionState.IN_PROGRESS, SessionState.COMPLETED)
            )
            if attempt is not None:
                await self._apply_attempt(attempt, "resume acknowledged")

            if self._state is SessionState.COMPLETED:
                self.logger.info(f"Attempt {self.attempt_id} was already completed on the server")
                return self.attempt

            if self.mode is AttemptMode.ONE_BY_ONE:
                if not self._awaiting_completion:
                    await self._fetch_current_question()
            else:
                if not self._questions:
                    await self._load_questions()
                await self._refresh_stats()
            return self.attempt

    async def submit_current(self) -> AnswerSubmissionResult:
        """
        Submit the answer to the current question (ONE_BY_ONE).

        On success the next question becomes current; when the service sends
        no next question the attempt is completed.

        Raises:
            InvalidSessionStateError: If not a ONE_BY_ONE attempt in progress with a current question
            ValidationError: If the current question is not answered (no request is made)
            EncodingError: If the answer cannot be encoded (no request is made)
            GatewayError: If the submission fails
        """
        async with self._lock:
            self._require_state("submit an answer", SessionState.IN_PROGRESS)
            if self.mode is not AttemptMode.ONE_BY_ONE:
                raise InvalidSessionStateError(
                    "submit_current() is only available in ONE_BY_ONE attempts, use submit_batch()"
                )
            question = self._current
            if question is None:
                raise InvalidSessionStateError("There is no current question to submit")
            if not self.store.codec.supports(question.type):
                raise UnsupportedQuestionType(question.type)
            if not self.store.is_answered(question.id):
                raise ValidationError(f"Question {question.id} has not been answered")

            response = self.store.codec.encode_answer(question, self.store.response_for(question.id))
            submission = self._submission(question.id, response)

            result = await self._call(
                "submit_current", self.gateway.submit_answer, self.attempt_id, submission
            )
            self.store.mark_synced(question.id, response)
            self.last_submission = result
            self.progress.record_local_answers(self._current_number)
            self.logger.info(
                f"Answer submitted for question {question.id} of attempt {self.attempt_id}",
                extra={
                    'event_type': 'answer_submitted',
                    'attempt_id': self.attempt_id,
                    'question_id': question.id,
                    'question_number': self._current_number,
                    'timestamp': time.time()
                }
            )

            if result.next_question is not None:
                self._set_current(result.next_question, self._current_number + 1)
                await self._refresh_stats()
            else:
                self._current = None
                self._awaiting_completion = True
                await self._complete_locked("last question answered")
            return result

    async def submit_batch(self) -> SaveResult:
        """
        Submit every unsynced answer (ALL_AT_ONCE, TIMED).

        Never completes the attempt.

        Raises:
            InvalidSessionStateError: If not a batch attempt in progress
            ValidationError: If there is nothing to submit
            GatewayError: If the submission fails (answers stay unsynced)
        """
        async with self._lock:
            self._require_state("submit answers", SessionState.IN_PROGRESS)
            if not self.mode.is_batch:
                raise InvalidSessionStateError("submit_batch() is only available in ALL_AT_ONCE and TIMED attempts")
            if not self.store.has_unsynced():
                raise ValidationError("There are no unsaved answers to submit")
            return await self._flush("submit")

    async def save_now(self) -> SaveResult:
        """
        Save unsynced answers immediately.

        Waits for an in-flight save or submission rather than overlapping it.
        """
        async with self._lock:
            self._require_state("save answers", SessionState.IN_PROGRESS, SessionState.PAUSED)
            if not self.mode.is_batch:
                raise InvalidSessionStateError("Saving is only available in ALL_AT_ONCE and TIMED attempts")
            return await self._flush("manual")

    async def complete(self) -> Optional[AttemptResult]:
        """
        Complete the attempt and return the graded result.

        Batch attempts may be completed with unanswered questions; the gaps
        are logged and listed by ``completion_warnings()``. Pending answers
        are saved first.

        Returns:
            The AttemptResult, or None if the service had already completed the attempt

        Raises:
            InvalidSessionStateError: If not in progress, or a ONE_BY_ONE question is still open
            GatewayError: If saving or completing fails
        """
        async with self._lock:
            return await self._complete_locked("completion requested")

    async def abandon(self) -> None:
        """
        Abandon the attempt, deleting it on the server when one exists.

        Raises:
            InvalidSessionStateError: If the session is already completed or abandoned
            GatewayError: If the delete request fails
        """
        async with self._lock:
            if self._state.is_terminal:
                raise InvalidSessionStateError(f"Cannot abandon an attempt that is {self._state.value}")

            if self.attempt is None:
                await self._set_state(SessionState.ABANDONED, "abandoned before start")
                return

            try:
                await self._call(
                    "abandon", self.gateway.delete_attempt, self.attempt_id,
                    accept=(SessionState.ABANDONED,)
                )
            except AttemptNotFoundError:
                self.logger.warning(f"Attempt {self.attempt_id} no longer exists on the server")

            self.attempt.status = AttemptStatus.ABANDONED
            if self._state is not SessionState.ABANDONED:
                await self._set_state(SessionState.ABANDONED, "attempt abandoned")

    delete = abandon

    async def refresh(self) -> ProgressSnapshot:
        """
        Re-read the attempt, its question(s) and stats from the server.

        Returns:
            The progress snapshot after the refresh
        """
        async with self._lock:
            self._require_state("refresh", SessionState.IN_PROGRESS, SessionState.PAUSED)
            attempt = await self._call("refresh", self.gateway.get_attempt, self.attempt_id)
            await self._apply_attempt(attempt, "refreshed from server")

            if self._state is SessionState.IN_PROGRESS:
                if self.mode is AttemptMode.ONE_BY_ONE:
                    if not self._awaiting_completion:
                        await self._fetch_current_question()
                elif not self._questions:
                    await self._load_questions()
            if not self._state.is_terminal:
                await self._refresh_stats()
            return self.progress.snapshot()

    async def review(self) -> AttemptReview:
        """
        Fetch the review of a completed attempt.

        Raises:
            InvalidSessionStateError: If the attempt is not completed
        """
        self._require_state("review", SessionState.COMPLETED)
        return await self.gateway.get_attempt_review(self.attempt_id)

    async def close(self, wait_for_save: bool = False) -> None:
        """
        Stop timers when the attempt view goes away.

        A save already in flight is never cancelled. Operations still awaiting
        the server when the session closes do not restart the timers.

        Args:
            wait_for_save: Wait for an in-flight save to finish before returning
        """
        self._closed = True
        self._stop_timers()
        self.saver.close()
        self.logger.info(
            f"Session closed for attempt {self.attempt_id} in state {self._state.value}",
            extra={
                'event_type': 'session_closed',
                'attempt_id': self.attempt_id,
                'state': self._state.value,
                'timestamp': time.time()
            }
        )
        if wait_for_save:
            await self.saver.drain()

    async def __aenter__(self) -> "AttemptSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _require_state(self, operation: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            raise InvalidSessionStateError(f"Cannot {operation} while the attempt is {self._state.value}")

    def _submission(self, question_id: str, response: Dict[str, Any]) -> AnswerSubmission:
        return AnswerSubmission(
            question_id=question_id,
            response=response,
            include_correctness=self.settings.include_correctness,
            include_correct_answer=self.settings.include_correct_answer,
            include_explanation=self.settings.include_explanation
        )

    async def _complete_locked(self, reason: str) -> Optional[AttemptResult]:
        self._require_state("complete", SessionState.IN_PROGRESS)
        if self.mode is AttemptMode.ONE_BY_ONE and self._current is not None:
            raise InvalidSessionStateError(
                f"Question {self._current_number} is still open; submit it before completing"
            )

        if self.mode.is_batch:
            for warning in self.completion_warnings():
                self.logger.warning(f"Completing attempt {self.attempt_id}: {warning}")
            if self.saver.has_pending():
                await self._flush("complete")

        result = await self._call(
            "complete", self.gateway.complete_attempt, self.attempt_id,
            accept=(SessionState.COMPLETED,)
        )
        if result is not None:
            self.result = result
            self.attempt.status = AttemptStatus.COMPLETED
            self.attempt.completed_at = result.completed_at
            await self._set_state(SessionState.COMPLETED, reason)
        return self.result

    async def _call(self, operation: str, func: Callable, *args, accept: Tuple[SessionState, ...] = ()):
        """
        Await a gateway call, reconciling state conflicts.

        On a StateConflictError the attempt is re-read and its server status
        applied locally. If the session then sits in one of the ``accept``
        states the operation already happened on the server and None is
        returned; otherwise the conflict is re-raised.
        """
        try:
            return await func(*args)
        except StateConflictError as e:
            server_attempt = await self._reconcile(operation, e)
            if server_attempt is not None and self._state in accept:
                return None
            raise
        except GatewayError as e:
            self._log_operation_error(operation, e)
            raise

    async def _reconcile(self, operation: str, conflict: StateConflictError) -> Optional[Attempt]:
        self.logger.warning(
            f"State conflict during {operation} for attempt {self.attempt_id}: {conflict}",
            extra={
                'event_type': 'state_conflict',
                'attempt_id': self.attempt_id,
                'operation': operation,
                'timestamp': time.time()
            }
        )
        try:
            attempt = await self.gateway.get_attempt(self.attempt_id)
        except GatewayError as e:
            self.logger.error(f"Could not re-read attempt {self.attempt_id} after conflict: {e}")
            return None
        await self._apply_attempt(attempt, f"server reported {attempt.status.value} during {operation}")
        return attempt

    async def _apply_attempt(self, attempt: Attempt, reason: str) -> None:
        if self.attempt is not None:
            for name in ('quiz_id', 'mode', 'started_at', 'user_id', 'total_questions', 'time_limit_minutes'):
                if getattr(attempt, name) is None:
                    setattr(attempt, name, getattr(self.attempt, name))
        self.attempt = attempt
        self.progress.set_total(attempt.total_questions)
        new_state = _STATE_FOR_STATUS[attempt.status]
        if new_state is not self._state:
            await self._set_state(new_state, reason)

    async def _set_state(self, new_state: SessionState, reason: str) -> None:
        old_state = self._state
        self._state = new_state
        self.logger.info(
            f"Attempt {self.attempt_id}: {old_state.value} -> {new_state.value} ({reason})",
            extra={
                'event_type': 'session_state_transition',
                'attempt_id': self.attempt_id,
                'from_state': old_state.value,
                'to_state': new_state.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )
        self._sync_timers()
        await invoke_callback(self.on_state_change, old_state, new_state)

    async def _flush(self, trigger: str) -> SaveResult:
        try:
            return await self.saver.flush(trigger)
        except StateConflictError as e:
            await self._reconcile(f"save ({trigger})", e)
            raise

    async def _load_questions(self, first_question: Optional[Question] = None) -> None:
        if self.mode is AttemptMode.ONE_BY_ONE:
            if first_question is not None:
                self._set_current(first_question, 1)
            else:
                await self._fetch_current_question()
            return

        questions = await self.gateway.get_shuffled_questions(self.quiz_id)
        self._unsupported = []
        for question in questions:
            self._register(question)
        self._questions = list(questions)
        self.progress.set_total(len(questions))
        self.logger.info(f"Loaded {len(questions)} questions for attempt {self.attempt_id}")

    async def _fetch_current_question(self) -> CurrentQuestion:
        current = await self._call("get_current_question", self.gateway.get_current_question, self.attempt_id)
        self._set_current(current.question, current.question_number, current.total_questions)
        return current

    def _set_current(self, question: Question, number: int, total: Optional[int] = None) -> None:
        self._register(question)
        self._current = question
        self._current_number = number
        self._awaiting_completion = False
        if total is None:
            total = self.progress.total_questions
        if total is not None:
            self.progress.apply_current_question(number, total)

    def _register(self, question: Question) -> bool:
        try:
            self.store.register(question)
            return True
        except UnsupportedQuestionType as e:
            self.logger.error(f"Question {question.id} of attempt {self.attempt_id} cannot be answered: {e}")
            self._unsupported.append(question.id)
            return False

    async def _refresh_stats(self) -> Optional[AttemptStats]:
        """Fetch server stats; a failure only leaves progress on the local count."""
        try:
            stats = await self.gateway.get_attempt_stats(self.attempt_id)
        except GatewayError as e:
            self.logger.warning(f"Could not refresh stats for attempt {self.attempt_id}: {e}")
            return None
        self.stats = stats
        self.progress.apply_stats(stats)
        return stats

    async def _on_saved(self, result: SaveResult) -> None:
        self.progress.record_local_answers(self.store.answered_count())
        await self._refresh_stats()

    async def _on_background_error(self, error: Exception, operation: str) -> None:
        if isinstance(error, StateConflictError):
            await self._reconcile(operation, error)
        await self._report_error(error, operation)

    async def _report_error(self, error: Exception, operation: str) -> None:
        self._log_operation_error(operation, error)
        await invoke_callback(self.on_error, error, operation)

    def _log_operation_error(self, operation: str, error: Exception) -> None:
        self.logger.error(
            f"Error in {operation} for attempt {self.attempt_id}: {error}",
            extra={
                'event_type': 'session_operation_failed',
                'attempt_id': self.attempt_id,
                'operation': operation,
                'error_type': type(error).__name__,
                'retryable': getattr(error, 'retryable', False),
                'timestamp': time.time()
            }
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _sync_timers(self) -> None:
        if self._closed:
            # An operation that finished after close() must not restart timers
            self._stop_timers()
            return
        if self._state is SessionState.IN_PROGRESS:
            if self.mode is not None and self.mode.is_batch:
                self.saver.start_auto_save()
            self._run_countdown()
        elif self._state is SessionState.PAUSED:
            self.saver.stop_auto_save()
            if self._countdown is not None:
                self._countdown.pause()
        else:
            self._stop_timers()

    def _stop_timers(self) -> None:
        self.saver.stop_auto_save()
        if self._countdown is not None and self._countdown.is_running:
            self._countdown.cancel()

    def _run_countdown(self) -> None:
        if self._closed:
            return
        if self.mode is not AttemptMode.TIMED or not self.attempt or not self.attempt.time_limit_minutes:
            return
        if self._countdown is not None and self._countdown.is_running:
            self._countdown.resume()
            return
        self._countdown = AttemptCountdown(self.attempt_id, tick=self.settings.countdown_tick)
        self._countdown.start(self._remaining_seconds(), self._on_countdown_tick, self._on_time_expired)

    def _remaining_seconds(self) -> int:
        limit = self.attempt.time_limit_minutes * 60
        started_at = self.attempt.started_at
        if started_at is None:
            return limit
        now = datetime.now(timezone.utc) if started_at.tzinfo else datetime.now()
        elapsed = (now - started_at).total_seconds()
        return max(int(limit - elapsed), 0)

    async def _on_countdown_tick(self, remaining: int) -> None:
        await invoke_callback(self.on_time_update, remaining)

    async def _on_time_expired(self) -> None:
        self.logger.info(
            f"Time limit reached for attempt {self.attempt_id}",
            extra={
                'event_type': 'time_expired',
                'attempt_id': self.attempt_id,
                'timestamp': time.time()
            }
        )
        try:
            async with self._lock:
                if self._state is not SessionState.IN_PROGRESS:
                    return
                await self._complete_locked("time limit reached")
        except Exception as e:
            await self._report_error(e, "time_expired")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_session_info(self) -> Dict[str, Any]:
        """
        Get a summary of the session for display or diagnostics.

        Returns:
            Dictionary with attempt, progress and save state
        """
        snapshot = self.progress.snapshot()
        return {
            'attempt_id': self.attempt_id,
            'quiz_id': self.quiz_id,
            'mode': self.mode.value if self.mode else None,
            'state': self._state.value,
            'current_question': self._current_number if self._current else None,
            'questions_answered': snapshot.questions_answered,
            'total_questions': snapshot.total_questions,
            'completion_percentage': snapshot.completion_percentage,
            'unsynced_answers': len(self.store.diff_dirty()),
            'auto_save_active': self.saver.auto_save_active,
            'last_saved_at': self.saver.last_saved_at,
            'remaining_time': self.remaining_time,
            'closed': self._closed
        }

    def validate_session_state(self) -> Dict[str, Any]:
        """
        Validate the state of the session and return diagnostic information.

        Returns:
            Dictionary with validation results and session state info
        """
        issues = []

        if self._state is not SessionState.NOT_STARTED and self.attempt is None:
            issues.append("Session has left NOT_STARTED without an attempt")

        if self._state is SessionState.IN_PROGRESS:
            if self.mode is AttemptMode.ONE_BY_ONE:
                if self._current is None and not self._awaiting_completion:
                    issues.append("No current question loaded")
            elif not self._questions:
                issues.append("No questions loaded")

        if self._current is not None and self._current.id not in self.store and self._current.id not in self._unsupported:
            issues.append(f"Current question {self._current.id} is not registered in the answer store")

        if self._state.is_terminal and self.saver.auto_save_active:
            issues.append("Auto-save still running after the attempt ended")

        if self._state is SessionState.PAUSED and self._countdown is not None and not self._countdown.is_paused:
            issues.append("Countdown still running while paused")

        return {
            'valid': len(issues) == 0,
            'state': self._state.value,
            'issues': issues,
            'session_info': self.get_session_info()
        }

    def get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        return user_message(error, operation)
