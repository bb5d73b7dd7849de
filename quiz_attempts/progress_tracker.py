"""
Progress reconciliation between local answer counting and server statistics.
"""
import logging
from typing import Optional

from .models import AttemptStats, ProgressSnapshot


class ProgressTracker:
    """
    Produces a consistent ProgressSnapshot for display.

    Server-reported stats win whenever they are the most recent information.
    A local count is only used as a placeholder between a successful submit and
    the stats response that follows it. Total question counts estimated from a
    completion percentage are flagged as estimates and never stored.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.reset()

    def reset(self) -> None:
        self._total_questions: Optional[int] = None
        self._server_answered: Optional[int] = None
        self._server_percentage: Optional[float] = None
        self._local_answered = 0
        self._local_pending = False

    @property
    def total_questions(self) -> Optional[int]:
        """Authoritative total, or None while only an estimate is available."""
        return self._total_questions

    def set_total(self, total_questions: Optional[int]) -> None:
        """Store an authoritative total; a missing or zero count means unknown."""
        if total_questions is None or total_questions <= 0:
            return
        self._total_questions = total_questions

    def apply_current_question(self, question_number: int, total_questions: int) -> None:
        """Adopt the position reported by the current-question endpoint."""
        self.set_total(total_questions)
        self._local_answered = max(question_number - 1, 0)
        self._local_pending = True

    def record_local_answers(self, answered_count: int) -> None:
        """Optimistic count after a submit, until the next stats response lands."""
        self._local_answered = answered_count
        self._local_pending = True

    def apply_stats(self, stats: AttemptStats) -> None:
        """Server stats replace any local placeholder."""
        if (self._local_pending and self._server_answered is not None
                and stats.questions_answered < self._local_answered):
            self.logger.debug(
                f"Server reports {stats.questions_answered} answered, "
                f"local count was {self._local_answered}; using server value"
            )
        self._server_answered = stats.questions_answered
        self._server_percentage = stats.completion_percentage
        self._local_answered = stats.questions_answered
        self._local_pending = False

    def _estimated_total(self) -> Optional[int]:
        if not self._server_answered or not self._server_percentage:
            return None
        return round(self._server_answered / (self._server_percentage / 100))

    def snapshot(self) -> ProgressSnapshot:
        use_server = self._server_answered is not None and not self._local_pending
        answered = self._server_answered if use_server else self._local_answered

        total = self._total_questions
        is_estimate = False
        if total is None:
            total = self._estimated_total()
            is_estimate = total is not None

        if use_server:
            percentage = float(self._server_percentage or 0.0)
        elif total:
            percentage = round(min(answered / total, 1.0) * 100, 2)
        else:
            percentage = 0.0

        current = answered + 1
        if total:
            current = min(current, total)

        return ProgressSnapshot(
            questions_answered=answered,
            total_questions=total,
            completion_percentage=percentage,
            current_question_number=current,
            total_is_estimate=is_estimate,
            source="server" if use_server else "local",
        )
