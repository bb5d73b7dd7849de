"""
In-memory answer store for a single attempt.

Holds UI-shape answers keyed by question id together with the wire shape last
acknowledged by the server, so the save path can compute exactly which answers
still need to be sent.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import EncodingError, UnknownQuestionError
from .models import AnswerRecord, Question
from .question_codec import QuestionCodec


class AnswerStore:
    """Single source of truth for what the user has answered in the current attempt."""

    def __init__(self, codec: Optional[QuestionCodec] = None):
        self.logger = logging.getLogger(__name__)
        self.codec = codec or QuestionCodec()
        self._questions: Dict[str, Question] = {}
        self._records: Dict[str, AnswerRecord] = {}

    def register(self, question: Question) -> AnswerRecord:
        """
        Make a question known to the store.

        A blank record is created from the question's safe content. Registering
        a question twice keeps the existing record (and its edits).

        Raises:
            UnsupportedQuestionType: If the question type has no codec
        """
        blank = self.codec.decode(question)
        self._questions[question.id] = question
        record = self._records.get(question.id)
        if record is None:
            record = AnswerRecord(
                question_id=question.id,
                question_type=question.type,
                user_response=blank,
            )
            self._records[question.id] = record
        return record

    def question(self, question_id: str) -> Question:
        try:
            return self._questions[question_id]
        except KeyError:
            raise UnknownQuestionError(question_id) from None

    def get(self, question_id: str) -> AnswerRecord:
        try:
            return self._records[question_id]
        except KeyError:
            raise UnknownQuestionError(question_id) from None

    def response_for(self, question_id: str) -> Any:
        return self.get(question_id).user_response

    def question_ids(self) -> List[str]:
        return list(self._records)

    def set(self, question_id: str, response: Any) -> AnswerRecord:
        """Replace the stored response wholesale and mark it dirty."""
        record = self.get(question_id)
        record.user_response = response
        record.dirty = True
        self.logger.debug(f"Answer set for question {question_id}")
        return record

    def update(self, question_id: str, partial: Any) -> AnswerRecord:
        """
        Apply an edit to the stored response.

        Composite types (FILL_GAP, ORDERING, MATCHING) merge ``partial`` into the
        current state by key; every other type replaces the response.
        """
        record = self.get(question_id)
        merged = self.codec.merge(self.question(question_id), record.user_response, partial)
        return self.set(question_id, merged)

    def encoded(self, question_id: str) -> Dict[str, Any]:
        """Wire shape of the current response (lenient, partial answers allowed)."""
        return self.codec.encode(self.question(question_id), self.response_for(question_id))

    def mark_synced(self, question_id: str, response: Dict[str, Any]) -> AnswerRecord:
        """
        Record that ``response`` (wire shape) was accepted by the server.

        The record stays dirty if the user changed the answer again while the
        request was in flight.
        """
        record = self.get(question_id)
        record.last_synced_response = response
        record.last_synced_at = datetime.now()
        try:
            record.dirty = self.encoded(question_id) != response
        except EncodingError:
            record.dirty = True
        return record

    def diff_dirty(self) -> List[AnswerRecord]:
        """Records edited since last sync whose wire shape differs from the synced one."""
        changed = []
        for question_id, record in self._records.items():
            if not record.dirty:
                continue
            try:
                if self.encoded(question_id) == record.last_synced_response:
                    continue
            except EncodingError as e:
                # Unencodable edits are still unsynced; the save path reports them
                self.logger.warning(f"Answer for question {question_id} cannot be encoded: {e}")
            changed.append(record)
        return changed

    def has_unsynced(self) -> bool:
        return bool(self.diff_dirty())

    def is_answered(self, question_id: str) -> bool:
        """
        Whether the question holds a complete answer.

        Blank state is never an answer: the record must have been edited or
        synced, then the per-type predicate decides (an empty MCQ_MULTI
        selection counts, a partial ORDERING does not).
        """
        record = self.get(question_id)
        touched = record.dirty or record.last_synced_response is not None
        return touched and self.codec.is_answered(self.question(question_id), record.user_response)

    def answered_count(self) -> int:
        return sum(1 for question_id in self._records if self.is_answered(question_id))

    def unanswered_ids(self) -> List[str]:
        return [question_id for question_id in self._records if not self.is_answered(question_id)]

    def clear(self) -> None:
        self._questions.clear()
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._records
