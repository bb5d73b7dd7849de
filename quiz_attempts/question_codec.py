"""
Per-question-type answer codecs.

Each question type has exactly one handler providing ``decode`` (safe content
to blank UI state), ``encode`` (UI state to the wire ``response`` object),
``is_answered`` and ``merge``. Handlers are pure: no I/O and no shared state.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from .errors import EncodingError, UnsupportedQuestionType
from .models import Question, QuestionType

logger = logging.getLogger(__name__)

_COLLECTION_TYPES = (set, frozenset, list, tuple)


def _known_ids(safe_content: Dict[str, Any], key: str) -> List[Any]:
    """Ids of the items listed under ``key`` in safe content, in display order."""
    return [item["id"] for item in safe_content.get(key) or [] if isinstance(item, dict) and "id" in item]


def _check_id(value: Any, known: List[Any], label: str) -> None:
    if known and value not in known:
        raise EncodingError(f"Unknown {label} id: {value!r}")


def _ordered_selection(selected: Iterable[Any], known: List[Any], label: str) -> List[Any]:
    """Selected ids in display order, so equal selections always encode identically."""
    selected = list(dict.fromkeys(selected))
    for value in selected:
        _check_id(value, known, label)
    if known:
        return [value for value in known if value in selected]
    return sorted(selected, key=str)


class QuestionTypeCodec:
    """Base class for a single question type's encode/decode/is_answered handler."""

    question_type: QuestionType = None

    def decode(self, safe_content: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def encode(self, safe_content: Dict[str, Any], state: Any) -> Dict[str, Any]:
        raise NotImplementedError

    def is_answered(self, safe_content: Dict[str, Any], state: Any) -> bool:
        raise NotImplementedError

    def merge(self, safe_content: Dict[str, Any], current: Any, partial: Any) -> Any:
        """Combine an edit with the current state. Simple types replace wholesale."""
        return partial


class McqSingleCodec(QuestionTypeCodec):
    question_type = QuestionType.MCQ_SINGLE

    def decode(self, safe_content):
        return None

    def encode(self, safe_content, state):
        if state is None or state == "":
            return {}
        _check_id(state, _known_ids(safe_content, "options"), "option")
        return {"selectedOptionId": state}

    def is_answered(self, safe_content, state):
        return state is not None and state != ""


class _MultiSelectCodec(QuestionTypeCodec):
    items_key = ""
    wire_key = ""
    label = ""

    def decode(self, safe_content):
        return set()

    def encode(self, safe_content, state):
        if state is None:
            state = ()
        if not isinstance(state, _COLLECTION_TYPES):
            raise EncodingError(
                f"{self.question_type.value} expects a collection of {self.label} ids, "
                f"got {type(state).__name__}"
            )
        known = _known_ids(safe_content, self.items_key)
        return {self.wire_key: _ordered_selection(state, known, self.label)}

    def is_answered(self, safe_content, state):
        # An empty selection is a valid answer; "touched" is tracked by the store
        return isinstance(state, _COLLECTION_TYPES)


class McqMultiCodec(_MultiSelectCodec):
    question_type = QuestionType.MCQ_MULTI
    items_key = "options"
    wire_key = "selectedOptionIds"
    label = "option"


class ComplianceCodec(_MultiSelectCodec):
    question_type = QuestionType.COMPLIANCE
    items_key = "statements"
    wire_key = "selectedStatementIds"
    label = "statement"


class TrueFalseCodec(QuestionTypeCodec):
    question_type = QuestionType.TRUE_FALSE

    def decode(self, safe_content):
        return None

    def encode(self, safe_content, state):
        if state is None:
            return {}
        if not isinstance(state, bool):
            raise EncodingError(f"TRUE_FALSE expects a boolean, got {type(state).__name__}")
        return {"answer": state}

    def is_answered(self, safe_content, state):
        return isinstance(state, bool)


class OpenCodec(QuestionTypeCodec):
    question_type = QuestionType.OPEN

    def decode(self, safe_content):
        return ""

    def encode(self, safe_content, state):
        if state is None:
            state = ""
        if not isinstance(state, str):
            raise EncodingError(f"OPEN expects text, got {type(state).__name__}")
        return {"answer": state}

    def is_answered(self, safe_content, state):
        return isinstance(state, str) and bool(state.strip())


class FillGapCodec(QuestionTypeCodec):
    question_type = QuestionType.FILL_GAP

    def decode(self, safe_content):
        return {}

    def encode(self, safe_content, state):
        if state is None:
            state = {}
        if not isinstance(state, dict):
            raise EncodingError(f"FILL_GAP expects a mapping of gap id to text, got {type(state).__name__}")
        known = _known_ids(safe_content, "gaps")
        for gap_id in state:
            _check_id(gap_id, known, "gap")
        order = known or sorted(state, key=str)
        answers = []
        for gap_id in order:
            value = state.get(gap_id)
            if value is None:
                continue
            if not isinstance(value, str):
                raise EncodingError(f"Gap {gap_id!r} expects text, got {type(value).__name__}")
            trimmed = value.strip()
            if trimmed:
                answers.append({"gapId": gap_id, "answer": trimmed})
        return {"answers": answers}

    def is_answered(self, safe_content, state):
        return isinstance(state, dict) and any(
            isinstance(value, str) and value.strip() for value in state.values()
        )

    def merge(self, safe_content, current, partial):
        merged = dict(current or {})
        for gap_id, value in (partial or {}).items():
            if value is None:
                merged.pop(gap_id, None)
            else:
                merged[gap_id] = value
        return merged


class OrderingCodec(QuestionTypeCodec):
    question_type = QuestionType.ORDERING

    def decode(self, safe_content):
        # Items are shown in served order until the user rearranges them
        return _known_ids(safe_content, "items")

    def encode(self, safe_content, state):
        if state is None:
            state = []
        if not isinstance(state, (list, tuple)):
            raise EncodingError(f"ORDERING expects a list of item ids, got {type(state).__name__}")
        if len(set(state)) != len(state):
            raise EncodingError("ORDERING contains the same item more than once")
        known = _known_ids(safe_content, "items")
        for item_id in state:
            _check_id(item_id, known, "item")
        return {"orderedItemIds": list(state)}

    def is_answered(self, safe_content, state):
        if not isinstance(state, (list, tuple)) or not state:
            return False
        known = _known_ids(safe_content, "items")
        return len(state) == len(known) if known else True

    def merge(self, safe_content, current, partial):
        if not isinstance(partial, dict):
            return list(partial)
        # Mapping of target position -> item id
        ordered = list(current or [])
        for position, item_id in sorted(partial.items()):
            if item_id in ordered:
                ordered.remove(item_id)
            ordered.insert(min(position, len(ordered)), item_id)
        return ordered


class HotspotCodec(QuestionTypeCodec):
    question_type = QuestionType.HOTSPOT

    def decode(self, safe_content):
        return None

    def encode(self, safe_content, state):
        if state is None:
            return {}
        if isinstance(state, _COLLECTION_TYPES):
            raise EncodingError("HOTSPOT accepts a single region")
        _check_id(state, _known_ids(safe_content, "regions"), "region")
        return {"regionId": state}

    def is_answered(self, safe_content, state):
        return state is not None


class MatchingCodec(QuestionTypeCodec):
    question_type = QuestionType.MATCHING

    def decode(self, safe_content):
        return {}

    def encode(self, safe_content, state):
        if state is None:
            state = {}
        if not isinstance(state, dict):
            raise EncodingError(f"MATCHING expects a mapping of left id to right id, got {type(state).__name__}")
        left_known = _known_ids(safe_content, "left")
        right_known = _known_ids(safe_content, "right")
        for left_id in state:
            _check_id(left_id, left_known, "left item")
        order = left_known or sorted(state, key=str)
        matches = []
        for left_id in order:
            right_id = state.get(left_id)
            if right_id is None:
                # Right side still pending
                continue
            _check_id(right_id, right_known, "right item")
            matches.append({"leftItemId": left_id, "rightItemId": right_id})
        return {"matches": matches}

    def is_answered(self, safe_content, state):
        return isinstance(state, dict) and any(value is not None for value in state.values())

    def merge(self, safe_content, current, partial):
        merged = dict(current or {})
        for left_id, right_id in (partial or {}).items():
            if right_id is not None:
                # A right item can only be matched once
                for other_left, other_right in list(merged.items()):
                    if other_right == right_id and other_left != left_id:
                        del merged[other_left]
            merged[left_id] = right_id
        return merged


_CODECS: Dict[QuestionType, QuestionTypeCodec] = {
    codec.question_type: codec
    for codec in (
        McqSingleCodec(),
        McqMultiCodec(),
        TrueFalseCodec(),
        OpenCodec(),
        FillGapCodec(),
        ComplianceCodec(),
        OrderingCodec(),
        HotspotCodec(),
        MatchingCodec(),
    )
}

_missing = set(QuestionType) - set(_CODECS)
if _missing:
    raise RuntimeError(f"No codec registered for: {sorted(t.value for t in _missing)}")


class QuestionCodec:
    """
    Dispatches encode/decode/is_answered to the handler registered for a question's type.

    Lookups never fall back to a default handler: an unknown type raises
    ``UnsupportedQuestionType``.
    """

    def __init__(self, codecs: Optional[Dict[QuestionType, QuestionTypeCodec]] = None):
        self._codecs = dict(codecs if codecs is not None else _CODECS)

    def supports(self, question_type: Any) -> bool:
        return question_type in self._codecs

    def handler_for(self, question_type: Any) -> QuestionTypeCodec:
        try:
            return self._codecs[question_type]
        except (KeyError, TypeError):
            logger.error(f"No codec for question type {question_type!r}")
            raise UnsupportedQuestionType(question_type) from None

    def decode(self, question: Question) -> Any:
        """Blank UI state for a freshly fetched question."""
        return self.handler_for(question.type).decode(question.safe_content)

    def encode(self, question: Question, state: Any) -> Dict[str, Any]:
        """Wire shape of whatever is present in ``state`` (partial answers allowed)."""
        return self.handler_for(question.type).encode(question.safe_content, state)

    def encode_answer(self, question: Question, state: Any) -> Dict[str, Any]:
        """
        Wire shape of a complete answer.

        Raises:
            EncodingError: If ``state`` is not a complete answer for the question type
        """
        handler = self.handler_for(question.type)
        if not handler.is_answered(question.safe_content, state):
            if question.type is QuestionType.ORDERING:
                expected = len(_known_ids(question.safe_content, "items"))
                given = len(state) if isinstance(state, (list, tuple)) else 0
                raise EncodingError(
                    f"Ordering for question {question.id} is incomplete: {given} of {expected} items placed"
                )
            raise EncodingError(f"Answer for question {question.id} ({question.type.value}) is incomplete")
        return handler.encode(question.safe_content, state)

    def is_answered(self, question: Question, state: Any) -> bool:
        return self.handler_for(question.type).is_answered(question.safe_content, state)

    def merge(self, question: Question, current: Any, partial: Any) -> Any:
        return self.handler_for(question.type).merge(question.safe_content, current, partial)
