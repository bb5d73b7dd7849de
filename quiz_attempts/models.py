"""
Core data models for the quiz attempt engine.

Wire records parse the camelCase JSON produced by the attempt service through
their ``from_dict`` classmethods; unknown keys are ignored.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class AttemptMode(Enum):
    """Attempt delivery modes."""
    ONE_BY_ONE = "ONE_BY_ONE"
    ALL_AT_ONCE = "ALL_AT_ONCE"
    TIMED = "TIMED"

    @property
    def is_batch(self) -> bool:
        """True for modes where the whole question set is answered then submitted together."""
        return self is not AttemptMode.ONE_BY_ONE


class AttemptStatus(Enum):
    """Attempt status as reported by the server."""
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptStatus.COMPLETED, AttemptStatus.ABANDONED)


class QuestionType(Enum):
    """The nine question content kinds."""
    MCQ_SINGLE = "MCQ_SINGLE"
    MCQ_MULTI = "MCQ_MULTI"
    TRUE_FALSE = "TRUE_FALSE"
    OPEN = "OPEN"
    FILL_GAP = "FILL_GAP"
    COMPLIANCE = "COMPLIANCE"
    ORDERING = "ORDERING"
    HOTSPOT = "HOTSPOT"
    MATCHING = "MATCHING"


class Difficulty(Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant as sent by the server ('Z' suffix allowed)."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _question_type(value: Any) -> Any:
    # Unknown kinds are kept as raw strings so the codec can reject them loudly
    try:
        return QuestionType(value)
    except ValueError:
        return value


def _difficulty(value: Any) -> Optional[Difficulty]:
    try:
        return Difficulty(value) if value is not None else None
    except ValueError:
        return None


@dataclass(frozen=True)
class Question:
    """A question as served during an active attempt (no solution data)."""
    id: str
    type: Any
    question_text: str
    safe_content: Dict[str, Any] = field(default_factory=dict)
    difficulty: Optional[Difficulty] = None
    hint: Optional[str] = None
    attachment_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=data["id"],
            type=_question_type(data.get("type")),
            question_text=data.get("questionText", ""),
            safe_content=data.get("safeContent") or {},
            difficulty=_difficulty(data.get("difficulty")),
            hint=data.get("hint"),
            attachment_url=data.get("attachmentUrl"),
        )


@dataclass
class Attempt:
    """One user's run through a quiz."""
    attempt_id: str
    quiz_id: str
    mode: AttemptMode
    status: AttemptStatus
    started_at: Optional[datetime] = None
    user_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    total_questions: Optional[int] = None
    time_limit_minutes: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attempt":
        return cls(
            attempt_id=data["attemptId"],
            quiz_id=data.get("quizId"),
            mode=AttemptMode(data["mode"]) if data.get("mode") else None,
            status=AttemptStatus(data["status"]),
            started_at=parse_timestamp(data.get("startedAt")),
            user_id=data.get("userId"),
            completed_at=parse_timestamp(data.get("completedAt")),
            total_questions=data.get("totalQuestions"),
            time_limit_minutes=data.get("timeLimitMinutes"),
        )


@dataclass
class StartAttemptResult:
    attempt_id: str
    quiz_id: str
    mode: AttemptMode
    total_questions: Optional[int] = None
    time_limit_minutes: Optional[int] = None
    started_at: Optional[datetime] = None
    first_question: Optional[Question] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StartAttemptResult":
        first = data.get("firstQuestion")
        return cls(
            attempt_id=data["attemptId"],
            quiz_id=data.get("quizId"),
            mode=AttemptMode(data["mode"]),
            total_questions=data.get("totalQuestions"),
            time_limit_minutes=data.get("timeLimitMinutes"),
            started_at=parse_timestamp(data.get("startedAt")),
            first_question=Question.from_dict(first) if first else None,
        )


@dataclass
class CurrentQuestion:
    question: Question
    question_number: int
    total_questions: int
    attempt_status: AttemptStatus

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CurrentQuestion":
        return cls(
            question=Question.from_dict(data["question"]),
            question_number=data["questionNumber"],
            total_questions=data["totalQuestions"],
            attempt_status=AttemptStatus(data["attemptStatus"]),
        )


@dataclass
class AnswerSubmission:
    """A single answer in wire shape, ready to send."""
    question_id: str
    response: Dict[str, Any]
    include_correctness: bool = False
    include_correct_answer: bool = False
    include_explanation: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload = {"questionId": self.question_id, "response": self.response}
        if self.include_correctness:
            payload["includeCorrectness"] = True
        if self.include_correct_answer:
            payload["includeCorrectAnswer"] = True
        if self.include_explanation:
            payload["includeExplanation"] = True
        return payload


@dataclass
class AnswerSubmissionResult:
    answer_id: str
    question_id: str
    answered_at: Optional[datetime] = None
    is_correct: Optional[bool] = None
    score: Optional[float] = None
    next_question: Optional[Question] = None
    correct_answer: Any = None
    explanation: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerSubmissionResult":
        next_question = data.get("nextQuestion")
        return cls(
            answer_id=data["answerId"],
            question_id=data["questionId"],
            answered_at=parse_timestamp(data.get("answeredAt")),
            is_correct=data.get("isCorrect"),
            score=data.get("score"),
            next_question=Question.from_dict(next_question) if next_question else None,
            correct_answer=data.get("correctAnswer"),
            explanation=data.get("explanation"),
        )


@dataclass
class AttemptStats:
    """Server-reported statistics for an attempt."""
    attempt_id: str
    questions_answered: int
    completion_percentage: float
    correct_answers: Optional[int] = None
    accuracy_percentage: Optional[float] = None
    total_time: Optional[str] = None
    average_time_per_question: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptStats":
        return cls(
            attempt_id=data.get("attemptId"),
            questions_answered=data.get("questionsAnswered", 0),
            completion_percentage=data.get("completionPercentage", 0.0),
            correct_answers=data.get("correctAnswers"),
            accuracy_percentage=data.get("accuracyPercentage"),
            total_time=data.get("totalTime"),
            average_time_per_question=data.get("averageTimePerQuestion"),
            started_at=parse_timestamp(data.get("startedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
        )


@dataclass
class AttemptResult:
    """Final, server-graded result returned when an attempt is completed."""
    attempt_id: str
    quiz_id: str
    total_score: float
    correct_count: int
    total_questions: int
    user_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    answers: List[AnswerSubmissionResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptResult":
        return cls(
            attempt_id=data["attemptId"],
            quiz_id=data.get("quizId"),
            total_score=data.get("totalScore", 0),
            correct_count=data.get("correctCount", 0),
            total_questions=data.get("totalQuestions", 0),
            user_id=data.get("userId"),
            started_at=parse_timestamp(data.get("startedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
            answers=[AnswerSubmissionResult.from_dict(a) for a in data.get("answers") or []],
        )


@dataclass
class AnswerReview:
    question_id: str
    type: Any
    question_text: str
    user_response: Any
    correct_answer: Any
    is_correct: bool
    score: Optional[float] = None
    question_safe_content: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None
    attachment_url: Optional[str] = None
    explanation: Optional[str] = None
    answered_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerReview":
        return cls(
            question_id=data["questionId"],
            type=_question_type(data.get("type")),
            question_text=data.get("questionText", ""),
            user_response=data.get("userResponse"),
            correct_answer=data.get("correctAnswer"),
            is_correct=bool(data.get("isCorrect")),
            score=data.get("score"),
            question_safe_content=data.get("questionSafeContent") or {},
            hint=data.get("hint"),
            attachment_url=data.get("attachmentUrl"),
            explanation=data.get("explanation"),
            answered_at=parse_timestamp(data.get("answeredAt")),
        )


@dataclass
class AttemptReview:
    """Review of a finished attempt, with user answers and correct answers."""
    attempt_id: str
    quiz_id: str
    total_score: float
    correct_count: int
    total_questions: int
    answers: List[AnswerReview] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttemptReview":
        return cls(
            attempt_id=data["attemptId"],
            quiz_id=data.get("quizId"),
            total_score=data.get("totalScore", 0),
            correct_count=data.get("correctCount", 0),
            total_questions=data.get("totalQuestions", 0),
            answers=[AnswerReview.from_dict(a) for a in data.get("answers") or []],
            started_at=parse_timestamp(data.get("startedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
        )


@dataclass
class AnswerRecord:
    """Local answer state for one question of the current attempt."""
    question_id: str
    question_type: Any
    user_response: Any
    dirty: bool = False
    last_synced_response: Optional[Dict[str, Any]] = None
    last_synced_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress view for the UI. Derived, never persisted."""
    questions_answered: int
    total_questions: Optional[int]
    completion_percentage: float
    current_question_number: int
    total_is_estimate: bool = False
    source: str = "local"


@dataclass
class SessionSettings:
    """Configuration settings for an attempt session."""
    auto_save_interval: int = 30
    include_correctness: bool = False
    include_correct_answer: bool = False
    include_explanation: bool = False
    pausable_modes: List[AttemptMode] = field(
        default_factory=lambda: [AttemptMode.ONE_BY_ONE, AttemptMode.ALL_AT_ONCE]
    )
    countdown_tick: float = 1.0


@dataclass
class GatewaySettings:
    """Connection settings for the HTTP attempt gateway."""
    base_url: str = "http://localhost:8080/api"
    request_timeout: float = 15.0
    api_token: Optional[str] = None
