"""
Quiz attempt session engine.
"""
from .answer_store import AnswerStore
from .attempt_session import AttemptSession, SessionState
from .config_manager import ConfigManager, load_config, setup_logging_from_config
from .gateway import HttpAttemptGateway, RemoteAttemptGateway
from .models import AttemptMode, AttemptStatus, QuestionType
from .question_codec import QuestionCodec

__all__ = [
    "AnswerStore",
    "AttemptMode",
    "AttemptSession",
    "AttemptStatus",
    "ConfigManager",
    "HttpAttemptGateway",
    "QuestionCodec",
    "QuestionType",
    "RemoteAttemptGateway",
    "SessionState",
    "load_config",
    "setup_logging_from_config",
]
