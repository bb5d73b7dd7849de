"""
Remote attempt service contract and its HTTP implementation.

The session engine only depends on ``RemoteAttemptGateway``. ``HttpAttemptGateway``
talks to the attempt REST API over aiohttp and maps HTTP failures onto the
engine's error taxonomy.
"""
import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from .errors import (
    AttemptNotFoundError,
    AuthenticationError,
    BadRequestError,
    GatewayError,
    NetworkError,
    PermissionDeniedError,
    StateConflictError,
    TransientServerError,
)
from .models import (
    AnswerSubmission,
    AnswerSubmissionResult,
    Attempt,
    AttemptMode,
    AttemptResult,
    AttemptReview,
    AttemptStats,
    AttemptStatus,
    CurrentQuestion,
    GatewaySettings,
    Question,
    StartAttemptResult,
)

logger = logging.getLogger(__name__)


class RemoteAttemptGateway(ABC):
    """Typed contract over the backend attempt endpoints."""

    @abstractmethod
    async def start_attempt(self, quiz_id: str, mode: AttemptMode) -> StartAttemptResult:
        ...

    @abstractmethod
    async def get_current_question(self, attempt_id: str) -> CurrentQuestion:
        ...

    @abstractmethod
    async def get_shuffled_questions(self, quiz_id: str) -> List[Question]:
        ...

    @abstractmethod
    async def submit_answer(self, attempt_id: str, submission: AnswerSubmission) -> AnswerSubmissionResult:
        ...

    @abstractmethod
    async def submit_batch_answers(
        self, attempt_id: str, submissions: List[AnswerSubmission]
    ) -> List[AnswerSubmissionResult]:
        ...

    @abstractmethod
    async def get_attempt_stats(self, attempt_id: str) -> AttemptStats:
        ...

    @abstractmethod
    async def get_attempts(
        self,
        quiz_id: Optional[str] = None,
        statuses: Optional[Iterable[AttemptStatus]] = None
    ) -> List[Attempt]:
        """List the caller's attempts, optionally for one quiz and in the given statuses."""
        ...

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Attempt:
        ...

    @abstractmethod
    async def pause_attempt(self, attempt_id: str) -> Attempt:
        ...

    @abstractmethod
    async def resume_attempt(self, attempt_id: str) -> Attempt:
        ...

    @abstractmethod
    async def complete_attempt(self, attempt_id: str) -> AttemptResult:
        ...

    @abstractmethod
    async def delete_attempt(self, attempt_id: str) -> None:
        ...

    @abstractmethod
    async def get_attempt_review(self, attempt_id: str) -> AttemptReview:
        ...


class HttpAttemptGateway(RemoteAttemptGateway):
    """RemoteAttemptGateway backed by the attempt REST API."""

    BASE_PATH = "/v1/attempts"
    ATTEMPT_PAGE_SIZE = 50

    def __init__(self, settings: Optional[GatewaySettings] = None, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the gateway.

        Args:
            settings: Base URL, timeout and token; defaults to GatewaySettings()
            session: Existing aiohttp session to reuse (not closed by this gateway)
        """
        self.settings = settings or GatewaySettings()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpAttemptGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout)
            )
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.api_token:
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{self.BASE_PATH}{path}"

    async def _request(
        self, method: str, path: str, payload: Any = None, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        url = self._url(path)
        started = time.time()
        try:
            async with self._get_session().request(
                method, url, json=payload, params=params, headers=self._headers()
            ) as response:
                body = await response.text()
                logger.debug(
                    f"{method} {path} -> {response.status} in {time.time() - started:.3f}s",
                    extra={
                        'event_type': 'gateway_request',
                        'method': method,
                        'path': path,
                        'status': response.status,
                        'timestamp': time.time()
                    }
                )
                if response.status >= 400:
                    raise self._map_error(response.status, self._error_message(body, response.reason))
                if not body:
                    return None
                return json.loads(body)
        except asyncio.TimeoutError as e:
            logger.warning(f"{method} {path} timed out after {self.settings.request_timeout}s")
            raise NetworkError("Request timed out") from e
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkError(f"Network error occurred: {e}") from e
        except json.JSONDecodeError as e:
            raise GatewayError(f"Invalid JSON in response to {method} {path}: {e}") from e

    @staticmethod
    def _error_message(body: str, reason: Optional[str]) -> str:
        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict) and data.get("message"):
            return data["message"]
        return reason or ""

    @staticmethod
    def _map_error(status: int, message: str) -> GatewayError:
        if status == 400:
            return BadRequestError(f"Validation error: {message}", status)
        elif status == 401:
            return AuthenticationError("Authentication required", status)
        elif status == 403:
            return PermissionDeniedError("Insufficient permissions", status)
        elif status == 404:
            return AttemptNotFoundError("Attempt not found", status)
        elif status == 409:
            return StateConflictError(f"Attempt in invalid state: {message}", status)
        elif status >= 500:
            return TransientServerError("Server error occurred", status)
        return GatewayError(message or "Attempt operation failed", status)

    async def start_attempt(self, quiz_id: str, mode: AttemptMode) -> StartAttemptResult:
        data = await self._request("POST", f"/quizzes/{quiz_id}", {"mode": mode.value})
        return StartAttemptResult.from_dict(data)

    async def get_current_question(self, attempt_id: str) -> CurrentQuestion:
        data = await self._request("GET", f"/{attempt_id}/current-question")
        return CurrentQuestion.from_dict(data)

    async def get_shuffled_questions(self, quiz_id: str) -> List[Question]:
        data = await self._request("GET", f"/quizzes/{quiz_id}/questions/shuffled")
        return [Question.from_dict(item) for item in data or []]

    async def submit_answer(self, attempt_id: str, submission: AnswerSubmission) -> AnswerSubmissionResult:
        data = await self._request("POST", f"/{attempt_id}/answers", submission.to_dict())
        return AnswerSubmissionResult.from_dict(data)

    async def submit_batch_answers(
        self, attempt_id: str, submissions: List[AnswerSubmission]
    ) -> List[AnswerSubmissionResult]:
        payload = {"answers": [submission.to_dict() for submission in submissions]}
        data = await self._request("POST", f"/{attempt_id}/answers/batch", payload)
        return [AnswerSubmissionResult.from_dict(item) for item in data or []]

    async def get_attempt_stats(self, attempt_id: str) -> AttemptStats:
        data = await self._request("GET", f"/{attempt_id}/stats")
        return AttemptStats.from_dict(data)

    async def get_attempts(
        self,
        quiz_id: Optional[str] = None,
        statuses: Optional[Iterable[AttemptStatus]] = None
    ) -> List[Attempt]:
        params = {"page": 0, "size": self.ATTEMPT_PAGE_SIZE}
        if quiz_id:
            params["quizId"] = quiz_id
        data = await self._request("GET", "", params=params)
        # Paged responses wrap the attempts in "content"
        items = data.get("content", []) if isinstance(data, dict) else data or []
        attempts = [Attempt.from_dict(item) for item in items]
        if statuses is not None:
            wanted = set(statuses)
            attempts = [attempt for attempt in attempts if attempt.status in wanted]
        return attempts

    async def get_attempt(self, attempt_id: str) -> Attempt:
        data = await self._request("GET", f"/{attempt_id}")
        return Attempt.from_dict(data)

    async def pause_attempt(self, attempt_id: str) -> Attempt:
        data = await self._request("POST", f"/{attempt_id}/pause")
        return Attempt.from_dict(data)

    async def resume_attempt(self, attempt_id: str) -> Attempt:
        data = await self._request("POST", f"/{attempt_id}/resume")
        return Attempt.from_dict(data)

    async def complete_attempt(self, attempt_id: str) -> AttemptResult:
        data = await self._request("POST", f"/{attempt_id}/complete")
        return AttemptResult.from_dict(data)

    async def delete_attempt(self, attempt_id: str) -> None:
        await self._request("DELETE", f"/{attempt_id}")

    async def get_attempt_review(self, attempt_id: str) -> AttemptReview:
        data = await self._request("GET", f"/{attempt_id}/review")
        return AttemptReview.from_dict(data)
