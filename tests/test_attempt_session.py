"""
Unit tests for the AttemptSession state machine.
"""
import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

from quiz_attempts.attempt_session import AttemptSession, SessionState
from quiz_attempts.errors import (
    AttemptNotFoundError,
    InvalidSessionStateError,
    NetworkError,
    StateConflictError,
    UnsupportedQuestionType,
    ValidationError,
)
from quiz_attempts.models import AttemptMode, AttemptStatus, Question, QuestionType
from tests.test_fixtures import AsyncTestHelpers, TestFixtures, async_test


class AttemptSessionTestCase(unittest.TestCase):
    """Shared setup for attempt session tests."""

    def setUp(self):
        self.gateway = TestFixtures.create_mock_gateway()
        self.on_state_change = Mock()
        self.on_error = Mock()
        self.session = AttemptSession(
            self.gateway,
            settings=TestFixtures.create_session_settings(),
            on_state_change=self.on_state_change,
            on_error=self.on_error
        )

    async def start_one_by_one(self, questions):
        self.gateway.start_attempt.return_value = TestFixtures.create_start_result(
            AttemptMode.ONE_BY_ONE, total_questions=len(questions), first_question=questions[0]
        )
        await self.session.start(TestFixtures.QUIZ_ID, AttemptMode.ONE_BY_ONE)

    async def start_batch(self, questions, mode=AttemptMode.ALL_AT_ONCE, **start_kwargs):
        self.gateway.start_attempt.return_value = TestFixtures.create_start_result(
            mode, total_questions=len(questions), **start_kwargs
        )
        self.gateway.get_shuffled_questions.return_value = list(questions)
        await self.session.start(TestFixtures.QUIZ_ID, mode)


class TestOneByOneAttempt(AttemptSessionTestCase):
    """Test cases for ONE_BY_ONE delivery."""

    async def test_three_question_attempt_runs_to_completion(self):
        q1, q2, q3 = TestFixtures.create_mcq_questions(3)
        self.gateway.submit_answer.side_effect = [
            TestFixtures.create_submission_result("q1", next_question=q2),
            TestFixtures.create_submission_result("q2", next_question=q3),
            TestFixtures.create_submission_result("q3"),
        ]
        await self.start_one_by_one([q1, q2, q3])

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertEqual(self.session.current_question, q1)

        self.session.set_answer("q1", "a")
        result = await self.session.submit_current()

        attempt_id, submission = self.gateway.submit_answer.call_args.args
        self.assertEqual(attempt_id, TestFixtures.ATTEMPT_ID)
        self.assertEqual(submission.question_id, "q1")
        self.assertEqual(submission.response, {"selectedOptionId": "a"})
        self.assertEqual(result.next_question, q2)
        self.assertEqual(self.session.current_question, q2)
        self.assertEqual(self.session.progress_snapshot().current_question_number, 2)

        self.session.set_answer("q2", "b")
        await self.session.submit_current()
        self.session.set_answer("q3", "c")
        result = await self.session.submit_current()

        self.assertIsNone(result.next_question)
        self.gateway.complete_attempt.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        self.assertEqual(self.session.state, SessionState.COMPLETED)
        self.assertIsNone(self.session.current_question)
        self.assertEqual(self.session.result.correct_count, 2)
        self.assertFalse(self.session.store.get("q3").dirty)

    async def test_unanswered_submit_makes_no_request(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        await self.start_one_by_one([q1, q2])

        with self.assertRaises(ValidationError):
            await self.session.submit_current()

        self.gateway.submit_answer.assert_not_awaited()
        self.assertEqual(self.session.current_question, q1)

    async def test_start_fetches_current_question_when_not_in_response(self):
        q1 = TestFixtures.create_question("q1")
        self.gateway.start_attempt.return_value = TestFixtures.create_start_result(AttemptMode.ONE_BY_ONE, 4)
        self.gateway.get_current_question.return_value = TestFixtures.create_current_question(q1, 1, 4)

        await self.session.start(TestFixtures.QUIZ_ID, AttemptMode.ONE_BY_ONE)

        self.gateway.get_current_question.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        self.assertEqual(self.session.current_question, q1)
        self.assertEqual(self.session.progress_snapshot().total_questions, 4)
        self.gateway.get_shuffled_questions.assert_not_awaited()

    async def test_submit_with_unsupported_question_type(self):
        odd = Question(id="q1", type="SLIDER", question_text="?")
        await self.start_one_by_one([odd])

        with self.assertRaises(UnsupportedQuestionType):
            await self.session.submit_current()
        self.gateway.submit_answer.assert_not_awaited()

    async def test_submit_failure_keeps_answer_dirty(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        self.gateway.submit_answer.side_effect = NetworkError("offline")
        await self.start_one_by_one([q1, q2])
        self.session.set_answer("q1", "a")

        with self.assertRaises(NetworkError):
            await self.session.submit_current()

        self.assertTrue(self.session.store.get("q1").dirty)
        self.assertEqual(self.session.current_question, q1)
        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)

    async def test_complete_rejected_while_question_open(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        await self.start_one_by_one([q1, q2])

        with self.assertRaises(InvalidSessionStateError):
            await self.session.complete()
        self.gateway.complete_attempt.assert_not_awaited()

    async def test_submit_batch_rejected(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        await self.start_one_by_one([q1, q2])

        with self.assertRaises(InvalidSessionStateError):
            await self.session.submit_batch()

    async def test_conflict_on_submit_applies_completed_status(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        self.gateway.submit_answer.side_effect = StateConflictError("Attempt in invalid state: COMPLETED", 409)
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(AttemptStatus.COMPLETED)
        await self.start_one_by_one([q1, q2])
        self.session.set_answer("q1", "a")

        with self.assertRaises(StateConflictError):
            await self.session.submit_current()

        self.gateway.get_attempt.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        self.assertEqual(self.session.state, SessionState.COMPLETED)
        with self.assertRaises(InvalidSessionStateError):
            self.session.set_answer("q1", "b")

    async def test_resume_refetches_current_question(self):
        q1, q2 = TestFixtures.create_mcq_questions(2)
        await self.start_one_by_one([q1, q2])
        await self.session.pause()
        self.gateway.get_current_question.return_value = TestFixtures.create_current_question(q2, 2, 2)

        await self.session.resume()

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertEqual(self.session.current_question, q2)
        self.assertEqual(self.session.progress_snapshot().questions_answered, 1)


class TestBatchAttempt(AttemptSessionTestCase):
    """Test cases for ALL_AT_ONCE and TIMED delivery."""

    async def test_save_now_sends_exactly_the_answered_questions(self):
        questions = TestFixtures.create_mcq_questions(5)
        await self.start_batch(questions)

        self.assertEqual(len(self.session.questions), 5)
        self.session.set_answer("q2", "a")
        self.session.set_answer("q4", "c")
        result = await self.session.save_now()

        self.gateway.submit_batch_answers.assert_awaited_once()
        _, submissions = self.gateway.submit_batch_answers.call_args.args
        self.assertEqual(len(submissions), 2)
        self.assertEqual({s.question_id for s in submissions}, {"q2", "q4"})
        self.assertEqual(result.saved_count, 2)
        self.assertFalse(self.session.store.get("q2").dirty)
        self.assertFalse(self.session.store.get("q4").dirty)
        self.gateway.get_attempt_stats.assert_awaited()

    async def test_whitespace_open_answer(self):
        questions = [TestFixtures.create_question("q1", QuestionType.OPEN),
                     TestFixtures.create_question("q2", QuestionType.MCQ_SINGLE)]
        await self.start_batch(questions)

        self.session.set_answer("q1", "  ")

        self.assertFalse(self.session.is_answered("q1"))
        self.assertIn("q1", [r.question_id for r in self.session.store.diff_dirty()])
        self.assertEqual(self.session.progress_snapshot().questions_answered, 0)

        result = await self.session.save_now()
        self.gateway.submit_batch_answers.assert_not_awaited()
        self.assertIn("q1", result.skipped)

    async def test_pause_flushes_dirty_answer_before_pausing(self):
        questions = TestFixtures.create_mcq_questions(3)
        calls = []

        async def record_batch(attempt_id, submissions):
            calls.append("submit_batch_answers")
            return [TestFixtures.create_submission_result(s.question_id) for s in submissions]

        async def record_pause(attempt_id):
            calls.append("pause_attempt")
            return TestFixtures.create_attempt(AttemptStatus.PAUSED, AttemptMode.ALL_AT_ONCE)

        self.gateway.submit_batch_answers = AsyncMock(side_effect=record_batch)
        self.gateway.pause_attempt = AsyncMock(side_effect=record_pause)
        self.gateway.resume_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.IN_PROGRESS, AttemptMode.ALL_AT_ONCE
        )
        await self.start_batch(questions)
        self.session.set_answer("q1", "b")

        await self.session.pause()

        self.assertEqual(calls, ["submit_batch_answers", "pause_attempt"])
        self.assertEqual(self.session.state, SessionState.PAUSED)

        await self.session.resume()

        record = self.session.store.get("q1")
        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertEqual(record.user_response, "b")
        self.assertFalse(record.dirty)
        self.assertEqual(record.last_synced_response, {"selectedOptionId": "b"})
        self.assertFalse(self.session.store.has_unsynced())

    async def test_failed_flush_aborts_pause(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        self.gateway.submit_batch_answers = AsyncMock(side_effect=NetworkError("offline"))
        self.session.set_answer("q1", "a")

        with self.assertRaises(NetworkError):
            await self.session.pause()

        self.gateway.pause_attempt.assert_not_awaited()
        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertTrue(self.session.store.get("q1").dirty)

    async def test_timed_attempts_cannot_be_paused(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2), AttemptMode.TIMED)

        with self.assertRaises(InvalidSessionStateError):
            await self.session.pause()
        self.gateway.pause_attempt.assert_not_awaited()
        await self.session.close()

    async def test_resume_reported_completed_moves_to_completed(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        await self.session.pause()
        self.gateway.resume_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.COMPLETED, AttemptMode.ALL_AT_ONCE
        )

        await self.session.resume()

        self.assertEqual(self.session.state, SessionState.COMPLETED)
        with self.assertRaises(InvalidSessionStateError):
            await self.session.save_now()

    async def test_resume_conflict_with_completed_attempt(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        await self.session.pause()
        self.gateway.resume_attempt.side_effect = StateConflictError("Attempt in invalid state", 409)
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.COMPLETED, AttemptMode.ALL_AT_ONCE
        )

        await self.session.resume()

        self.assertEqual(self.session.state, SessionState.COMPLETED)

    async def test_resume_conflict_with_abandoned_attempt_raises(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        await self.session.pause()
        self.gateway.resume_attempt.side_effect = StateConflictError("Attempt in invalid state", 409)
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.ABANDONED, AttemptMode.ALL_AT_ONCE
        )

        with self.assertRaises(StateConflictError):
            await self.session.resume()
        self.assertEqual(self.session.state, SessionState.ABANDONED)

    async def test_submit_batch_requires_changes(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))

        with self.assertRaises(ValidationError):
            await self.session.submit_batch()
        self.gateway.submit_batch_answers.assert_not_awaited()

    async def test_submit_batch_never_completes(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        self.session.set_answer("q1", "a")
        self.session.set_answer("q2", "b")

        result = await self.session.submit_batch()

        self.assertEqual(result.saved_count, 2)
        self.gateway.complete_attempt.assert_not_awaited()
        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)

    async def test_complete_with_unanswered_questions_warns_and_flushes(self):
        await self.start_batch(TestFixtures.create_mcq_questions(5))
        self.session.set_answer("q1", "a")

        self.assertEqual(
            self.session.completion_warnings(),
            ["4 of 5 questions are unanswered and will be graded as incorrect"]
        )
        with self.assertLogs('quiz_attempts.attempt_session', level='WARNING') as logs:
            result = await self.session.complete()

        self.assertTrue(any("4 of 5 questions" in line for line in logs.output))
        self.gateway.submit_batch_answers.assert_awaited_once()
        self.gateway.complete_attempt.assert_awaited_once()
        self.assertEqual(result, self.session.result)
        self.assertEqual(self.session.state, SessionState.COMPLETED)

    async def test_complete_conflict_when_already_completed(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        self.gateway.complete_attempt.side_effect = StateConflictError("Attempt in invalid state", 409)
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.COMPLETED, AttemptMode.ALL_AT_ONCE
        )

        result = await self.session.complete()

        self.assertIsNone(result)
        self.assertEqual(self.session.state, SessionState.COMPLETED)

    async def test_unsupported_questions_are_listed(self):
        questions = [TestFixtures.create_question("q1"), Question(id="q2", type="SLIDER", question_text="?")]
        await self.start_batch(questions)

        self.assertEqual(len(self.session.questions), 2)
        self.assertNotIn("q2", self.session.store)
        self.assertIn(
            "1 questions use an unsupported type and cannot be answered",
            self.session.completion_warnings()
        )

    async def test_timed_attempt_completes_when_time_runs_out(self):
        questions = TestFixtures.create_mcq_questions(2)
        await self.start_batch(
            questions,
            AttemptMode.TIMED,
            time_limit_minutes=1,
            started_at=datetime.now(timezone.utc) - timedelta(minutes=2)
        )
        self.session.set_answer("q1", "a")

        completed = await AsyncTestHelpers.wait_until(
            lambda: self.session.state is SessionState.COMPLETED
        )

        self.assertTrue(completed)
        self.gateway.submit_batch_answers.assert_awaited_once()
        self.gateway.complete_attempt.assert_awaited_once()
        await self.session.close()

    async def test_time_expiry_failure_goes_to_error_callback(self):
        error = NetworkError("offline")
        self.gateway.complete_attempt.side_effect = error
        await self.start_batch(
            TestFixtures.create_mcq_questions(2),
            AttemptMode.TIMED,
            time_limit_minutes=1,
            started_at=datetime.now(timezone.utc) - timedelta(minutes=5)
        )

        reported = await AsyncTestHelpers.wait_until(lambda: self.on_error.called)

        self.assertTrue(reported)
        self.on_error.assert_called_with(error, "time_expired")
        await self.session.close()

    async def test_countdown_reports_remaining_time(self):
        updates = []
        self.session.on_time_update = updates.append
        self.session.settings.countdown_tick = 0.01
        await self.start_batch(TestFixtures.create_mcq_questions(2), AttemptMode.TIMED, time_limit_minutes=30)

        await AsyncTestHelpers.wait_until(lambda: len(updates) >= 2)
        await self.session.close()

        self.assertGreater(updates[0], 29 * 60)
        self.assertLess(updates[1], updates[0])


class TestSessionLifecycle(AttemptSessionTestCase):
    """Test cases for start failures, abandonment, refresh and review."""

    async def test_start_failure_stays_not_started(self):
        self.gateway.start_attempt.side_effect = NetworkError("offline")

        with self.assertRaises(NetworkError) as context:
            await self.session.start(TestFixtures.QUIZ_ID, AttemptMode.ONE_BY_ONE)

        self.assertTrue(context.exception.retryable)
        self.assertEqual(self.session.state, SessionState.NOT_STARTED)
        self.assertIsNone(self.session.attempt_id)
        self.on_state_change.assert_not_called()

    async def test_start_twice_rejected(self):
        await self.start_batch(TestFixtures.create_mcq_questions(1))

        with self.assertRaises(InvalidSessionStateError):
            await self.session.start(TestFixtures.QUIZ_ID, AttemptMode.ALL_AT_ONCE)

    async def test_question_load_failure_is_retried_by_refresh(self):
        questions = TestFixtures.create_mcq_questions(2)
        self.gateway.start_attempt.return_value = TestFixtures.create_start_result(AttemptMode.ALL_AT_ONCE, 2)
        self.gateway.get_shuffled_questions.side_effect = [NetworkError("offline"), questions]
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.IN_PROGRESS, AttemptMode.ALL_AT_ONCE
        )

        with self.assertRaises(NetworkError):
            await self.session.start(TestFixtures.QUIZ_ID, AttemptMode.ALL_AT_ONCE)
        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertFalse(self.session.validate_session_state()['valid'])

        await self.session.refresh()

        self.assertEqual(len(self.session.questions), 2)
        self.assertTrue(self.session.validate_session_state()['valid'])

    async def test_state_change_callback(self):
        await self.start_batch(TestFixtures.create_mcq_questions(1))
        await self.session.pause()

        self.on_state_change.assert_any_call(SessionState.NOT_STARTED, SessionState.IN_PROGRESS)
        self.on_state_change.assert_any_call(SessionState.IN_PROGRESS, SessionState.PAUSED)

    async def test_abandon_before_start_makes_no_request(self):
        await self.session.abandon()

        self.assertEqual(self.session.state, SessionState.ABANDONED)
        self.gateway.delete_attempt.assert_not_awaited()

    async def test_abandon_deletes_attempt(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))

        await self.session.delete()

        self.gateway.delete_attempt.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        self.assertEqual(self.session.state, SessionState.ABANDONED)
        with self.assertRaises(InvalidSessionStateError):
            await self.session.abandon()

    async def test_abandon_paused_attempt_already_deleted(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        await self.session.pause()
        self.gateway.delete_attempt.side_effect = AttemptNotFoundError("Attempt not found", 404)

        await self.session.abandon()

        self.assertEqual(self.session.state, SessionState.ABANDONED)

    async def test_review_only_after_completion(self):
        await self.start_batch(TestFixtures.create_mcq_questions(1))

        with self.assertRaises(InvalidSessionStateError):
            await self.session.review()

        await self.session.complete()
        await self.session.review()
        self.gateway.get_attempt_review.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)

    async def test_stats_failure_does_not_fail_save(self):
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        self.gateway.get_attempt_stats.side_effect = NetworkError("offline")
        self.session.set_answer("q1", "a")

        result = await self.session.save_now()

        self.assertEqual(result.saved_count, 1)
        snapshot = self.session.progress_snapshot()
        self.assertEqual(snapshot.questions_answered, 1)
        self.assertEqual(snapshot.source, "local")

    async def test_auto_save_runs_only_while_in_progress(self):
        self.session.settings.auto_save_interval = 30
        await self.start_batch(TestFixtures.create_mcq_questions(2))

        self.assertTrue(self.session.saver.auto_save_active)
        await self.session.pause()
        self.assertFalse(self.session.saver.auto_save_active)
        await self.session.resume()
        self.assertTrue(self.session.saver.auto_save_active)
        await self.session.close()
        self.assertFalse(self.session.saver.auto_save_active)

    async def test_close_during_resume_keeps_auto_save_stopped(self):
        self.session.settings.auto_save_interval = 30
        await self.start_batch(TestFixtures.create_mcq_questions(2))
        await self.session.pause()

        async def slow_resume(attempt_id):
            await asyncio.sleep(0.05)
            return TestFixtures.create_attempt(AttemptStatus.IN_PROGRESS, AttemptMode.ALL_AT_ONCE)
        self.gateway.resume_attempt.side_effect = slow_resume

        resuming = asyncio.create_task(self.session.resume())
        await asyncio.sleep(0.01)
        await self.session.close()
        await resuming

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertTrue(self.session.is_closed)
        self.assertFalse(self.session.saver.auto_save_active)
        self.assertFalse(self.session.saver.start_auto_save())

    async def test_close_during_start_does_not_start_countdown(self):
        self.session.settings.auto_save_interval = 30
        self.session.settings.countdown_tick = 0.01

        async def slow_start(quiz_id, mode):
            await asyncio.sleep(0.05)
            return TestFixtures.create_start_result(AttemptMode.TIMED, total_questions=2, time_limit_minutes=30)
        self.gateway.start_attempt.side_effect = slow_start
        self.gateway.get_shuffled_questions.return_value = TestFixtures.create_mcq_questions(2)

        starting = asyncio.create_task(self.session.start(TestFixtures.QUIZ_ID, AttemptMode.TIMED))
        await asyncio.sleep(0.01)
        await self.session.close()
        await starting

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertIsNone(self.session.remaining_time)
        self.assertFalse(self.session.saver.auto_save_active)
        self.assertTrue(self.session.get_session_info()['closed'])

    async def test_edits_rejected_before_start(self):
        with self.assertRaises(InvalidSessionStateError):
            self.session.set_answer("q1", "a")

    async def test_user_friendly_error_message(self):
        message = self.session.get_user_friendly_error_message(NetworkError("offline"), "save")

        self.assertIn("Connection problem", message)


class TestAttachAttempt(AttemptSessionTestCase):
    """Test cases for continuing an attempt started earlier."""

    async def test_attach_paused_batch_attempt_then_resume(self):
        questions = TestFixtures.create_mcq_questions(2)
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.PAUSED, AttemptMode.ALL_AT_ONCE, total_questions=2
        )
        self.gateway.get_attempt_stats.return_value = TestFixtures.create_stats(1, 50.0)

        attempt = await self.session.attach(TestFixtures.ATTEMPT_ID)

        self.gateway.get_attempt.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        self.assertEqual(attempt.status, AttemptStatus.PAUSED)
        self.assertEqual(self.session.state, SessionState.PAUSED)
        self.assertEqual(self.session.mode, AttemptMode.ALL_AT_ONCE)
        self.assertEqual(self.session.questions, [])
        self.gateway.get_shuffled_questions.assert_not_awaited()
        snapshot = self.session.progress_snapshot()
        self.assertEqual(snapshot.questions_answered, 1)
        self.assertEqual(snapshot.total_questions, 2)
        self.on_state_change.assert_called_once_with(SessionState.NOT_STARTED, SessionState.PAUSED)

        self.gateway.resume_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.IN_PROGRESS, AttemptMode.ALL_AT_ONCE
        )
        self.gateway.get_shuffled_questions.return_value = questions
        await self.session.resume()

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertEqual(self.session.questions, questions)
        self.gateway.get_shuffled_questions.assert_awaited_once_with(TestFixtures.QUIZ_ID)

        self.session.set_answer("q2", "b")
        result = await self.session.save_now()

        self.assertEqual(result.saved_count, 1)
        self.assertEqual(self.gateway.submit_batch_answers.call_args.args[0], TestFixtures.ATTEMPT_ID)

    async def test_attach_in_progress_one_by_one_fetches_current_question(self):
        q2 = TestFixtures.create_question("q2")
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(AttemptStatus.IN_PROGRESS)
        self.gateway.get_current_question.return_value = TestFixtures.create_current_question(q2, 2, 3)
        self.gateway.get_attempt_stats.return_value = TestFixtures.create_stats(1, 33.3)

        await self.session.attach(TestFixtures.ATTEMPT_ID)

        self.assertEqual(self.session.state, SessionState.IN_PROGRESS)
        self.assertEqual(self.session.current_question, q2)
        self.gateway.get_current_question.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)
        snapshot = self.session.progress_snapshot()
        self.assertEqual(snapshot.questions_answered, 1)
        self.assertEqual(snapshot.total_questions, 3)
        self.assertTrue(self.session.validate_session_state()['valid'])

    async def test_attach_timed_attempt_resumes_countdown(self):
        self.session.settings.countdown_tick = 0.01
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(
            AttemptStatus.IN_PROGRESS, AttemptMode.TIMED, time_limit_minutes=30
        )
        self.gateway.get_shuffled_questions.return_value = TestFixtures.create_mcq_questions(2)

        await self.session.attach(TestFixtures.ATTEMPT_ID)

        self.assertIsNotNone(self.session.remaining_time)
        self.assertGreater(self.session.remaining_time, 29 * 60)
        await self.session.close()

    async def test_attach_completed_attempt_allows_review(self):
        self.gateway.get_attempt.return_value = TestFixtures.create_attempt(AttemptStatus.COMPLETED)

        await self.session.attach(TestFixtures.ATTEMPT_ID)

        self.assertEqual(self.session.state, SessionState.COMPLETED)
        self.gateway.get_attempt_stats.assert_not_awaited()
        self.gateway.get_current_question.assert_not_awaited()
        await self.session.review()
        self.gateway.get_attempt_review.assert_awaited_once_with(TestFixtures.ATTEMPT_ID)

    async def test_attach_failure_stays_not_started(self):
        self.gateway.get_attempt.side_effect = AttemptNotFoundError("Attempt not found", 404)

        with self.assertRaises(AttemptNotFoundError):
            await self.session.attach("missing")

        self.assertEqual(self.session.state, SessionState.NOT_STARTED)
        self.assertIsNone(self.session.attempt_id)
        self.on_state_change.assert_not_called()

    async def test_attach_after_start_rejected(self):
        await self.start_batch(TestFixtures.create_mcq_questions(1))

        with self.assertRaises(InvalidSessionStateError):
            await self.session.attach(TestFixtures.ATTEMPT_ID)
        self.gateway.get_attempt.assert_not_awaited()


def _apply_async_test(test_case):
    for name in [name for name in vars(test_case) if name.startswith('test_')]:
        setattr(test_case, name, async_test(getattr(test_case, name)))


# Apply async_test decorator to async test methods
_apply_async_test(TestOneByOneAttempt)
_apply_async_test(TestBatchAttempt)
_apply_async_test(TestSessionLifecycle)
_apply_async_test(TestAttachAttempt)


if __name__ == '__main__':
    unittest.main()
