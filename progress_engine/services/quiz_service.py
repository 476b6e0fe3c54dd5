"""Quiz attempt lifecycle: in_progress -> submitted (terminal).

An attempt closes exactly once, either by an explicit submit or by its
timer.  The terminal write is conditional (``mark_submitted`` only matches
a row that is still in progress), so a double-clicked submit, a retried
request and a timer firing at the same moment all race for one row and
only one of them scores it.  The losers get the stored result back with
``already_submitted=True``.

The ProgressRecord update that follows a submission is best-effort: the
attempt is committed first, and a failure writing progress is logged and
counted, never reported as a failed submission.  ``resync_progress`` can
replay submitted attempts into progress later.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from progress_engine.core.clock import Clock, Scheduler, TimerHandle
from progress_engine.core.errors import (
    AlreadySubmitted,
    AttemptExpired,
    AttemptLimitExceeded,
    DuplicateAttempt,
    RecordNotFound,
    StorageError,
)
from progress_engine.core.log_context import log_context
from progress_engine.core.metrics import (
    DUPLICATE_SUBMITS,
    PROGRESS_UPDATE_FAILURES,
    QUIZ_ATTEMPTS_STARTED,
    QUIZ_ATTEMPTS_SUBMITTED,
)
from progress_engine.models.quiz import Quiz, QuizAttempt
from progress_engine.repos.catalog_repo import CatalogRepo
from progress_engine.repos.quiz_attempt_repo import QuizAttemptRepo
from progress_engine.services import scoring
from progress_engine.services.progress_service import ProgressService
from progress_engine.services.scoring import ScoreResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    attempt: QuizAttempt
    result: ScoreResult  # already filtered by the quiz's show_correct_answers
    already_submitted: bool
    can_retry: bool


def can_retry(attempt: QuizAttempt, quiz: Quiz) -> bool:
    if attempt.is_passed:
        return False
    return quiz.max_attempts == 0 or attempt.attempt_number < quiz.max_attempts


class QuizService:
    def __init__(
        self,
        attempts: QuizAttemptRepo,
        catalog: CatalogRepo,
        progress: ProgressService,
        clock: Clock,
        scheduler: Scheduler,
    ) -> None:
        self._attempts = attempts
        self._catalog = catalog
        self._progress = progress
        self._clock = clock
        self._scheduler = scheduler
        self._timers: dict[UUID, TimerHandle] = {}

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, quiz_id: UUID, learner_id: UUID) -> QuizAttempt:
        """Open a new attempt, or return the learner's open one.

        An open attempt whose time ran out (its timer was lost, e.g. across
        a restart) is closed with its recorded answers before counting.  Two
        concurrent starts end on the same attempt.
        """
        quiz = await self._get_quiz(quiz_id)
        with log_context(learner_id=learner_id, content_id=quiz.content_id):
            attempts = await self._attempts.list_by_quiz(quiz_id, learner_id)

            open_attempt = next(
                (a for a in reversed(attempts) if a.submitted_at is None), None
            )
            if open_attempt is not None:
                if not open_attempt.is_expired(self._clock.now()):
                    self._schedule_timeout(open_attempt)
                    logger.info("Resuming attempt %d", open_attempt.attempt_number)
                    return open_attempt
                await self._close_quietly(open_attempt, quiz)

            if quiz.max_attempts > 0 and len(attempts) >= quiz.max_attempts:
                logger.warning(
                    "Rejected start: %d of %d attempts used",
                    len(attempts),
                    quiz.max_attempts,
                )
                raise AttemptLimitExceeded(quiz.max_attempts)

            attempt = QuizAttempt.new(
                quiz_id=quiz.id,
                learner_id=learner_id,
                attempt_number=len(attempts) + 1,
                started_at=int(self._clock.now()),
                # Snapshot: editing the quiz later doesn't move this deadline.
                time_limit_seconds=quiz.time_limit_seconds,
            )
            try:
                await self._attempts.create(attempt)
            except DuplicateAttempt:
                # A concurrent start took this attempt number; resume the
                # attempt it opened.
                logger.info("Attempt %d started concurrently", attempt.attempt_number)
                return await self.start(quiz_id, learner_id)
            QUIZ_ATTEMPTS_STARTED.inc()
            with log_context(attempt_id=attempt.id):
                logger.info(
                    "Started attempt %d (time limit %ds)",
                    attempt.attempt_number,
                    attempt.time_limit_seconds,
                )
            self._schedule_timeout(attempt)
            return attempt

    # ------------------------------------------------------------------
    # answers
    # ------------------------------------------------------------------

    async def save_answers(
        self, attempt_id: UUID, answers: Mapping[str, Any]
    ) -> QuizAttempt:
        """Autosave answers on an open attempt.  These are what a timeout scores."""
        attempt = await self._get_attempt(attempt_id)
        if attempt.submitted_at is not None:
            raise AlreadySubmitted(attempt)
        if attempt.is_expired(self._clock.now()):
            raise AttemptExpired("time is up for this attempt")

        updated = dataclasses.replace(attempt, answers={**attempt.answers, **answers})
        if await self._attempts.update_by_id(updated) is None:
            raise AlreadySubmitted(await self._get_attempt(attempt_id))
        return updated

    async def question_order(self, attempt_id: UUID) -> list[str]:
        attempt = await self._get_attempt(attempt_id)
        quiz = await self._get_quiz(attempt.quiz_id)
        return scoring.question_order(quiz, attempt.id)

    # ------------------------------------------------------------------
    # submit / expire
    # ------------------------------------------------------------------

    async def submit(
        self, attempt_id: UUID, answers: Mapping[str, Any] | None = None
    ) -> QuizSubmission:
        attempt = await self._get_attempt(attempt_id)
        quiz = await self._get_quiz(attempt.quiz_id)

        with log_context(
            learner_id=attempt.learner_id,
            content_id=quiz.content_id,
            attempt_id=attempt.id,
        ):
            if attempt.submitted_at is not None:
                return self._duplicate(attempt, quiz)

            if attempt.is_expired(self._clock.now()):
                # Past the deadline only what was saved in time counts.
                logger.info("Submit arrived after the deadline; scoring saved answers")
                final_answers = dict(attempt.answers)
                trigger = "timeout"
            else:
                final_answers = {**attempt.answers, **(answers or {})}
                trigger = "explicit"

            try:
                return await self._close(attempt, quiz, final_answers, trigger)
            except AlreadySubmitted as exc:
                return self._duplicate(exc.record, quiz)

    async def expire(self, attempt_id: UUID) -> None:
        """Timer callback: close the attempt with whatever answers were saved."""
        self._timers.pop(attempt_id, None)
        attempt = await self._attempts.get_by_id(attempt_id)
        if attempt is None or attempt.submitted_at is not None:
            return
        quiz = await self._get_quiz(attempt.quiz_id)
        with log_context(
            learner_id=attempt.learner_id,
            content_id=quiz.content_id,
            attempt_id=attempt.id,
        ):
            await self._close_quietly(attempt, quiz)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def list_attempts(self, quiz_id: UUID, learner_id: UUID) -> list[QuizAttempt]:
        return await self._attempts.list_by_quiz(quiz_id, learner_id)

    async def best_attempt(self, quiz_id: UUID, learner_id: UUID) -> QuizAttempt | None:
        submitted = [
            a
            for a in await self._attempts.list_by_quiz(quiz_id, learner_id)
            if a.submitted_at is not None
        ]
        if not submitted:
            return None
        return max(submitted, key=lambda a: (bool(a.is_passed), a.score or 0))

    async def resync_progress(self, quiz_id: UUID, learner_id: UUID) -> None:
        """Replay submitted attempts into the ProgressRecord.

        Safe to repeat: the progress merge never downgrades, so replaying
        in attempt order ends in the same record every time.
        """
        quiz = await self._get_quiz(quiz_id)
        for attempt in await self._attempts.list_by_quiz(quiz_id, learner_id):
            if attempt.submitted_at is None:
                continue
            await self._progress.record_result(
                quiz.content_id,
                learner_id,
                score=attempt.score or 0,
                is_passed=bool(attempt.is_passed),
                event_type="quiz_submitted",
            )

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _close(
        self,
        attempt: QuizAttempt,
        quiz: Quiz,
        answers: Mapping[str, Any],
        trigger: str,
    ) -> QuizSubmission:
        result = scoring.score(quiz, answers)
        submitted = dataclasses.replace(
            attempt,
            answers=dict(answers),
            submitted_at=int(self._clock.now()),
            score=result.score_percent,
            is_passed=result.is_passed,
            feedback=result.feedback,
        )

        # Re-checks the stored status as part of the write.
        if await self._attempts.mark_submitted(submitted) is None:
            raise AlreadySubmitted(await self._get_attempt(attempt.id))

        self._cancel_timer(attempt.id)
        QUIZ_ATTEMPTS_SUBMITTED.labels(trigger=trigger).inc()
        logger.info(
            "Attempt %d submitted (%s): score=%d passed=%s",
            submitted.attempt_number,
            trigger,
            result.score_percent,
            result.is_passed,
        )

        await self._update_progress(quiz, submitted)
        return QuizSubmission(
            attempt=submitted,
            result=result.for_learner(quiz.show_correct_answers),
            already_submitted=False,
            can_retry=can_retry(submitted, quiz),
        )

    async def _close_quietly(self, attempt: QuizAttempt, quiz: Quiz) -> None:
        try:
            await self._close(attempt, quiz, attempt.answers, "timeout")
        except AlreadySubmitted:
            logger.info("Attempt already submitted before its timer fired")

    def _duplicate(self, attempt: QuizAttempt, quiz: Quiz) -> QuizSubmission:
        DUPLICATE_SUBMITS.labels(kind="quiz").inc()
        logger.info("Duplicate submit; returning recorded result")
        result = ScoreResult(
            correct_count=sum(1 for f in attempt.feedback if f.is_correct),
            total_questions=len(attempt.feedback) or len(quiz.questions),
            score_percent=attempt.score or 0,
            is_passed=bool(attempt.is_passed),
            feedback=attempt.feedback,
        )
        return QuizSubmission(
            attempt=attempt,
            result=result.for_learner(quiz.show_correct_answers),
            already_submitted=True,
            can_retry=can_retry(attempt, quiz),
        )

    async def _update_progress(self, quiz: Quiz, attempt: QuizAttempt) -> None:
        try:
            await self._progress.record_result(
                quiz.content_id,
                attempt.learner_id,
                score=attempt.score or 0,
                is_passed=bool(attempt.is_passed),
                event_type="quiz_submitted",
            )
        except StorageError:
            PROGRESS_UPDATE_FAILURES.labels(source="quiz").inc()
            logger.warning(
                "Attempt committed but progress update failed", exc_info=True
            )

    def _schedule_timeout(self, attempt: QuizAttempt) -> None:
        deadline = attempt.deadline
        if deadline is None or attempt.id in self._timers:
            return
        delay = max(0.0, deadline - self._clock.now())
        self._timers[attempt.id] = self._scheduler.call_later(
            delay, functools.partial(self.expire, attempt.id)
        )

    def _cancel_timer(self, attempt_id: UUID) -> None:
        handle = self._timers.pop(attempt_id, None)
        if handle is not None:
            handle.cancel()

    async def _get_quiz(self, quiz_id: UUID) -> Quiz:
        quiz = await self._catalog.get_quiz(quiz_id)
        if quiz is None:
            raise RecordNotFound("quiz", quiz_id)
        return quiz

    async def _get_attempt(self, attempt_id: UUID) -> QuizAttempt:
        attempt = await self._attempts.get_by_id(attempt_id)
        if attempt is None:
            raise RecordNotFound("quiz attempt", attempt_id)
        return attempt
