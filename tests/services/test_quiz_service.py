"""Quiz attempt controller: start, autosave, submit, timer expiry."""

from __future__ import annotations

import asyncio
import dataclasses
import uuid

import pytest

from progress_engine.core.clock import ManualClock, ManualScheduler
from progress_engine.core.errors import (
    AlreadySubmitted,
    AttemptExpired,
    AttemptLimitExceeded,
    RecordNotFound,
    StorageError,
)
from progress_engine.models.progress import ProgressRecord
from progress_engine.repos.catalog_repo import InMemoryCatalogRepo
from progress_engine.repos.progress_repo import InMemoryProgressRepo
from progress_engine.repos.quiz_attempt_repo import InMemoryQuizAttemptRepo
from progress_engine.services.progress_service import ProgressService
from progress_engine.services.quiz_service import QuizService
from tests.conftest import answers_with, get_sample, make_mc_quiz


class _BrokenProgressRepo(InMemoryProgressRepo):
    async def upsert(self, record: ProgressRecord) -> ProgressRecord:
        raise StorageError("progress store unavailable")


# ---- example scenarios ----


def test_pass_on_first_attempt_blocks_retry(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=2)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        submission = await quiz_service.submit(attempt.id, answers_with(3))
        record = await progress.get(quiz.content_id, learner_id)
        return submission, record

    submission, record = asyncio.run(scenario())
    assert submission.result.score_percent == 75
    assert submission.result.is_passed is True
    assert submission.can_retry is False
    assert submission.already_submitted is False
    assert record is not None
    assert record.is_completed is True
    assert record.is_passed is True
    assert record.score == 75


def test_failed_attempt_then_passing_retry_improves_progress(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=2)

    async def scenario():
        first = await quiz_service.start(quiz.id, learner_id)
        failed = await quiz_service.submit(first.id, answers_with(2))
        after_fail = await progress.get(quiz.content_id, learner_id)
        second = await quiz_service.start(quiz.id, learner_id)
        passed = await quiz_service.submit(second.id, answers_with(3))
        after_pass = await progress.get(quiz.content_id, learner_id)
        return failed, after_fail, second, passed, after_pass

    failed, after_fail, second, passed, after_pass = asyncio.run(scenario())
    assert failed.result.score_percent == 50
    assert failed.result.is_passed is False
    assert failed.can_retry is True
    # Completion is not passing: the failed attempt still completes the item.
    assert after_fail.is_completed is True
    assert after_fail.is_passed is False

    assert second.attempt_number == 2
    assert passed.result.score_percent == 75
    assert after_pass.is_passed is True
    assert after_pass.score == 75


def test_failing_retry_never_downgrades_a_pass(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=0, passing_score_percent=50)

    async def scenario():
        for correct in (4, 1):
            attempt = await quiz_service.start(quiz.id, learner_id)
            await quiz_service.submit(attempt.id, answers_with(correct))
        return await progress.get(quiz.content_id, learner_id)

    record = asyncio.run(scenario())
    assert record.is_completed is True
    assert record.is_passed is True
    assert record.score == 100


# ---- attempt limits ----


@pytest.mark.parametrize("max_attempts", [1, 2, 3])
def test_attempt_limit_enforced(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    learner_id: uuid.UUID,
    max_attempts: int,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=max_attempts, passing_score_percent=100)

    async def scenario():
        for _ in range(max_attempts):
            attempt = await quiz_service.start(quiz.id, learner_id)
            await quiz_service.submit(attempt.id, answers_with(0))
        await quiz_service.start(quiz.id, learner_id)

    with pytest.raises(AttemptLimitExceeded) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.code == "attempt_limit_exceeded"
    assert exc_info.value.max_attempts == max_attempts


def test_last_attempt_cannot_retry(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=1)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        return await quiz_service.submit(attempt.id, answers_with(0))

    assert asyncio.run(scenario()).can_retry is False


def test_zero_max_attempts_is_unlimited(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=0)

    async def scenario():
        last = None
        for _ in range(5):
            attempt = await quiz_service.start(quiz.id, learner_id)
            last = await quiz_service.submit(attempt.id, answers_with(0))
        return last

    last = asyncio.run(scenario())
    assert last.attempt.attempt_number == 5
    assert last.can_retry is True


def test_start_resumes_open_attempt(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=1)

    async def scenario():
        first = await quiz_service.start(quiz.id, learner_id)
        again = await quiz_service.start(quiz.id, learner_id)
        attempts = await quiz_service.list_attempts(quiz.id, learner_id)
        return first, again, attempts

    first, again, attempts = asyncio.run(scenario())
    assert again.id == first.id
    assert len(attempts) == 1


def test_start_counts_attempts_started_metric(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog)
    before = get_sample("quiz_attempts_started_total")
    asyncio.run(quiz_service.start(quiz.id, learner_id))
    assert get_sample("quiz_attempts_started_total") - before == 1


def test_start_unknown_quiz(quiz_service: QuizService, learner_id: uuid.UUID) -> None:
    with pytest.raises(RecordNotFound):
        asyncio.run(quiz_service.start(uuid.uuid4(), learner_id))


# ---- idempotent submit ----


def test_duplicate_submit_returns_recorded_result(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    attempt_repo: InMemoryQuizAttemptRepo,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog)
    labels = {"kind": "quiz"}
    before = get_sample("duplicate_submits_total", labels)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        first = await quiz_service.submit(attempt.id, answers_with(3))
        # The retry carries different answers; they must not be scored.
        second = await quiz_service.submit(attempt.id, answers_with(4))
        stored = await attempt_repo.get_by_id(attempt.id)
        return first, second, stored

    first, second, stored = asyncio.run(scenario())
    assert second.already_submitted is True
    assert second.result.score_percent == first.result.score_percent == 75
    assert second.result.is_passed == first.result.is_passed
    assert second.result.correct_count == 3
    assert stored.answers == answers_with(3)
    assert get_sample("duplicate_submits_total", labels) - before == 1


def test_concurrent_submits_score_once(
    racing_quiz_service: QuizService,
    attempt_repo: InMemoryQuizAttemptRepo,
    catalog: InMemoryCatalogRepo,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog)
    submitted = {"trigger": "explicit"}
    duplicates = {"kind": "quiz"}
    before = get_sample("quiz_attempts_submitted_total", submitted)
    before_dup = get_sample("duplicate_submits_total", duplicates)

    async def scenario():
        attempt = await racing_quiz_service.start(quiz.id, learner_id)
        # Both requests read the attempt while it is still open; the
        # conditional write decides which one scores it.
        results = await asyncio.gather(
            racing_quiz_service.submit(attempt.id, answers_with(4)),
            racing_quiz_service.submit(attempt.id, answers_with(1)),
        )
        return results, await attempt_repo.get_by_id(attempt.id)

    results, stored = asyncio.run(scenario())
    assert sorted(r.already_submitted for r in results) == [False, True]
    assert {r.result.score_percent for r in results} == {stored.score}
    assert {r.attempt.submitted_at for r in results} == {stored.submitted_at}
    assert get_sample("quiz_attempts_submitted_total", submitted) - before == 1
    assert get_sample("duplicate_submits_total", duplicates) - before_dup == 1


def test_concurrent_starts_share_one_attempt(
    racing_quiz_service: QuizService,
    attempt_repo: InMemoryQuizAttemptRepo,
    catalog: InMemoryCatalogRepo,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=1)
    before = get_sample("quiz_attempts_started_total")

    async def scenario():
        started = await asyncio.gather(
            racing_quiz_service.start(quiz.id, learner_id),
            racing_quiz_service.start(quiz.id, learner_id),
        )
        return started, await attempt_repo.list_by_quiz(quiz.id, learner_id)

    (first, second), stored = asyncio.run(scenario())
    assert first.id == second.id
    assert [a.attempt_number for a in stored] == [1]
    assert get_sample("quiz_attempts_started_total") - before == 1


def test_submit_hides_correct_answers_when_configured(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, show_correct_answers=False)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        return await quiz_service.submit(attempt.id, answers_with(1))

    submission = asyncio.run(scenario())
    assert all(f.correct_answer is None for f in submission.result.feedback)
    # The stored attempt keeps the full feedback.
    assert all(f.correct_answer == "a" for f in submission.attempt.feedback)


# ---- autosave ----


def test_save_answers_merges(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        await quiz_service.save_answers(attempt.id, {"q1": "a"})
        return await quiz_service.save_answers(attempt.id, {"q2": "c"})

    assert asyncio.run(scenario()).answers == {"q1": "a", "q2": "c"}


def test_save_answers_after_submit_raises(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        await quiz_service.submit(attempt.id, {})
        await quiz_service.save_answers(attempt.id, {"q1": "a"})

    with pytest.raises(AlreadySubmitted):
        asyncio.run(scenario())


def test_save_answers_after_deadline_raises(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    clock: ManualClock,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=1)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        clock.advance(61)
        await quiz_service.save_answers(attempt.id, {"q1": "a"})

    with pytest.raises(AttemptExpired):
        asyncio.run(scenario())


# ---- timer ----


def test_timer_submits_saved_answers(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    clock: ManualClock,
    scheduler: ManualScheduler,
    attempt_repo: InMemoryQuizAttemptRepo,
    progress: ProgressService,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=10)
    labels = {"trigger": "timeout"}
    before = get_sample("quiz_attempts_submitted_total", labels)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        await quiz_service.save_answers(attempt.id, {"q1": "a", "q2": "a", "q3": "a"})
        clock.advance(599)
        early = await scheduler.run_due()
        clock.advance(1)
        fired = await scheduler.run_due()
        stored = await attempt_repo.get_by_id(attempt.id)
        record = await progress.get(quiz.content_id, learner_id)
        return early, fired, stored, record

    early, fired, stored, record = asyncio.run(scenario())
    assert early == 0
    assert fired == 1
    assert stored.status == "submitted"
    assert stored.submitted_at == int(clock.now())
    assert stored.score == 75
    assert record.is_completed is True
    assert get_sample("quiz_attempts_submitted_total", labels) - before == 1


def test_time_limit_snapshotted_at_start(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=5)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        # Instructor edits the quiz mid-attempt.
        catalog.add_quiz(dataclasses.replace(quiz, time_limit_minutes=30))
        return await quiz_service.list_attempts(quiz.id, learner_id)

    (attempt,) = asyncio.run(scenario())
    assert attempt.time_limit_seconds == 300


def test_explicit_submit_cancels_timer(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    scheduler: ManualScheduler,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=10)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        pending_before = scheduler.pending
        await quiz_service.submit(attempt.id, answers_with(4))
        return pending_before, scheduler.pending

    assert asyncio.run(scenario()) == (1, 0)


def test_late_submit_scores_only_saved_answers(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    clock: ManualClock,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=1)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        await quiz_service.save_answers(attempt.id, {"q1": "a"})
        clock.advance(90)  # timer never ran
        return await quiz_service.submit(attempt.id, answers_with(4))

    submission = asyncio.run(scenario())
    assert submission.result.correct_count == 1
    assert submission.result.score_percent == 25


def test_start_closes_expired_open_attempt_first(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    clock: ManualClock,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=1, max_attempts=2)

    async def scenario():
        first = await quiz_service.start(quiz.id, learner_id)
        clock.advance(120)
        second = await quiz_service.start(quiz.id, learner_id)
        attempts = await quiz_service.list_attempts(quiz.id, learner_id)
        return first, second, attempts

    first, second, attempts = asyncio.run(scenario())
    assert second.id != first.id
    assert second.attempt_number == 2
    assert [a.status for a in attempts] == ["submitted", "in_progress"]


def test_expire_after_submit_is_noop(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, time_limit_minutes=1)

    async def scenario():
        attempt = await quiz_service.start(quiz.id, learner_id)
        submitted = await quiz_service.submit(attempt.id, answers_with(4))
        await quiz_service.expire(attempt.id)
        return submitted, await quiz_service.list_attempts(quiz.id, learner_id)

    submitted, (stored,) = asyncio.run(scenario())
    assert stored.score == 100
    assert stored.submitted_at == submitted.attempt.submitted_at


# ---- best-effort progress ----


def test_progress_failure_does_not_fail_submission(
    catalog: InMemoryCatalogRepo,
    attempt_repo: InMemoryQuizAttemptRepo,
    clock: ManualClock,
    scheduler: ManualScheduler,
    learner_id: uuid.UUID,
) -> None:
    progress = ProgressService(_BrokenProgressRepo(), clock)
    service = QuizService(attempt_repo, catalog, progress, clock, scheduler)
    quiz = make_mc_quiz(catalog)
    labels = {"source": "quiz"}
    before = get_sample("progress_update_failures_total", labels)

    async def scenario():
        attempt = await service.start(quiz.id, learner_id)
        submission = await service.submit(attempt.id, answers_with(4))
        return submission, await attempt_repo.get_by_id(attempt.id)

    submission, stored = asyncio.run(scenario())
    assert submission.result.is_passed is True
    assert stored.status == "submitted"
    assert get_sample("progress_update_failures_total", labels) - before == 1


def test_resync_progress_replays_submitted_attempts(
    quiz_service: QuizService,
    catalog: InMemoryCatalogRepo,
    progress_repo: InMemoryProgressRepo,
    progress: ProgressService,
    learner_id: uuid.UUID,
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=0)

    async def scenario():
        for correct in (2, 4):
            attempt = await quiz_service.start(quiz.id, learner_id)
            await quiz_service.submit(attempt.id, answers_with(correct))
        progress_repo._store.clear()  # lost progress writes
        await quiz_service.resync_progress(quiz.id, learner_id)
        await quiz_service.resync_progress(quiz.id, learner_id)
        return await progress.get(quiz.content_id, learner_id)

    record = asyncio.run(scenario())
    assert record.is_completed is True
    assert record.is_passed is True
    assert record.score == 100


# ---- queries ----


def test_best_attempt_prefers_passing_then_score(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog, max_attempts=0)

    async def scenario():
        for correct in (2, 4, 3):
            attempt = await quiz_service.start(quiz.id, learner_id)
            await quiz_service.submit(attempt.id, answers_with(correct))
        return await quiz_service.best_attempt(quiz.id, learner_id)

    best = asyncio.run(scenario())
    assert best.attempt_number == 2
    assert best.score == 100


def test_best_attempt_none_without_submissions(
    quiz_service: QuizService, catalog: InMemoryCatalogRepo, learner_id: uuid.UUID
) -> None:
    quiz = make_mc_quiz(catalog)

    async def scenario():
        await quiz_service.start(quiz.id, learner_id)
        return await quiz_service.best_attempt(quiz.id, learner_id)

    assert asyncio.run(scenario()) is None
