from __future__ import annotations

import asyncio
import inspect
import sys
import uuid
from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from progress_engine.core.clock import ManualClock, ManualScheduler
from progress_engine.models.assignment import Assignment
from progress_engine.models.content import ContentItem, ContentType
from progress_engine.models.quiz import Question, Quiz
from progress_engine.repos.blob_store import InMemoryBlobStore
from progress_engine.repos.catalog_repo import InMemoryCatalogRepo
from progress_engine.repos.progress_repo import InMemoryProgressRepo
from progress_engine.repos.quiz_attempt_repo import InMemoryQuizAttemptRepo
from progress_engine.repos.submission_repo import InMemorySubmissionRepo
from progress_engine.services.assignment_service import AssignmentService
from progress_engine.services.gating import ContentGating
from progress_engine.services.progress_ledger import ProgressLedger
from progress_engine.services.progress_service import ProgressService
from progress_engine.services.quiz_service import QuizService
from progress_engine.services.video_tracker import VideoProgressTracker

# Ensure repo root is on sys.path so `import progress_engine` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def get_sample(name: str, labels: dict | None = None) -> float:
    """Read a metric sample's current value from the global registry.

    Counters cannot be reset between tests, so assert on deltas.
    """
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


class Suspending:
    """Wraps a gateway so every async call yields to the event loop first.

    The in-memory gateways never suspend, so without this two gathered
    calls run one after the other and never interleave the way concurrent
    requests against a real database do.
    """

    def __init__(self, inner: object) -> None:
        self._inner = inner

    def __getattr__(self, name: str):
        attr = getattr(self._inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return await attr(*args, **kwargs)

        return call


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> InMemoryCatalogRepo:
    return InMemoryCatalogRepo()


@pytest.fixture
def progress_repo() -> InMemoryProgressRepo:
    return InMemoryProgressRepo()


@pytest.fixture
def attempt_repo() -> InMemoryQuizAttemptRepo:
    return InMemoryQuizAttemptRepo()


@pytest.fixture
def submission_repo() -> InMemorySubmissionRepo:
    return InMemorySubmissionRepo()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def progress(progress_repo: InMemoryProgressRepo, clock: ManualClock) -> ProgressService:
    return ProgressService(progress_repo, clock)


@pytest.fixture
def quiz_service(
    attempt_repo: InMemoryQuizAttemptRepo,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    clock: ManualClock,
    scheduler: ManualScheduler,
) -> QuizService:
    return QuizService(attempt_repo, catalog, progress, clock, scheduler)


@pytest.fixture
def assignment_service(
    submission_repo: InMemorySubmissionRepo,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    blob_store: InMemoryBlobStore,
    clock: ManualClock,
) -> AssignmentService:
    return AssignmentService(submission_repo, catalog, progress, blob_store, clock)


@pytest.fixture
def racing_quiz_service(
    attempt_repo: InMemoryQuizAttemptRepo,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    clock: ManualClock,
    scheduler: ManualScheduler,
) -> QuizService:
    return QuizService(Suspending(attempt_repo), catalog, progress, clock, scheduler)


@pytest.fixture
def racing_assignment_service(
    submission_repo: InMemorySubmissionRepo,
    catalog: InMemoryCatalogRepo,
    progress: ProgressService,
    blob_store: InMemoryBlobStore,
    clock: ManualClock,
) -> AssignmentService:
    return AssignmentService(
        Suspending(submission_repo), catalog, progress, blob_store, clock
    )


@pytest.fixture
def video_tracker(progress: ProgressService, clock: ManualClock) -> VideoProgressTracker:
    return VideoProgressTracker(progress, clock, save_interval=5.0)


@pytest.fixture
def ledger(catalog: InMemoryCatalogRepo, progress_repo: InMemoryProgressRepo) -> ProgressLedger:
    return ProgressLedger(catalog, progress_repo)


@pytest.fixture
def gating(ledger: ProgressLedger) -> ContentGating:
    return ContentGating(ledger)


@pytest.fixture
def learner_id() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Catalog seeds
# ---------------------------------------------------------------------------


def make_mc_quiz(
    catalog: InMemoryCatalogRepo,
    *,
    questions: int = 4,
    passing_score_percent: int = 70,
    max_attempts: int = 2,
    time_limit_minutes: int = 0,
    show_correct_answers: bool = True,
    content_id: uuid.UUID | None = None,
) -> Quiz:
    """Multiple-choice quiz whose correct answer is always "a"."""
    quiz = Quiz(
        id=uuid.uuid4(),
        content_id=content_id or uuid.uuid4(),
        title="Checkpoint",
        questions=tuple(
            Question(
                id=f"q{i}",
                type="multiple_choice",
                options=("a", "b", "c", "d"),
                correct_answer="a",
                explanation=f"q{i} is a",
            )
            for i in range(1, questions + 1)
        ),
        time_limit_minutes=time_limit_minutes,
        max_attempts=max_attempts,
        passing_score_percent=passing_score_percent,
        show_correct_answers=show_correct_answers,
    )
    return catalog.add_quiz(quiz)


def answers_with(correct: int, total: int = 4) -> dict[str, str]:
    """Answer the first ``correct`` questions right and the rest wrong."""
    return {f"q{i}": "a" if i <= correct else "b" for i in range(1, total + 1)}


def make_assignment(
    catalog: InMemoryCatalogRepo,
    *,
    content_id: uuid.UUID | None = None,
    **overrides: object,
) -> Assignment:
    assignment = Assignment(
        id=uuid.uuid4(),
        content_id=content_id or uuid.uuid4(),
        title="Essay",
        **overrides,  # type: ignore[arg-type]
    )
    return catalog.add_assignment(assignment)


def make_course(
    catalog: InMemoryCatalogRepo, *types: ContentType
) -> list[ContentItem]:
    course_id = uuid.uuid4()
    items = [
        ContentItem.new(course_id=course_id, order_index=i, content_type=t, title=f"item {i}")
        for i, t in enumerate(types)
    ]
    catalog.add_content(items)
    return items
