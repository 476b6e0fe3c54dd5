"""Composition root.

``build_services()`` wires gateways, clock, scheduler and controllers into
one ``Services`` bundle.  With DATABASE_URL set the learner-owned records
(progress, quiz attempts, submissions) go to PostgreSQL; without it
everything is in memory.  Catalog and blob storage belong to other parts
of the platform and are passed in; in-memory stand-ins are used when they
are not.

Hosts run the engine inside ``lifespan()``:

    async with lifespan() as services:
        attempt = await services.quizzes.start(quiz_id, learner_id)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from progress_engine.core.clock import AsyncioScheduler, Clock, Scheduler, SystemClock
from progress_engine.core.config import SETTINGS, Settings
from progress_engine.core.logging import setup_logging
from progress_engine.db.engine import async_session_factory, lifespan_db
from progress_engine.repos.blob_store import BlobStore, InMemoryBlobStore
from progress_engine.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from progress_engine.repos.pg_progress_repo import PgProgressRepo
from progress_engine.repos.pg_quiz_attempt_repo import PgQuizAttemptRepo
from progress_engine.repos.pg_submission_repo import PgSubmissionRepo
from progress_engine.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from progress_engine.repos.quiz_attempt_repo import (
    InMemoryQuizAttemptRepo,
    QuizAttemptRepo,
)
from progress_engine.repos.submission_repo import InMemorySubmissionRepo, SubmissionRepo
from progress_engine.services.assignment_service import AssignmentService
from progress_engine.services.gating import ContentGating
from progress_engine.services.progress_ledger import ProgressLedger
from progress_engine.services.progress_service import ProgressService
from progress_engine.services.quiz_service import QuizService
from progress_engine.services.video_tracker import VideoProgressTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Services:
    progress: ProgressService
    quizzes: QuizService
    assignments: AssignmentService
    videos: VideoProgressTracker
    ledger: ProgressLedger
    gating: ContentGating


def build_services(
    settings: Settings = SETTINGS,
    *,
    clock: Clock | None = None,
    scheduler: Scheduler | None = None,
    catalog: CatalogRepo | None = None,
    blob_store: BlobStore | None = None,
) -> Services:
    clock = clock or SystemClock()
    scheduler = scheduler or AsyncioScheduler()
    catalog = catalog or InMemoryCatalogRepo()
    blob_store = blob_store or InMemoryBlobStore()

    progress_repo: ProgressRepo
    attempt_repo: QuizAttemptRepo
    submission_repo: SubmissionRepo
    if settings.database_url and async_session_factory is not None:
        progress_repo = PgProgressRepo(async_session_factory)
        attempt_repo = PgQuizAttemptRepo(async_session_factory)
        submission_repo = PgSubmissionRepo(async_session_factory)
    else:
        progress_repo = InMemoryProgressRepo()
        attempt_repo = InMemoryQuizAttemptRepo()
        submission_repo = InMemorySubmissionRepo()

    progress = ProgressService(progress_repo, clock)
    ledger = ProgressLedger(catalog, progress_repo)
    return Services(
        progress=progress,
        quizzes=QuizService(attempt_repo, catalog, progress, clock, scheduler),
        assignments=AssignmentService(submission_repo, catalog, progress, blob_store, clock),
        videos=VideoProgressTracker(progress, clock, settings.video_save_interval),
        ledger=ledger,
        gating=ContentGating(ledger),
    )


@asynccontextmanager
async def lifespan(
    settings: Settings = SETTINGS,
    *,
    catalog: CatalogRepo | None = None,
    blob_store: BlobStore | None = None,
) -> AsyncIterator[Services]:
    setup_logging(settings.log_level, json_format=settings.log_json)
    async with lifespan_db():
        services = build_services(settings, catalog=catalog, blob_store=blob_store)
        logger.info(
            "progress engine started  env=%s log_level=%s storage=%s",
            settings.app_env,
            settings.log_level,
            "postgres" if settings.database_url else "memory",
        )
        yield services
