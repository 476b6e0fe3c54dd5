"""Video playback progress.

The player reports its position about once a second.  Writing every one
of those would be pure write amplification, so a tracker session (one per
learner+video, held in memory) debounces them:

  - the first update of a session only starts the interval
  - later updates persist once ``save_interval`` seconds have passed since
    the last write, or immediately when the video reaches its end
  - ``on_pause`` and ``close`` persist immediately

A session ends with ``close``, when the video reaches its end, or after
``idle_timeout`` seconds without a report.  Time spent away is never
counted as watched.

Two separate quantities are tracked.  ``last_position`` is where playback
should resume.  ``watched_duration`` is how long the learner actually
watched: the wall-clock time since the previous update, counted only
when that update reported playback running and the position moved
forward by a plausible amount (anything larger is a seek and accrues
nothing).

Reaching the end is the only completion criterion; there is no
minimum watched percentage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from progress_engine.core.clock import Clock
from progress_engine.core.log_context import log_context
from progress_engine.core.metrics import VIDEO_PROGRESS_WRITES
from progress_engine.models.progress import ProgressRecord
from progress_engine.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

# Players rarely report the exact final frame.
END_TOLERANCE_SECONDS = 0.5

# A player silent this long is gone; its session is dropped and the next
# report starts a fresh one.
IDLE_TIMEOUT_SECONDS = 30 * 60.0


def reached_end(current_time: float, total_duration: float) -> bool:
    return total_duration > 0 and current_time >= total_duration - END_TOLERANCE_SECONDS


@dataclass(slots=True)
class _Session:
    base_watched: float  # watched_duration already persisted when the session began
    last_seen_at: float
    last_position: float
    last_playing: bool
    last_saved_at: float
    accrued: float = 0.0

    @property
    def watched_duration(self) -> float:
        return self.base_watched + self.accrued


class VideoProgressTracker:
    def __init__(
        self,
        progress: ProgressService,
        clock: Clock,
        save_interval: float = 5.0,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
    ) -> None:
        if save_interval <= 0:
            raise ValueError("save_interval must be positive")
        if idle_timeout <= save_interval:
            raise ValueError("idle_timeout must be longer than save_interval")
        self._progress = progress
        self._clock = clock
        self._save_interval = save_interval
        self._idle_timeout = idle_timeout
        self._sessions: dict[tuple[UUID, UUID], _Session] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def on_position_update(
        self,
        content_id: UUID,
        learner_id: UUID,
        current_time: float,
        total_duration: float,
        playing: bool = True,
    ) -> ProgressRecord | None:
        """Feed one player report.  Returns the record when this update was persisted."""
        session = await self._track(content_id, learner_id, current_time, playing)
        at_end = reached_end(current_time, total_duration)
        if not at_end and self._clock.now() - session.last_saved_at < self._save_interval:
            return None
        return await self._save(content_id, learner_id, session, current_time, total_duration)

    async def on_pause(
        self,
        content_id: UUID,
        learner_id: UUID,
        current_time: float,
        total_duration: float,
    ) -> ProgressRecord:
        session = await self._track(content_id, learner_id, current_time, playing=False)
        return await self._save(content_id, learner_id, session, current_time, total_duration)

    async def close(
        self,
        content_id: UUID,
        learner_id: UUID,
        current_time: float,
        total_duration: float,
    ) -> ProgressRecord:
        """Player went away: persist and forget the session."""
        record = await self.on_pause(content_id, learner_id, current_time, total_duration)
        self._sessions.pop((learner_id, content_id), None)
        return record

    async def resume_position(self, content_id: UUID, learner_id: UUID) -> float:
        """Where playback should start.  A finished video starts over."""
        record = await self._progress.get(content_id, learner_id)
        if record is None:
            return 0.0
        if reached_end(record.last_position, record.total_duration):
            return 0.0
        return record.last_position

    async def _track(
        self, content_id: UUID, learner_id: UUID, current_time: float, playing: bool
    ) -> _Session:
        now = self._clock.now()
        self._evict_idle(now)
        key = (learner_id, content_id)
        session = self._sessions.get(key)

        if session is None:
            stored = await self._progress.get(content_id, learner_id)
            session = _Session(
                base_watched=stored.watched_duration if stored is not None else 0.0,
                last_seen_at=now,
                last_position=current_time,
                last_playing=playing,
                last_saved_at=now,
            )
            self._sessions[key] = session
            return session

        elapsed = now - session.last_seen_at
        moved = current_time - session.last_position
        # The segment since the last report counts if playback was running
        # through it and the position advanced like playback, not a seek.
        if session.last_playing and 0 <= moved <= elapsed * 2 + 1:
            session.accrued += elapsed

        session.last_seen_at = now
        session.last_position = current_time
        session.last_playing = playing
        return session

    async def _save(
        self,
        content_id: UUID,
        learner_id: UUID,
        session: _Session,
        current_time: float,
        total_duration: float,
    ) -> ProgressRecord:
        at_end = reached_end(current_time, total_duration)
        with log_context(learner_id=learner_id, content_id=content_id):
            before = await self._progress.get(content_id, learner_id)
            record = await self._progress.record_video_position(
                content_id,
                learner_id,
                position=current_time,
                watched_duration=session.watched_duration,
                total_duration=total_duration,
                reached_end=at_end,
            )
            # A failed write leaves last_saved_at alone so the next update retries.
            session.last_saved_at = self._clock.now()
            if at_end:
                # Replaying a finished video starts a new session.
                self._sessions.pop((learner_id, content_id), None)
            VIDEO_PROGRESS_WRITES.inc()
            if record.is_completed and (before is None or not before.is_completed):
                logger.info(
                    "Video completed (watched %.0fs of %.0fs)",
                    record.watched_duration,
                    total_duration,
                )
            else:
                logger.debug("Saved position %.1fs", current_time)
            return record

    def _evict_idle(self, now: float) -> None:
        stale = [
            key
            for key, session in self._sessions.items()
            if now - session.last_seen_at > self._idle_timeout
        ]
        for key in stale:
            del self._sessions[key]
        if stale:
            logger.debug("Dropped %d idle video sessions", len(stale))
