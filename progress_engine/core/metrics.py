"""Engine metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  Controllers import the
specific counter they need and increment it at the point of action.

Everything here is a COUNTER: the engine only ever records "this happened
once more".  Rates and ratios (duplicate submits per minute, share of quiz
attempts closed by the timer) are computed at query time, e.g.

  rate(quiz_attempts_submitted_total{trigger="timeout"}[1h])
    / rate(quiz_attempts_submitted_total[1h])
"""

from __future__ import annotations

from prometheus_client import Counter

# ---------------------------------------------------------------------------
# Quiz attempts
# ---------------------------------------------------------------------------

QUIZ_ATTEMPTS_STARTED = Counter(
    "quiz_attempts_started_total",
    "Quiz attempts created",
)

QUIZ_ATTEMPTS_SUBMITTED = Counter(
    "quiz_attempts_submitted_total",
    "Quiz attempts scored, by what closed them",
    ["trigger"],  # explicit|timeout
)

# ---------------------------------------------------------------------------
# Idempotency guards
# ---------------------------------------------------------------------------

DUPLICATE_SUBMITS = Counter(
    "duplicate_submits_total",
    "Submit calls that found the record already in a terminal state",
    ["kind"],  # quiz|assignment
)

# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

ASSIGNMENT_TRANSITIONS = Counter(
    "assignment_transitions_total",
    "Assignment submission state changes, by resulting status",
    ["status"],  # draft|submitted|graded
)

# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

VIDEO_PROGRESS_WRITES = Counter(
    "video_progress_writes_total",
    "Video position writes that passed the debounce",
)

PROGRESS_UPDATE_FAILURES = Counter(
    "progress_update_failures_total",
    "Best-effort progress record writes that failed after a committed transition",
    ["source"],  # quiz|assignment
)
