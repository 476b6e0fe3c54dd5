"""Learner context for log lines.

Every controller operation names the learner (and usually a content item
or attempt) it acts on.  Rather than repeating those identifiers in every
log message, the controllers bind them once with ``log_context(...)`` and
a logging filter copies them onto each LogRecord emitted inside the block.

The values live in ContextVars, so two operations interleaved on the same
event loop (one learner's quiz timer firing while another learner saves a
draft) each see only their own identifiers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

learner_id_var: ContextVar[str | None] = ContextVar("learner_id", default=None)
content_id_var: ContextVar[str | None] = ContextVar("content_id", default=None)
attempt_id_var: ContextVar[str | None] = ContextVar("attempt_id", default=None)

_VARS = {
    "learner_id": learner_id_var,
    "content_id": content_id_var,
    "attempt_id": attempt_id_var,
}


class LearnerContextFilter(logging.Filter):
    """Injects the bound learner/content/attempt ids into every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _VARS.items():
            if getattr(record, name, None) is None:
                setattr(record, name, var.get())
        return True


@contextmanager
def log_context(
    *,
    learner_id: object | None = None,
    content_id: object | None = None,
    attempt_id: object | None = None,
) -> Iterator[None]:
    """Bind identifiers for the duration of the block.

    ``None`` leaves the currently bound value untouched, so nested blocks
    only need to name what they add.
    """
    values = {
        "learner_id": learner_id,
        "content_id": content_id,
        "attempt_id": attempt_id,
    }
    tokens = []
    for name, value in values.items():
        if value is not None:
            tokens.append((_VARS[name], _VARS[name].set(str(value))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
