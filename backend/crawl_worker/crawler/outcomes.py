from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass
class StepResult:
    outcome: Outcome
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


def classify_error(exc: BaseException) -> Outcome:
    """Connection-level store failures are retryable; anything else is fatal."""
    if isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError)):
        return Outcome.RETRYABLE
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return Outcome.RETRYABLE
    return Outcome.FATAL


def best_effort(fn: Callable[..., Any], *args: Any, what: str, **kwargs: Any) -> StepResult:
    """Run a secondary step; failures are logged and returned, never raised."""
    try:
        value = fn(*args, **kwargs)
    except Exception as e:
        outcome = classify_error(e)
        logger.error("%s failed (non-fatal, %s): %s", what, outcome.value, e)
        return StepResult(outcome, error=e)
    return StepResult(Outcome.OK, value=value)
