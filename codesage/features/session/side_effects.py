"""
Best-effort background writes (remote accounting).

Each job runs as an asyncio task so the caller's primary action is never
held up by bookkeeping. Failures land on the queue's own error channel
(`failures`) and in the logs; they are never raised to the caller.

max_attempts bounds how often a job is tried (1 = single attempt).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[None]]


def _compute_backoff(attempt_count: int) -> timedelta:
    """Exponential backoff with floor 0.5s and cap 30s."""
    seconds = min(0.5 * (2 ** attempt_count), 30.0)
    return timedelta(seconds=seconds)


@dataclass
class SideEffectFailure:
    name: str
    error: str
    attempts: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SideEffectQueue:
    def __init__(
        self,
        *,
        max_attempts: int = 1,
        max_pending: int = 100,
        max_failures: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.max_pending = max(1, max_pending)
        self.max_failures = max(1, max_failures)
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self.failures: List[SideEffectFailure] = []
        self.completed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _record_failure(self, failure: SideEffectFailure) -> None:
        self.failures.append(failure)
        if len(self.failures) > self.max_failures:
            del self.failures[: len(self.failures) - self.max_failures]

    async def _run(self, name: str, job: JobFactory) -> None:
        last_error: Optional[str] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await job()
                self.completed += 1
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = str(exc)
                logger.warning(
                    "[side_effect] attempt failed",
                    extra={"job": name, "attempt": attempt, "error_message": last_error},
                )
                if attempt < self.max_attempts:
                    await self._sleep(_compute_backoff(attempt - 1).total_seconds())

        self._record_failure(SideEffectFailure(name=name, error=last_error or "unknown", attempts=self.max_attempts))

    def submit(self, name: str, job: JobFactory) -> bool:
        """Schedule job in the background. Returns False (and records a failure) when the queue is full."""
        if len(self._tasks) >= self.max_pending:
            logger.error("[side_effect] queue full, dropping job", extra={"job": name})
            self._record_failure(SideEffectFailure(name=name, error="queue full", attempts=0))
            return False

        task = asyncio.get_running_loop().create_task(self._run(name, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def drain(self) -> None:
        """Wait for every scheduled job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
