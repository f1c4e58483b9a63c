"""Fan users out across a bounded worker pool, one pooled connection per task."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import ConfigError
from .report import Stopwatch
from .workloads import TaskStats

TaskFactory = Callable[[uuid.UUID], Callable[[Any], TaskStats]]


@dataclass
class TaskOutcome:
    user_id: uuid.UUID
    ok: bool
    elapsed: float
    stats: Optional[TaskStats] = None
    error: Optional[BaseException] = None


@dataclass
class RunResult:
    outcomes: List[TaskOutcome] = field(default_factory=list)
    elapsed: float = 0.0
    scheduled: int = 0
    deadline_exceeded: bool = False

    @property
    def completed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failures(self) -> List[TaskOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def skipped(self) -> int:
        return self.scheduled - len(self.outcomes)

    @property
    def succeeded(self) -> bool:
        return not self.deadline_exceeded and self.completed == self.scheduled

    def totals(self) -> TaskStats:
        total = TaskStats()
        for outcome in self.outcomes:
            if outcome.stats is not None:
                total.add(outcome.stats)
        return total


class ConcurrentDriver:
    """Run one task per user on a thread pool sized within the connection pool.

    With ``fail_fast`` the first failed task stops users that have not
    started yet. ``deadline`` (seconds) bounds how long the driver waits;
    tasks already running when it passes are left to finish on their own.
    """

    def __init__(
        self,
        pool: Any,
        workers: Optional[int] = None,
        *,
        fail_fast: bool = True,
        deadline: Optional[float] = None,
        progress_interval: int = 10,
        label: str = "run",
    ) -> None:
        capacity = pool.size
        workers = capacity if workers is None else workers
        if workers < 1:
            raise ConfigError(f"workers must be >= 1 (got {workers})")
        if workers > capacity:
            raise ConfigError(
                f"workers ({workers}) exceeds connection pool size ({capacity}); "
                "workers would stall waiting for connections"
            )
        self.pool = pool
        self.workers = workers
        self.fail_fast = fail_fast
        self.deadline = deadline
        self.progress_interval = max(1, progress_interval)
        self.label = label

    def run(self, user_ids: Sequence[uuid.UUID], task_factory: TaskFactory) -> RunResult:
        result = RunResult(scheduled=len(user_ids))
        stop_event = threading.Event()
        total = len(user_ids)

        def process(user_id: uuid.UUID) -> Optional[TaskOutcome]:
            if stop_event.is_set():
                return None
            start = time.perf_counter()
            try:
                task = task_factory(user_id)
                with self.pool.connection() as conn:
                    stats = task(conn)
            except Exception as exc:
                elapsed = time.perf_counter() - start
                logging.exception("[%s][user %s] failed after %.2fs", self.label, user_id, elapsed)
                if self.fail_fast:
                    stop_event.set()
                return TaskOutcome(user_id, False, elapsed, error=exc)
            elapsed = time.perf_counter() - start
            logging.debug(
                "[%s][user %s] done rows_written=%d rows_read=%d statements=%d attempts=%d elapsed=%.2fs",
                self.label,
                user_id,
                stats.rows_written,
                stats.rows_read,
                stats.statements,
                stats.attempts,
                elapsed,
            )
            return TaskOutcome(user_id, True, elapsed, stats=stats)

        logging.info(
            "[%s] starting %d user task(s) on %d worker(s) (pool size %d)",
            self.label,
            total,
            self.workers,
            self.pool.size,
        )
        executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix=f"docbench-{self.label}"
        )
        futures: Dict[Future[Optional[TaskOutcome]], uuid.UUID] = {}
        with Stopwatch() as stopwatch:
            try:
                for user_id in user_ids:
                    futures[executor.submit(process, user_id)] = user_id
                for future in as_completed(futures, timeout=self.deadline):
                    if future.cancelled():
                        continue
                    outcome = future.result()
                    if outcome is None:
                        continue
                    result.outcomes.append(outcome)
                    if not outcome.ok and self.fail_fast:
                        for pending in futures:
                            pending.cancel()
                    done = len(result.outcomes)
                    if done % self.progress_interval == 0 or done == total:
                        logging.info(
                            "[%s] %d/%d users done (%d failed) elapsed=%.1fs",
                            self.label,
                            done,
                            total,
                            len(result.failures),
                            stopwatch.elapsed,
                        )
            except concurrent.futures.TimeoutError:
                result.deadline_exceeded = True
                stop_event.set()
                logging.error(
                    "[%s] deadline of %.1fs exceeded with %d/%d users done",
                    self.label,
                    self.deadline,
                    len(result.outcomes),
                    total,
                )
        result.elapsed = stopwatch.elapsed
        # After a missed deadline, still-running tasks are not waited for.
        executor.shutdown(wait=not result.deadline_exceeded, cancel_futures=True)
        return result
