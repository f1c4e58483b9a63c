"""Serializable transactions that retry conflicts at a savepoint."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from .errors import RetryExhausted
from .stores import StoreDialect

T = TypeVar("T")

Operation = Callable[[Any], T]
RetryHook = Callable[[int, BaseException], None]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently conflicting transactions are retried.

    ``max_attempts=None`` retries forever. ``backoff_base=0`` retries
    immediately.
    """

    max_attempts: Optional[int] = None
    backoff_base: float = 0.0
    backoff_max: float = 1.0
    jitter: bool = False

    def allows_retry(self, attempts_made: int) -> bool:
        return self.max_attempts is None or attempts_made < self.max_attempts

    def delay(self, attempts_made: int, rng: random.Random) -> float:
        if self.backoff_base <= 0:
            return 0.0
        # exponent capped so unbounded retries never overflow a float
        exponent = min(max(attempts_made - 1, 0), 62)
        delay = min(self.backoff_max, self.backoff_base * (2.0 ** exponent))
        if self.jitter:
            delay *= rng.uniform(0.5, 1.0)
        return delay


UNBOUNDED = RetryPolicy()


class TransactionExecutor:
    """Run an operation inside one serializable transaction.

    Each attempt runs under a savepoint. Serialization conflicts roll back to
    the savepoint (or restart the transaction when the store discards it on
    conflict) and the operation is invoked again; the outer transaction is
    committed exactly once, after an attempt succeeds. Any other error rolls
    the transaction back and propagates.
    """

    def __init__(
        self,
        dialect: StoreDialect,
        policy: RetryPolicy = UNBOUNDED,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.dialect = dialect
        self.policy = policy
        self._sleep = sleep
        self._rng = rng or random.Random()

    def execute(
        self,
        conn: Any,
        operation: Operation[T],
        on_retry: Optional[RetryHook] = None,
    ) -> T:
        cursor = conn.cursor()
        try:
            return self._run(cursor, operation, on_retry)
        finally:
            cursor.close()

    def _run(self, cursor: Any, operation: Operation[T], on_retry: Optional[RetryHook]) -> T:
        savepoint = self.dialect.savepoint_name
        self._begin(cursor)
        attempt = 0
        try:
            while True:
                attempt += 1
                cursor.execute(f"SAVEPOINT {savepoint}")
                try:
                    result = operation(cursor)
                    cursor.execute(f"RELEASE SAVEPOINT {savepoint}")
                except Exception as exc:
                    if not self.dialect.is_serialization_conflict(exc):
                        raise
                    if not self.policy.allows_retry(attempt):
                        raise RetryExhausted(attempt) from exc
                    logging.debug("Serialization conflict on attempt %d: %s", attempt, exc)
                    if on_retry is not None:
                        on_retry(attempt, exc)
                    self._recover(cursor)
                    delay = self.policy.delay(attempt, self._rng)
                    if delay > 0:
                        self._sleep(delay)
                    continue
                break
            cursor.execute("COMMIT")
        except BaseException:
            self._rollback(cursor)
            raise
        return result

    def _begin(self, cursor: Any) -> None:
        for statement in self.dialect.begin_statements:
            cursor.execute(statement)

    def _recover(self, cursor: Any) -> None:
        if self.dialect.conflict_aborts_transaction:
            cursor.execute("ROLLBACK")
            self._begin(cursor)
        else:
            cursor.execute(f"ROLLBACK TO SAVEPOINT {self.dialect.savepoint_name}")

    def _rollback(self, cursor: Any) -> None:
        try:
            cursor.execute("ROLLBACK")
        except Exception:  # pragma: no cover - connection is discarded by the pool
            logging.debug("ROLLBACK after failed transaction also failed", exc_info=True)
