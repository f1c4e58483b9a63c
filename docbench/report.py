"""Wall-clock timing and throughput arithmetic."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional


class Stopwatch:
    """Context manager measuring elapsed wall time with ``perf_counter``."""

    def __init__(self) -> None:
        self.start_ts = 0.0
        self.end_ts: Optional[float] = None

    def __enter__(self) -> "Stopwatch":
        self.start_ts = time.perf_counter()
        self.end_ts = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.end_ts = time.perf_counter()
        return False

    @property
    def elapsed(self) -> float:
        end = self.end_ts if self.end_ts is not None else time.perf_counter()
        return end - self.start_ts


@dataclass(frozen=True)
class ThroughputReport:
    transactions: int
    elapsed: float
    # None when the workload has no row metric (load)
    rows_per_transaction: Optional[int] = None

    @property
    def transactions_per_second(self) -> float:
        return self.transactions / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def rows_per_second(self) -> Optional[float]:
        if self.rows_per_transaction is None:
            return None
        return self.rows_per_transaction * self.transactions_per_second

    def lines(self) -> List[str]:
        lines = [f"transactions/s: {self.transactions_per_second:.2f}"]
        rows_per_second = self.rows_per_second
        if rows_per_second is not None:
            lines.append(f"rows/s: {rows_per_second:.2f}")
        return lines


def throughput(
    action: str,
    user_count: int,
    iterations: int,
    batch_size: int,
    elapsed: float,
) -> ThroughputReport:
    """Transactions are users x iterations; ``run`` also reports rows at max(batch_size, 1) per transaction."""
    rows_per_transaction = max(batch_size, 1) if action == "run" else None
    return ThroughputReport(
        transactions=user_count * iterations,
        elapsed=elapsed,
        rows_per_transaction=rows_per_transaction,
    )
