"""The load (insert) and run (query) workloads against the docs table."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .errors import UnexpectedResult
from .generator import WorkloadGenerator
from .retry import TransactionExecutor
from .stores import StoreDialect

Task = Callable[[Any], "TaskStats"]


@dataclass
class TaskStats:
    rows_written: int = 0
    rows_read: int = 0
    statements: int = 0
    attempts: int = 0

    def add(self, other: "TaskStats") -> None:
        self.rows_written += other.rows_written
        self.rows_read += other.rows_read
        self.statements += other.statements
        self.attempts += other.attempts


def insert_user_documents(
    cursor: Any,
    dialect: StoreDialect,
    user_id: uuid.UUID,
    generator: WorkloadGenerator,
) -> int:
    """Insert every revision of a freshly generated document set; return rows inserted."""
    sql = dialect.insert_sql
    owner = dialect.encode_id(user_id)
    inserted = 0
    for _ in range(generator.sample_document_count()):
        doc_id = dialect.encode_id(generator.new_document_id())
        for revision in range(generator.sample_revision_count()):
            cursor.execute(sql, (owner, doc_id, revision, generator.fixed_payload()))
            inserted += 1
    return inserted


def _check_rows(rows: Sequence[Sequence[Any]], limit: int, user_id: uuid.UUID) -> None:
    if len(rows) > limit:
        raise UnexpectedResult(
            f"user {user_id}: expected at most {limit} row(s), got {len(rows)}"
        )
    doc_ids = [row[1] for row in rows]
    if len(set(doc_ids)) != len(doc_ids):
        raise UnexpectedResult(f"user {user_id}: duplicate document ids in one result")


def query_documents(
    conn: Any,
    dialect: StoreDialect,
    user_id: uuid.UUID,
    generator: WorkloadGenerator,
    batch_size: int,
    iterations: int,
) -> TaskStats:
    """Fetch latest revisions of the user's documents, one statement per iteration.

    ``batch_size == 0`` looks up a single document per statement, otherwise
    ``batch_size`` documents (picked with replacement) are fetched together.
    Reads run in autocommit mode, outside any retry loop.
    """
    if batch_size < 0:
        raise ValueError(f"batch_size must be >= 0 (got {batch_size})")
    pool = generator.document_pool()
    owner = dialect.encode_id(user_id)
    stats = TaskStats()

    def pick() -> Any:
        return dialect.encode_id(pool[generator.uniform_index(len(pool))])

    with conn.cursor() as cursor:
        for _ in range(iterations):
            if batch_size == 0:
                cursor.execute(dialect.point_query_sql, {"user_id": owner, "doc_id": pick()})
                rows = cursor.fetchall()
                _check_rows(rows, 1, user_id)
            else:
                doc_ids = [pick() for _ in range(batch_size)]
                cursor.execute(dialect.batch_query_sql, {"user_id": owner, "doc_ids": doc_ids})
                rows = cursor.fetchall()
                _check_rows(rows, batch_size, user_id)
            stats.statements += 1
            stats.rows_read += len(rows)
    return stats


class InsertUserDocuments:
    """Task factory for the load workload: one retryable transaction per user."""

    transactions_per_task = 1

    def __init__(
        self,
        dialect: StoreDialect,
        executor: TransactionExecutor,
        seed: int,
        entropy_seed: Optional[int] = None,
    ) -> None:
        self.dialect = dialect
        self.executor = executor
        self.seed = seed
        self.entropy_seed = entropy_seed

    def __call__(self, user_id: uuid.UUID) -> Task:
        def task(conn: Any) -> TaskStats:
            stats = TaskStats()

            def operation(cursor: Any) -> int:
                # A retried attempt must write the same documents again.
                generator = WorkloadGenerator(self.seed, self.entropy_seed)
                stats.attempts += 1
                return insert_user_documents(cursor, self.dialect, user_id, generator)

            rows = self.executor.execute(conn, operation)
            stats.rows_written = rows
            stats.statements = rows
            return stats

        return task


class QueryUserDocuments:
    """Task factory for the run workload."""

    def __init__(
        self,
        dialect: StoreDialect,
        seed: int,
        batch_size: int,
        iterations: int,
        entropy_seed: Optional[int] = None,
    ) -> None:
        self.dialect = dialect
        self.seed = seed
        self.batch_size = batch_size
        self.iterations = iterations
        self.entropy_seed = entropy_seed

    @property
    def transactions_per_task(self) -> int:
        return self.iterations

    def __call__(self, user_id: uuid.UUID) -> Task:
        def task(conn: Any) -> TaskStats:
            generator = WorkloadGenerator(self.seed, self.entropy_seed)
            stats = query_documents(
                conn, self.dialect, user_id, generator, self.batch_size, self.iterations
            )
            stats.attempts = 1
            return stats

        return task
