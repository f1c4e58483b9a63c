"""In-memory stand-ins for a DB-API connection backed by a ``docs`` table."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from docbench.stores import DIALECTS


class ConflictError(Exception):
    """Looks like a psycopg2 serialization failure."""

    pgcode = "40001"


class FatalError(Exception):
    pgcode = "23505"


class DocStore:
    """A ``docs`` table with transaction, savepoint and statement logging."""

    def __init__(self) -> None:
        self.rows: List[Tuple[Any, Any, int, bytes]] = []
        self.pending: List[Tuple[Any, Any, int, bytes]] = []
        self.savepoint_mark: Optional[int] = None
        self.statements: List[str] = []
        self.commits = 0
        # called with the SQL before it runs; may raise
        self.hook: Optional[Callable[[str, Any], None]] = None

    def latest(self, user_id: Any, doc_id: Any) -> Optional[Tuple[Any, Any, int, bytes]]:
        matches = [row for row in self.rows if row[0] == user_id and row[1] == doc_id]
        return max(matches, key=lambda row: row[2]) if matches else None

    def execute(self, sql: str, params: Any = None) -> List[Tuple[Any, ...]]:
        self.statements.append(sql)
        if self.hook is not None:
            self.hook(sql, params)
        keyword = sql.split()[0].upper()
        if keyword == "INSERT":
            self.pending.append(tuple(params))
            return []
        if keyword == "SAVEPOINT":
            self.savepoint_mark = len(self.pending)
        elif sql.startswith("ROLLBACK TO SAVEPOINT"):
            del self.pending[self.savepoint_mark:]
        elif keyword == "ROLLBACK":
            self.pending.clear()
            self.savepoint_mark = None
        elif keyword == "COMMIT":
            self.rows.extend(self.pending)
            self.pending.clear()
            self.commits += 1
        elif keyword == "SELECT":
            return self._select(params)
        return []

    def _select(self, params: Dict[str, Any]) -> List[Tuple[Any, ...]]:
        if "doc_id" in params:
            wanted = [params["doc_id"]]
        else:
            wanted = list(dict.fromkeys(params["doc_ids"]))
        result = []
        for doc_id in wanted:
            row = self.latest(params["user_id"], doc_id)
            if row is not None:
                result.append(row)
        return result


class FakeCursor:
    def __init__(self, store: DocStore) -> None:
        self.store = store
        self._result: List[Tuple[Any, ...]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        self._result = self.store.execute(sql, params)

    def fetchall(self) -> List[Tuple[Any, ...]]:
        return list(self._result)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class FakeConnection:
    def __init__(self, store: Optional[DocStore] = None) -> None:
        self.store = store or DocStore()
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self.store)

    def close(self) -> None:
        self.closed = True


class FakePool:
    """Hands out connections sharing one DocStore."""

    def __init__(self, store: Optional[DocStore] = None, size: int = 8) -> None:
        self.store = store or DocStore()
        self.size = size
        self.checked_out = 0
        self.max_checked_out = 0
        self._lock = threading.Lock()

    def connection(self):
        pool = self

        class _Checkout:
            def __enter__(self) -> FakeConnection:
                with pool._lock:
                    pool.checked_out += 1
                    pool.max_checked_out = max(pool.max_checked_out, pool.checked_out)
                return FakeConnection(pool.store)

            def __exit__(self, *exc: Any) -> bool:
                with pool._lock:
                    pool.checked_out -= 1
                return False

        return _Checkout()


@pytest.fixture
def postgres():
    return DIALECTS["postgresql"]


@pytest.fixture
def mysql():
    return DIALECTS["mysql"]


@pytest.fixture
def store():
    return DocStore()


@pytest.fixture
def conn(store):
    return FakeConnection(store)
