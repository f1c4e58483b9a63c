"""Synthetic users, documents and payloads for the docs workloads."""

from __future__ import annotations

import random
import uuid
from typing import List, Optional, Tuple

DOCUMENT_COUNT_RANGE: Tuple[int, int] = (10, 1000)
REVISION_COUNT_RANGE: Tuple[int, int] = (1, 20)
PAYLOAD_BYTES = 2048


def _uuid_from(rng: random.Random) -> uuid.UUID:
    return uuid.UUID(int=rng.getrandbits(128), version=4)


def user_ids(seed: int, count: int) -> List[uuid.UUID]:
    """Return the run's user ids; identical for identical seeds."""
    rng = random.Random(f"{seed}:users")
    return [_uuid_from(rng) for _ in range(count)]


class WorkloadGenerator:
    """Per-task random state.

    Structural draws (document counts, document ids, revision counts) come
    from streams seeded with ``seed`` and repeat exactly for every task and
    every run with the same seed. The document count and ids share one
    stream and revision counts use another, so the query workload can
    rebuild the ids the insert workload wrote without replaying revisions.
    Payload bytes and query picks come from an entropy-seeded stream.
    """

    def __init__(self, seed: int, entropy_seed: Optional[int] = None) -> None:
        self.seed = seed
        self._ids = random.Random(f"{seed}:documents")
        self._revisions = random.Random(f"{seed}:revisions")
        # random.Random(None) seeds itself from os.urandom
        self._entropy = random.Random(entropy_seed)

    def sample_document_count(self) -> int:
        low, high = DOCUMENT_COUNT_RANGE
        return self._ids.randrange(low, high)

    def sample_revision_count(self) -> int:
        low, high = REVISION_COUNT_RANGE
        return self._revisions.randrange(low, high)

    def new_document_id(self) -> uuid.UUID:
        return _uuid_from(self._ids)

    def fixed_payload(self) -> bytes:
        return self._entropy.randbytes(PAYLOAD_BYTES)

    def uniform_index(self, bound: int) -> int:
        if bound <= 0:
            raise ValueError(f"bound must be positive (got {bound})")
        return self._entropy.randrange(bound)

    def document_pool(self) -> List[uuid.UUID]:
        """Draw a document count and that many ids, as the insert side does."""
        count = self.sample_document_count()
        return [self.new_document_id() for _ in range(count)]
