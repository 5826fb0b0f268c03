"""
Idempotent persistence of finalized outcomes.

Known postings (``must_update``) are overwritten by identifier, new ones are
inserted. Writes run concurrently and independently: one failed write never
blocks or rolls back the others. Each write reports a ``PersistResult`` so
the caller can see which identifiers did not land.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .logger import get_logger
from .models import Outcome
from .store import RecordStore, record_values


@dataclass(frozen=True)
class PersistResult:
    posting_id: str
    operation: str  # "update" or "insert"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Persister:
    def __init__(self, store: RecordStore):
        self.store = store

    async def _write(self, outcome: Outcome, must_update: Callable[[str], bool]) -> PersistResult:
        posting_id = outcome.posting.id
        values = record_values(outcome)
        if must_update(posting_id):
            operation = "update"
            call = asyncio.to_thread(self.store.update_by_id, posting_id, values)
        else:
            operation = "insert"
            call = asyncio.to_thread(self.store.insert, values)
        try:
            await call
        except Exception as e:
            get_logger().error(
                "Failed to persist outcome",
                posting_id=posting_id,
                operation=operation,
                error=f"{type(e).__name__}: {e}",
            )
            get_logger().record_persist_failure()
            return PersistResult(posting_id, operation, error=f"{type(e).__name__}: {e}")
        return PersistResult(posting_id, operation)

    async def persist(
        self, outcomes: Sequence[Outcome], must_update: Callable[[str], bool]
    ) -> List[PersistResult]:
        """Write every outcome; results come back in input order."""
        results = await asyncio.gather(*(self._write(o, must_update) for o in outcomes))
        failed = sum(1 for r in results if not r.ok)
        if failed:
            get_logger().warning(f"{failed} of {len(results)} outcome(s) failed to persist")
        return list(results)
