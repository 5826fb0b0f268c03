"""
Turn settled chunk results into per-posting outcomes.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from .dispatch import ChunkResult
from .logger import get_logger
from .models import Outcome, OutcomeStatus, utcnow


@dataclass
class MergeResult:
    accepted: List[Outcome] = field(default_factory=list)
    rejected: List[Outcome] = field(default_factory=list)
    errored: List[Outcome] = field(default_factory=list)

    def add(self, outcome: Outcome) -> None:
        bucket = {
            OutcomeStatus.ACCEPTED: self.accepted,
            OutcomeStatus.REJECTED: self.rejected,
            OutcomeStatus.ERRORED: self.errored,
        }[outcome.status]
        bucket.append(outcome)

    def all(self) -> List[Outcome]:
        return self.accepted + self.rejected + self.errored

    def __len__(self) -> int:
        return len(self.accepted) + len(self.rejected) + len(self.errored)


def merge(
    results: Sequence[ChunkResult], policy_id: str, evaluated_at: Optional[datetime] = None
) -> MergeResult:
    """
    Partition every dispatched posting into accepted, rejected or errored.

    Verdicts are zipped positionally with the chunk. A failed chunk marks
    all of its postings errored with the chunk's failure reason.
    """
    evaluated_at = evaluated_at or utcnow()
    merged = MergeResult()
    logger = get_logger()

    for result in results:
        if not result.ok:
            logger.error(f"Error processing chunk {result.index + 1}", error=str(result.error))
            for posting in result.postings:
                merged.add(Outcome(
                    posting, policy_id, evaluated_at,
                    error=f"Failed to process posting due to chunk error: {result.error}",
                ))
            continue

        verdicts = list(result.verdicts or [])
        for i, posting in enumerate(result.postings):
            verdict = verdicts[i] if i < len(verdicts) else None
            if isinstance(verdict, bool):
                merged.add(Outcome(posting, policy_id, evaluated_at, accepted=verdict))
            else:
                merged.add(Outcome(
                    posting, policy_id, evaluated_at,
                    error=f"Unexpected output format from classifier: {json.dumps(verdict, default=str)}",
                ))

    logger.record_outcomes(len(merged.accepted), len(merged.rejected), len(merged.errored))
    logger.info(
        f"Filtered postings: {len(merged.accepted)} accepted, {len(merged.rejected)} rejected, "
        f"{len(merged.errored)} errors."
    )
    return merged
