"""
Domain types shared across the filtering engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the store round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Posting:
    """One scraped job listing. ``fields`` holds the opaque scraped payload."""
    id: str
    title: str
    company: str
    fields: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Posting":
        company = data.get("company") or data.get("companyName") or ""
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            company=company,
            fields={k: v for k, v in data.items() if k not in ("id", "title", "company")},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**self.fields, "id": self.id, "title": self.title, "company": self.company}


@dataclass(frozen=True)
class PolicyVersion:
    id: str
    text: str
    updated_at: datetime
    name: str = ""


class OutcomeStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERRORED = "errored"


@dataclass(frozen=True)
class Outcome:
    """Tri-state result for one posting: ``accepted`` is None when errored."""
    posting: Posting
    policy_id: str
    evaluated_at: datetime
    accepted: Optional[bool] = None
    error: Optional[str] = None

    @property
    def status(self) -> OutcomeStatus:
        if self.error is not None or self.accepted is None:
            return OutcomeStatus.ERRORED
        return OutcomeStatus.ACCEPTED if self.accepted else OutcomeStatus.REJECTED

    def as_error(self, message: str) -> "Outcome":
        return Outcome(self.posting, self.policy_id, self.evaluated_at, None, message)

    def to_dict(self) -> Dict[str, Any]:
        result: Any = self.accepted if self.status != OutcomeStatus.ERRORED else {"error": self.error}
        return {
            **self.posting.to_dict(),
            "evaluated_at": self.evaluated_at.isoformat(),
            "policy_id": self.policy_id,
            "result": result,
        }


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """Split into contiguous, order-preserving chunks of ``size`` (last may be short)."""
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
