"""
Decide which scraped postings need (re)classification.

Membership sets are derived from stored records on every run:

- errored: latest record holds an error
- outdated: evaluated under the policy before its last modification
- current: evaluated under the policy at or after its last modification
- other policy: evaluated under a different policy

A posting must be overwritten when it is errored, outdated or was judged by
another policy. Postings with a current record are skipped; everything else
is new and gets inserted.
"""

import asyncio
from dataclasses import dataclass, field
from typing import FrozenSet, List, Sequence

from .logger import get_logger
from .models import Posting, PolicyVersion
from .store import RecordStore


@dataclass(frozen=True)
class Membership:
    errored: FrozenSet[str] = frozenset()
    outdated: FrozenSet[str] = frozenset()
    current: FrozenSet[str] = frozenset()
    other_policy: FrozenSet[str] = frozenset()

    def must_update(self, posting_id: str) -> bool:
        return (
            posting_id in self.errored
            or posting_id in self.outdated
            or posting_id in self.other_policy
        )

    def needs_evaluation(self, posting_id: str) -> bool:
        return self.must_update(posting_id) or posting_id not in self.current


@dataclass(frozen=True)
class Reconciliation:
    working: List[Posting]
    membership: Membership = field(default_factory=Membership)
    refreshed: int = 0

    def must_update(self, posting_id: str) -> bool:
        return self.membership.must_update(posting_id)


async def load_membership(store: RecordStore, policy: PolicyVersion) -> Membership:
    """Query the four identifier sets concurrently."""
    errored, outdated, current, other = await asyncio.gather(
        asyncio.to_thread(store.error_ids),
        asyncio.to_thread(store.outdated_ids, policy.id, policy.updated_at),
        asyncio.to_thread(store.current_ids, policy.id, policy.updated_at),
        asyncio.to_thread(store.other_policy_ids, policy.id),
    )
    return Membership(frozenset(errored), frozenset(outdated), frozenset(current), frozenset(other))


def select_working(postings: Sequence[Posting], membership: Membership) -> Reconciliation:
    """Keep postings with no current record, plus forced refreshes; order is preserved."""
    working = [p for p in postings if membership.needs_evaluation(p.id)]
    refreshed = sum(1 for p in working if membership.must_update(p.id))
    return Reconciliation(working=working, membership=membership, refreshed=refreshed)


async def reconcile(
    store: RecordStore, postings: Sequence[Posting], policy: PolicyVersion
) -> Reconciliation:
    membership = await load_membership(store, policy)
    result = select_working(postings, membership)
    get_logger().info(
        f"Scraped postings: {len(postings)}, to evaluate: {len(result.working)}, "
        f"to be re-filtered: {result.refreshed}",
        policy_id=policy.id,
    )
    return result
