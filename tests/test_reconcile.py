"""
Tests for reconciliation of scraped postings against stored records.
"""

from datetime import timedelta

import pytest

from conftest import make_postings
from jobfilter.models import Outcome
from jobfilter.reconcile import Membership, load_membership, reconcile, select_working
from jobfilter.store import record_values


def store_outcome(store, posting, policy_id, evaluated_at, accepted=True, error=None):
    store.insert(record_values(Outcome(posting, policy_id, evaluated_at, accepted, error)))


class TestMembership:
    """Pure membership logic."""

    def test_must_update_union(self):
        membership = Membership(
            errored=frozenset({"a"}),
            outdated=frozenset({"b"}),
            current=frozenset({"c"}),
            other_policy=frozenset({"d"}),
        )
        assert membership.must_update("a")
        assert membership.must_update("b")
        assert not membership.must_update("c")
        assert membership.must_update("d")
        assert not membership.must_update("new")

    def test_needs_evaluation(self):
        membership = Membership(current=frozenset({"c"}))
        assert not membership.needs_evaluation("c")
        assert membership.needs_evaluation("new")

    def test_error_wins_over_current(self):
        """A stored error forces re-evaluation even with a fresh timestamp."""
        membership = Membership(errored=frozenset({"x"}), current=frozenset({"x"}))
        assert membership.needs_evaluation("x")
        assert membership.must_update("x")

    def test_select_working_preserves_order(self):
        postings = make_postings(5)
        membership = Membership(current=frozenset({postings[1].id, postings[3].id}))

        result = select_working(postings, membership)

        assert [p.id for p in result.working] == [postings[0].id, postings[2].id, postings[4].id]
        assert result.refreshed == 0


class TestReconcileWithStore:
    """Reconciliation against stored records."""

    @pytest.mark.asyncio
    async def test_all_new_postings_are_selected(self, store, policy):
        postings = make_postings(3)

        result = await reconcile(store, postings, policy)

        assert result.working == postings
        assert not any(result.must_update(p.id) for p in postings)

    @pytest.mark.asyncio
    async def test_current_records_are_skipped(self, store, policy):
        postings = make_postings(3)
        store_outcome(store, postings[0], policy.id, policy.updated_at)
        store_outcome(store, postings[1], policy.id, policy.updated_at + timedelta(minutes=5))

        result = await reconcile(store, postings, policy)

        assert [p.id for p in result.working] == [postings[2].id]

    @pytest.mark.asyncio
    async def test_outdated_records_are_refreshed(self, store, policy):
        postings = make_postings(2)
        store_outcome(store, postings[0], policy.id, policy.updated_at - timedelta(days=1))

        result = await reconcile(store, postings, policy)

        assert [p.id for p in result.working] == [postings[0].id, postings[1].id]
        assert result.must_update(postings[0].id)
        assert not result.must_update(postings[1].id)
        assert result.refreshed == 1

    @pytest.mark.asyncio
    async def test_errored_records_are_always_refreshed(self, store, policy):
        postings = make_postings(1)
        store_outcome(
            store, postings[0], policy.id, policy.updated_at + timedelta(hours=1),
            accepted=None, error="chunk failed",
        )

        result = await reconcile(store, postings, policy)

        assert result.working == postings
        assert result.must_update(postings[0].id)

    @pytest.mark.asyncio
    async def test_other_policy_records_are_refreshed(self, store, policy):
        other = store.save_policy("Something else", policy_id="other")
        postings = make_postings(1)
        store_outcome(store, postings[0], other.id, other.updated_at)

        result = await reconcile(store, postings, policy)

        assert result.working == postings
        assert result.must_update(postings[0].id)

    @pytest.mark.asyncio
    async def test_membership_sets(self, store, policy):
        postings = make_postings(4)
        other = store.save_policy("Other", policy_id="other")
        store_outcome(store, postings[0], policy.id, policy.updated_at, accepted=None, error="boom")
        store_outcome(store, postings[1], policy.id, policy.updated_at - timedelta(seconds=1))
        store_outcome(store, postings[2], policy.id, policy.updated_at)
        store_outcome(store, postings[3], other.id, other.updated_at)

        membership = await load_membership(store, policy)

        assert membership.errored == {postings[0].id}
        assert membership.outdated == {postings[1].id}
        assert membership.current == {postings[0].id, postings[2].id}
        assert membership.other_policy == {postings[3].id}

    @pytest.mark.asyncio
    async def test_empty_scrape_selects_nothing(self, store, policy):
        result = await reconcile(store, [], policy)
        assert result.working == []
