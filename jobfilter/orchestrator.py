"""
Request-scoped driver of a filter run.

States run once each, in order::

    ValidatingInput -> Reconciling -> Dispatching -> Merging -> Persisting -> Responding

Reconciling jumps straight to Responding when nothing needs evaluation.
Any ``FilterError`` raised before dispatch becomes a terminal error response
carrying the error's status and reason. Database failures past the liveness
ping are answered as ``StoreUnavailableError``.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .classifier import Classifier, MockClassifier, OpenAIClassifier
from .config import Settings
from .dispatch import ChunkDispatcher
from .errors import (
    FilterError,
    InvalidPolicyIdError,
    MissingPolicyIdError,
    MissingSourceIdError,
    NoScrapeUrlsError,
    PolicyNotFoundError,
    ProfileSectionMissingError,
    StoreUnavailableError,
)
from .logger import get_logger
from .merge import MergeResult, merge
from .persist import PersistResult, Persister
from .reconcile import reconcile
from .retry import RetryExecutor, RetryPolicy
from .scrapers import ApifyScraper, JsonFileScraper, Scraper
from .store import RecordStore

POLICY_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")

PROFILE_SECTIONS = (
    "contact",
    "eligibility",
    "constraints",
    "preferences",
    "skills",
    "experience",
    "education",
    "certifications",
    "languages_spoken",
    "exclusions",
    "motivations",
    "career_goals",
)


class State(str, Enum):
    VALIDATING_INPUT = "ValidatingInput"
    RECONCILING = "Reconciling"
    DISPATCHING = "Dispatching"
    MERGING = "Merging"
    PERSISTING = "Persisting"
    RESPONDING = "Responding"


@dataclass(frozen=True)
class FilterRequest:
    policy_id: Optional[str]
    source_id: Optional[str]


@dataclass
class FilterResponse:
    status: int
    body: Dict[str, Any]
    reason: Optional[str] = None
    states: List[State] = field(default_factory=list)

    @classmethod
    def from_error(cls, error: FilterError, states: Optional[List[State]] = None) -> "FilterResponse":
        return cls(
            status=error.status,
            body={"error": error.reason, "message": error.message},
            reason=error.reason,
            states=list(states or []),
        )

    @classmethod
    def from_outcomes(
        cls, merged: MergeResult, unpersisted: List[str], states: List[State]
    ) -> "FilterResponse":
        return cls(
            status=200,
            body={
                "accepted": [o.to_dict() for o in merged.accepted],
                "rejected": [o.to_dict() for o in merged.rejected],
                "errored": [o.to_dict() for o in merged.errored],
                "unpersisted": unpersisted,
            },
            states=list(states),
        )


def require_profile(profile: Dict[str, Any]) -> Dict[str, Any]:
    """Return the profile restricted to its known sections, in order."""
    for section in PROFILE_SECTIONS:
        if section not in profile:
            raise ProfileSectionMissingError(section)
    return {section: profile[section] for section in PROFILE_SECTIONS}


def apply_persist_failures(merged: MergeResult, results: List[PersistResult]) -> MergeResult:
    """Move outcomes that failed to persist into ``errored``."""
    failures = {r.posting_id: r.error for r in results if not r.ok}
    if not failures:
        return merged
    strict = MergeResult()
    for outcome in merged.all():
        reason = failures.get(outcome.posting.id)
        if reason is not None and outcome.error is None:
            outcome = outcome.as_error(f"Failed to persist outcome: {reason}")
        strict.add(outcome)
    return strict


class Orchestrator:
    def __init__(
        self,
        store: RecordStore,
        scraper: Scraper,
        classifier: Classifier,
        settings: Optional[Settings] = None,
        executor: Optional[RetryExecutor] = None,
    ):
        self.store = store
        self.scraper = scraper
        self.classifier = classifier
        self.settings = settings or Settings()
        self.executor = executor
        self.persister = Persister(store)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retries=self.settings.retries,
            base_delay=self.settings.base_delay,
            max_delay=self.settings.max_delay,
            jitter_ratio=self.settings.jitter_ratio,
        )

    async def run(self, request: FilterRequest) -> FilterResponse:
        states: List[State] = []
        logger = get_logger()
        try:
            return await self._run(request, states)
        except SQLAlchemyError as e:
            logger.error(
                "Store operation failed",
                policy_id=request.policy_id,
                source_id=request.source_id,
                state=states[-1].value if states else None,
                error=f"{type(e).__name__}: {e}",
            )
            error: FilterError = StoreUnavailableError(f"Store operation failed: {type(e).__name__}")
        except FilterError as e:
            error = e
        logger.error(f"Filter request failed: {error.reason}", status=error.status, error=error.message)
        states.append(State.RESPONDING)
        return FilterResponse.from_error(error, states)

    async def _run(self, request: FilterRequest, states: List[State]) -> FilterResponse:
        logger = get_logger()
        settings = self.settings

        states.append(State.VALIDATING_INPUT)
        policy_id = (request.policy_id or "").strip()
        if not policy_id:
            raise MissingPolicyIdError()
        if not POLICY_ID_PATTERN.match(policy_id):
            raise InvalidPolicyIdError(policy_id)
        await self.store.ping(settings.ping_timeout_seconds)
        source_id = (request.source_id or "").strip()
        if not source_id:
            raise MissingSourceIdError()
        urls = await asyncio.to_thread(self.store.list_scrape_urls)
        if not urls and self.scraper.requires_urls:
            raise NoScrapeUrlsError()
        policy = await asyncio.to_thread(self.store.get_policy, policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)

        states.append(State.RECONCILING)
        postings = await asyncio.to_thread(self.scraper.list_postings, source_id, urls)
        reconciliation = await reconcile(self.store, postings, policy)
        if not reconciliation.working:
            states.append(State.RESPONDING)
            return FilterResponse.from_outcomes(MergeResult(), [], states)
        profile = require_profile(await asyncio.to_thread(self.store.get_profile))

        states.append(State.DISPATCHING)
        dispatcher = ChunkDispatcher(
            self.classifier,
            executor=self.executor,
            retry_policy=self.retry_policy(),
            deadline=settings.deadline_seconds,
        )
        results = await dispatcher.dispatch(
            reconciliation.working, profile, policy.text, settings.chunk_size
        )

        states.append(State.MERGING)
        merged = merge(results, policy.id)

        states.append(State.PERSISTING)
        persisted = await self.persister.persist(merged.all(), reconciliation.must_update)
        unpersisted = [r.posting_id for r in persisted if not r.ok]
        if settings.strict_persistence:
            merged = apply_persist_failures(merged, persisted)

        states.append(State.RESPONDING)
        logger.log_metrics_summary()
        return FilterResponse.from_outcomes(merged, unpersisted, states)


def build_orchestrator(
    settings: Settings,
    mock: bool = False,
    scrape_dir: Optional[Path] = None,
    store: Optional[RecordStore] = None,
) -> Orchestrator:
    """
    Wire collaborators from settings.

    Raises:
        ConfigurationError: When a required credential is missing
    """
    if scrape_dir is not None:
        scraper: Scraper = JsonFileScraper(scrape_dir)
    else:
        scraper = ApifyScraper(settings.require("apify_token"))
    if mock:
        classifier: Classifier = MockClassifier()
    else:
        classifier = OpenAIClassifier(settings.require("openai_api_key"), model=settings.model)
    store = store or RecordStore(settings.require("database_url"))
    return Orchestrator(store, scraper, classifier, settings)


async def run_filter(
    settings: Settings,
    request: FilterRequest,
    mock: bool = False,
    scrape_dir: Optional[Path] = None,
) -> FilterResponse:
    """Build the collaborators and run one request; configuration errors become responses."""
    try:
        orchestrator = build_orchestrator(settings, mock=mock, scrape_dir=scrape_dir)
    except FilterError as e:
        get_logger().critical(f"Configuration error: {e.reason}", error=e.message)
        return FilterResponse.from_error(e)
    try:
        return await orchestrator.run(request)
    finally:
        orchestrator.scraper.close()
        orchestrator.store.close()
