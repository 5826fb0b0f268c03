"""
Pytest configuration and shared fixtures.
"""

import json
import random
from typing import Any, Dict, List, Sequence

import pytest
import requests

from jobfilter.classifier import Classifier
from jobfilter.logger import get_logger, reset_logger
from jobfilter.models import Posting
from jobfilter.orchestrator import PROFILE_SECTIONS
from jobfilter.retry import RetryExecutor
from jobfilter.store import RecordStore


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Fresh file-only logger per test."""
    reset_logger()
    logger = get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def store(tmp_path) -> RecordStore:
    """Record store on a temporary SQLite file."""
    record_store = RecordStore(f"sqlite:///{tmp_path / 'jobfilter.db'}")
    yield record_store
    record_store.close()


@pytest.fixture
def policy(store):
    return store.save_policy("Accept remote backend roles.", name="backend", policy_id="backend")


@pytest.fixture
def full_profile(store) -> Dict[str, Any]:
    """Store a profile with every required section."""
    profile = {section: {"value": section} for section in PROFILE_SECTIONS}
    profile["skills"] = [{"name": "python", "level": "expert"}]
    for section, value in profile.items():
        store.set_profile_section(section, value)
    return profile


def make_postings(count: int, prefix: str = "J") -> List[Posting]:
    return [
        Posting(
            id=f"{prefix}-{i:04d}",
            title=f"Engineer {i}",
            company=f"Company {i}",
            fields={"location": "Remote", "descriptionText": f"Role number {i}"},
        )
        for i in range(1, count + 1)
    ]


@pytest.fixture
def postings() -> List[Posting]:
    return make_postings(12)


class ScriptedClassifier(Classifier):
    """
    Classifier whose answers are decided by a callable per call.

    ``script(postings, call_number)`` returns the verdict list or raises.
    Every call is recorded.
    """

    def __init__(self, script=None):
        self.script = script or (lambda postings, n: [True] * len(postings))
        self.calls: List[List[str]] = []

    async def classify(self, postings: Sequence[Posting], profile: Dict[str, Any], policy_text: str):
        self.calls.append([p.id for p in postings])
        return self.script(list(postings), len(self.calls))


@pytest.fixture
def scripted_classifier():
    return ScriptedClassifier


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def executor(recording_sleep) -> RetryExecutor:
    """Retry executor that never actually sleeps and has a fixed seed."""
    return RetryExecutor(sleep=recording_sleep, rng=random.Random(7))


def make_response(url, payload=None, status=200, raw=None):
    """Build a ``requests.Response``; ``raw`` bytes replace the JSON payload."""
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    if raw is not None:
        resp._content = raw
    else:
        resp._content = json.dumps(payload if payload is not None else {}).encode("utf-8")
    return resp


class FakeSession:
    """Answers requests from a list of (method, url-suffix, response-args-or-exception) routes."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        for route_method, suffix, answer in self.routes:
            if route_method == method and url.endswith(suffix):
                if isinstance(answer, Exception):
                    raise answer
                if isinstance(answer, dict):
                    return make_response(url, **answer)
                return make_response(url, *answer)
        raise AssertionError(f"Unexpected request {method} {url}")

    def close(self):
        self.closed = True
