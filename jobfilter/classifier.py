"""
Classifier collaborators.

A classifier receives one ordered chunk of postings together with the
applicant profile and the policy text, and answers with one boolean per
posting in the same order. Failures leave this module as ``ClassifierError``
only; OpenAI's exception hierarchy is translated here, at the call site.
"""

import asyncio
import json
import random
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import openai

from .errors import ClassifierError, ErrorKind
from .logger import get_logger
from .models import Posting

INSTRUCTION = (
    "Decide, for each job posting below and in the given order, whether it is "
    "suitable for the applicant to apply to. Answer with an object whose "
    "'output' array holds exactly one boolean per posting, in the same order."
)

OUTPUT_SCHEMA = {
    "name": "filter_output",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {"output": {"type": "array", "items": {"type": "boolean"}}},
        "required": ["output"],
        "additionalProperties": False,
    },
}

_TOO_LARGE = re.compile(r"request too large", re.IGNORECASE)


class Classifier(ABC):
    """Judges a chunk of postings against a policy for one applicant."""

    @abstractmethod
    async def classify(
        self, postings: Sequence[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        """Return one verdict per posting, in input order."""
        raise NotImplementedError


def validate_output(raw: Any, expected: int) -> List[bool]:
    """
    Enforce the output contract: a list of exactly ``expected`` booleans.

    Raises:
        ClassifierError: kind ``invalid_output`` on any mismatch
    """
    if isinstance(raw, dict):
        raw = raw.get("output")
    if not isinstance(raw, list):
        raise ClassifierError(
            f"Invalid classifier output: expected an array, got {type(raw).__name__}",
            kind=ErrorKind.INVALID_OUTPUT,
        )
    if len(raw) != expected:
        raise ClassifierError(
            f"Invalid classifier output: length {len(raw)} does not match chunk length {expected}",
            kind=ErrorKind.INVALID_OUTPUT,
        )
    bad = [i for i, v in enumerate(raw) if not isinstance(v, bool)]
    if bad:
        raise ClassifierError(
            f"Invalid classifier output: non-boolean elements at positions {bad}",
            kind=ErrorKind.INVALID_OUTPUT,
        )
    return list(raw)


def classify_openai_error(exc: openai.APIError) -> ClassifierError:
    """Translate an OpenAI SDK exception into a tagged ``ClassifierError``."""
    message = getattr(exc, "message", None) or str(exc)

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        headers = dict(exc.response.headers) if exc.response is not None else {}
        if status == 413 or _TOO_LARGE.search(message):
            kind = ErrorKind.PAYLOAD_TOO_LARGE
        elif status == 429:
            kind = ErrorKind.RATE_LIMIT
        elif status >= 500:
            kind = ErrorKind.SERVER
        else:
            kind = ErrorKind.CLIENT
        return ClassifierError(message, status=status, kind=kind, headers=headers)

    if isinstance(exc, openai.APIConnectionError):
        return ClassifierError(message, kind=ErrorKind.NETWORK)

    return ClassifierError(message, kind=ErrorKind.UNKNOWN)


def build_messages(
    postings: Sequence[Posting], profile: Dict[str, Any], policy_text: str
) -> List[Dict[str, str]]:
    payload = {
        "instruction": INSTRUCTION,
        "profile": profile,
        "postings": [{"index": i, **p.to_dict()} for i, p in enumerate(postings)],
    }
    return [
        {"role": "system", "content": policy_text},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False, default=str)},
    ]


class OpenAIClassifier(Classifier):
    """Classifier backed by OpenAI chat completions with structured output."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-5-nano",
        max_completion_tokens: int = 16000,
        reasoning_effort: Optional[str] = "high",
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        # Retries are owned by RetryExecutor
        self.client = client or openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model = model
        self.max_completion_tokens = max_completion_tokens
        self.reasoning_effort = reasoning_effort

    async def classify(
        self, postings: Sequence[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        options: Dict[str, Any] = {"max_completion_tokens": self.max_completion_tokens}
        if self.reasoning_effort:
            options["reasoning_effort"] = self.reasoning_effort

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=build_messages(postings, profile, policy_text),
                response_format={"type": "json_schema", "json_schema": OUTPUT_SCHEMA},
                **options,
            )
        except openai.APIError as e:
            raise classify_openai_error(e) from e

        content = response.choices[0].message.content if response.choices else None
        try:
            parsed = json.loads(content or "")
        except json.JSONDecodeError as e:
            raise ClassifierError(
                f"Invalid classifier output: response is not JSON ({e})",
                kind=ErrorKind.INVALID_OUTPUT,
            ) from e
        return validate_output(parsed, len(postings))


class MockClassifier(Classifier):
    """
    Offline classifier for local runs and tests.

    Verdicts are derived from ``seed`` and the posting id, so a posting gets
    the same answer on every call regardless of chunking. ``error_rate`` is
    the probability that a whole call fails with a 500.
    """

    def __init__(
        self,
        accept_ratio: float = 0.6,
        error_rate: float = 0.0,
        seed: Optional[int] = None,
        delay_per_posting: float = 0.0,
    ):
        self.accept_ratio = accept_ratio
        self.error_rate = error_rate
        self.seed = seed if seed is not None else random.randrange(2 ** 32)
        self.delay_per_posting = delay_per_posting
        self.rng = random.Random(self.seed)
        self.calls = 0

    async def classify(
        self, postings: Sequence[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        self.calls += 1
        if self.delay_per_posting > 0:
            await asyncio.sleep(self.delay_per_posting * len(postings))
        if self.rng.random() < self.error_rate:
            get_logger().debug("Mock classifier injecting failure", call=self.calls)
            raise ClassifierError("Mock classifier failure", status=500, kind=ErrorKind.SERVER)
        return [
            random.Random(f"{self.seed}:{p.id}").random() < self.accept_ratio
            for p in postings
        ]
