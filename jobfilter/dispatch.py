"""
Chunked, concurrent dispatch of postings to a classifier.

Postings are split into contiguous chunks; every chunk is one classifier
call wrapped by ``RetryExecutor`` and all chunks run concurrently. An
optional overall deadline cancels whatever is still outstanding, and those
chunks settle as failed with kind ``deadline``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .classifier import Classifier, validate_output
from .errors import ClassifierError, ErrorKind
from .logger import StructuredLogger, get_logger
from .models import Posting, chunk
from .retry import RetryExecutor, RetryPolicy

DEFAULT_CHUNK_SIZE = 5


@dataclass
class ChunkResult:
    """Settled result of one chunk: verdicts on success, error otherwise."""
    index: int
    postings: List[Posting]
    verdicts: Optional[List[Any]] = None
    error: Optional[ClassifierError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChunkDispatcher:
    def __init__(
        self,
        classifier: Classifier,
        executor: Optional[RetryExecutor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        deadline: Optional[float] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.classifier = classifier
        self.logger = logger or get_logger()
        self.executor = executor or RetryExecutor(logger=self.logger)
        self.retry_policy = retry_policy or RetryPolicy()
        self.deadline = deadline

    async def _classify(
        self, postings: List[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        self.logger.record_classifier_call()
        raw = await self.classifier.classify(postings, profile, policy_text)
        return validate_output(raw, len(postings))

    async def _split(
        self, label: str, postings: List[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        """Too-large fallback: classify each half on its own."""
        if len(postings) <= 1:
            raise ClassifierError(
                "Request too large for a single posting",
                status=413,
                kind=ErrorKind.PAYLOAD_TOO_LARGE,
            )
        middle = len(postings) // 2
        left = await self._run(f"{label} [1/2]", postings[:middle], profile, policy_text)
        right = await self._run(f"{label} [2/2]", postings[middle:], profile, policy_text)
        return left + right

    async def _run(
        self, label: str, postings: List[Posting], profile: Dict[str, Any], policy_text: str
    ) -> List[Any]:
        policy = self.retry_policy.with_fallback(
            lambda: self._split(label, postings, profile, policy_text)
        )
        return await self.executor.execute(
            label, lambda: self._classify(postings, profile, policy_text), policy
        )

    async def dispatch(
        self,
        postings: Sequence[Posting],
        profile: Dict[str, Any],
        policy_text: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> List[ChunkResult]:
        """
        Classify ``postings`` chunk by chunk.

        Returns one ``ChunkResult`` per chunk, in chunk order. Never raises
        for classifier failures; they are settled into the results.
        """
        chunks = chunk(postings, chunk_size)
        if not chunks:
            return []

        tasks = []
        for i, part in enumerate(chunks):
            label = f"Filter chunk ({i + 1}/{len(chunks)})"
            self.logger.record_chunk_dispatched()
            tasks.append(asyncio.create_task(self._run(label, part, profile, policy_text)))

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            self.logger.error(
                f"Deadline of {self.deadline}s exceeded; cancelling {len(pending)} chunk(s)",
                pending=len(pending),
                total=len(chunks),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for i, (part, task) in enumerate(zip(chunks, tasks)):
            if task in pending:
                error = ClassifierError(
                    f"Deadline of {self.deadline}s exceeded before the chunk settled",
                    kind=ErrorKind.DEADLINE,
                )
                results.append(ChunkResult(i, part, error=error))
            elif task.exception() is not None:
                error = ClassifierError.from_exception(task.exception())
                results.append(ChunkResult(i, part, error=error))
            else:
                results.append(ChunkResult(i, part, verdicts=task.result()))

        for result in results:
            if result.ok:
                self.logger.record_chunk_success()
            else:
                self.logger.record_chunk_failure(result.error.kind.value)
        return results
