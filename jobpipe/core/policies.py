"""Per-stage timeout and retry policies for pipeline activities.

The durable-execution substrate normally owns these; ``run_activity`` applies
the same table in-process so the pipeline can run on its own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SAVE_DISCOVERED_JOBS = "save_discovered_jobs"
PROCESS_DISCOVERED_JOB = "process_discovered_job"
GENERATE_JOB_EMBEDDING = "generate_job_embedding"
EXTRACT_JOB_DATA = "extract_job_data"


class NonRetryableActivityError(Exception):
    """Raised by collaborators when retrying cannot change the outcome."""


@dataclass(frozen=True, slots=True)
class StagePolicy:
    timeout_seconds: float
    max_attempts: int
    initial_interval_seconds: float
    backoff_coefficient: float = 2.0
    maximum_interval_seconds: float | None = None

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        delay = self.initial_interval_seconds * (self.backoff_coefficient ** max(0, attempt - 1))
        if self.maximum_interval_seconds is not None:
            delay = min(delay, self.maximum_interval_seconds)
        return delay


STAGE_POLICIES: dict[str, StagePolicy] = {
    SAVE_DISCOVERED_JOBS: StagePolicy(
        timeout_seconds=300.0,
        max_attempts=3,
        initial_interval_seconds=1.0,
        maximum_interval_seconds=30.0,
    ),
    PROCESS_DISCOVERED_JOB: StagePolicy(
        timeout_seconds=600.0,
        max_attempts=3,
        initial_interval_seconds=5.0,
    ),
    GENERATE_JOB_EMBEDDING: StagePolicy(
        timeout_seconds=300.0,
        max_attempts=3,
        initial_interval_seconds=1.0,
        maximum_interval_seconds=30.0,
    ),
    EXTRACT_JOB_DATA: StagePolicy(
        timeout_seconds=600.0,
        max_attempts=3,
        initial_interval_seconds=1.0,
        maximum_interval_seconds=30.0,
    ),
}


async def run_activity(
    stage: str,
    operation: Callable[[], Awaitable[T]],
    *,
    policies: Mapping[str, StagePolicy] = STAGE_POLICIES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    policy = policies[stage]
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
        except NonRetryableActivityError:
            raise
        except Exception as exc:
            if attempt >= policy.max_attempts:
                logger.warning(
                    "activity %s exhausted %s attempts: %s",
                    stage,
                    attempt,
                    describe_error(exc),
                )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "activity %s attempt %s failed: %s; retry in %.1fs",
                stage,
                attempt,
                describe_error(exc),
                delay,
            )
            await sleep(delay)


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip()
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) and not message:
        return "activity timed out"
    return message or type(exc).__name__
