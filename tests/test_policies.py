from __future__ import annotations

import asyncio

import pytest

from jobpipe.core.policies import (
    EXTRACT_JOB_DATA,
    GENERATE_JOB_EMBEDDING,
    PROCESS_DISCOVERED_JOB,
    SAVE_DISCOVERED_JOBS,
    STAGE_POLICIES,
    NonRetryableActivityError,
    StagePolicy,
    describe_error,
    run_activity,
)


def test_stage_policy_table() -> None:
    assert STAGE_POLICIES[SAVE_DISCOVERED_JOBS].timeout_seconds == 300
    assert STAGE_POLICIES[PROCESS_DISCOVERED_JOB].timeout_seconds == 600
    assert STAGE_POLICIES[GENERATE_JOB_EMBEDDING].timeout_seconds == 300
    assert STAGE_POLICIES[EXTRACT_JOB_DATA].timeout_seconds == 600
    assert {policy.max_attempts for policy in STAGE_POLICIES.values()} == {3}


def test_backoff_doubles_and_respects_the_cap() -> None:
    capped = STAGE_POLICIES[SAVE_DISCOVERED_JOBS]
    assert [capped.delay_for(attempt) for attempt in range(1, 7)] == [1, 2, 4, 8, 16, 30]

    uncapped = STAGE_POLICIES[PROCESS_DISCOVERED_JOB]
    assert [uncapped.delay_for(attempt) for attempt in range(1, 5)] == [5, 10, 20, 40]


def test_run_activity_retries_until_success() -> None:
    calls = 0
    delays: list[float] = []

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ConnectionError("reset by peer")
        return "ok"

    async def record_sleep(delay: float) -> None:
        delays.append(delay)

    result = asyncio.run(run_activity(SAVE_DISCOVERED_JOBS, flaky, sleep=record_sleep))

    assert result == "ok"
    assert calls == 3
    assert delays == [1.0, 2.0]


def test_run_activity_raises_last_error_after_max_attempts(no_sleep) -> None:
    calls = 0

    async def always_fails() -> None:
        nonlocal calls
        calls += 1
        raise ConnectionError(f"failure {calls}")

    with pytest.raises(ConnectionError, match="failure 3"):
        asyncio.run(run_activity(GENERATE_JOB_EMBEDDING, always_fails, sleep=no_sleep))
    assert calls == 3


def test_non_retryable_errors_are_not_retried(no_sleep) -> None:
    calls = 0

    async def rejected() -> None:
        nonlocal calls
        calls += 1
        raise NonRetryableActivityError("invalid api key")

    with pytest.raises(NonRetryableActivityError):
        asyncio.run(run_activity(EXTRACT_JOB_DATA, rejected, sleep=no_sleep))
    assert calls == 1


def test_timeouts_count_as_failed_attempts(no_sleep) -> None:
    calls = 0
    policies = {"slow": StagePolicy(timeout_seconds=0.01, max_attempts=2, initial_interval_seconds=0.0)}

    async def slow() -> None:
        nonlocal calls
        calls += 1
        await asyncio.sleep(1)

    with pytest.raises(asyncio.TimeoutError) as excinfo:
        asyncio.run(run_activity("slow", slow, policies=policies, sleep=no_sleep))
    assert calls == 2
    assert describe_error(excinfo.value) == "activity timed out"
