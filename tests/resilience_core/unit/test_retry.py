from __future__ import annotations

import pytest
from tenacity import AsyncRetrying, RetryCallState, RetryError
from tenacity.retry import retry_if_exception_type

from resilience_core.retry import RetryBackoffPolicy, build_backoff_retrying

pytestmark = pytest.mark.asyncio


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"attempts": 0}, "attempts must be >= 1"),
        ({"initial_delay": -0.1}, "initial_delay must be >= 0"),
        ({"multiplier": 0.5}, "multiplier must be >= 1"),
        (
            {"initial_delay": 2.0, "max_delay": 1.0},
            "max_delay must be >= initial_delay",
        ),
    ],
)
async def test_retry_backoff_policy_validation(
    kwargs: dict[str, float], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        RetryBackoffPolicy(**kwargs)  # type: ignore[arg-type]


async def test_build_retrying_without_optional_hooks() -> None:
    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=2, initial_delay=0.0, max_delay=0.0),
    )

    assert isinstance(retrying, AsyncRetrying)


async def test_backoff_grows_exponentially_and_is_capped() -> None:
    sleep_calls: list[float] = []

    async def _sleep(delay: float) -> None:
        sleep_calls.append(delay)

    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(
            attempts=5, initial_delay=1.0, multiplier=3.0, max_delay=5.0
        ),
        sleep=_sleep,
    )

    attempts = 0
    with pytest.raises(ValueError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ValueError("boom")

    assert attempts == 5
    assert sleep_calls == [1.0, 3.0, 5.0, 5.0]


async def test_before_sleep_sees_each_retried_attempt() -> None:
    before_sleep_calls: list[int] = []

    async def _sleep(delay: float) -> None:
        return

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep_calls.append(state.attempt_number)

    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=3, initial_delay=0.0, max_delay=0.0),
        sleep=_sleep,
        before_sleep=_before_sleep,
    )

    attempts = 0
    async for attempt in retrying:
        with attempt:
            attempts += 1
            if attempts < 3:
                raise ValueError("retry")

    assert attempts == 3
    assert before_sleep_calls == [1, 2]


async def test_non_matching_errors_are_not_retried() -> None:
    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=3, initial_delay=0.0, max_delay=0.0),
    )

    attempts = 0
    with pytest.raises(KeyError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise KeyError("permanent")

    assert attempts == 1


async def test_reraise_disabled_raises_retry_error() -> None:
    async def _sleep(delay: float) -> None:
        return

    retrying = build_backoff_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=2, initial_delay=0.0, max_delay=0.0),
        sleep=_sleep,
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ValueError("boom")
