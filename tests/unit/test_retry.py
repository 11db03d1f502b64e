import pytest

from procureflow.errors import NotAuthorizedForLevel, StaleVersion
from procureflow.utils.retry import compute_backoff, retry_on


def _flaky(failures, exc_type=StaleVersion):
    calls = []

    async def operation():
        calls.append(len(calls))
        if len(calls) <= failures:
            raise exc_type("changed underneath")
        return "done"

    return operation, calls


@pytest.mark.asyncio
async def test_retry_recovers_within_attempts():
    operation, calls = _flaky(1)
    assert await retry_on(operation, (StaleVersion,), attempts=1, base_delay=0) == "done"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_gives_up_after_attempts():
    operation, calls = _flaky(5)
    with pytest.raises(StaleVersion):
        await retry_on(operation, (StaleVersion,), attempts=2, base_delay=0)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_zero_attempts_runs_once():
    operation, calls = _flaky(1)
    with pytest.raises(StaleVersion):
        await retry_on(operation, (StaleVersion,), attempts=0, base_delay=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    operation, calls = _flaky(1, NotAuthorizedForLevel)
    with pytest.raises(NotAuthorizedForLevel):
        await retry_on(operation, (StaleVersion,), attempts=3, base_delay=0)
    assert len(calls) == 1


def test_compute_backoff_grows_with_attempt():
    assert compute_backoff(0, base_delay=0) == 0
    assert 0.099 <= compute_backoff(0, base_delay=0.1) <= 0.151
    assert 0.399 <= compute_backoff(2, base_delay=0.1) <= 0.601
