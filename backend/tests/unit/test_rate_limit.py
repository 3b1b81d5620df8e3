import pytest

from academyhub.infra.rate_limit import allow, consume


@pytest.mark.asyncio
async def test_rate_limit_allows_within_budget():
	assert await allow("search", "u5", limit=2, window_seconds=60)
	assert await allow("search", "u5", limit=2, window_seconds=60)


@pytest.mark.asyncio
async def test_rate_limit_blocks_when_budget_exhausted():
	await allow("search", "u6", limit=1, window_seconds=60)
	assert not await allow("search", "u6", limit=1, window_seconds=60)


@pytest.mark.asyncio
async def test_rate_limit_window_rolls_over():
	await allow("search", "u7", limit=1, window_seconds=60, now=120.0)
	assert not await allow("search", "u7", limit=1, window_seconds=60, now=150.0)
	assert await allow("search", "u7", limit=1, window_seconds=60, now=180.0)


@pytest.mark.asyncio
async def test_zero_budget_never_allows():
	assert not await allow("search", "u8", limit=0)


@pytest.mark.asyncio
async def test_consume_reports_window_state():
	first = await consume("search", "u9", limit=2, window_seconds=60, now=125.0)
	assert first.allowed and first.used == 1 and first.remaining == 1
	assert first.reset_after == 55
	await consume("search", "u9", limit=2, window_seconds=60, now=130.0)
	third = await consume("search", "u9", limit=2, window_seconds=60, now=170.0)
	assert not third.allowed
	assert third.remaining == 0
	assert third.reset_after == 10


@pytest.mark.asyncio
async def test_consume_keys_are_per_kind():
	await consume("search", "u10", limit=1, window_seconds=60, now=60.0)
	other = await consume("suggest", "u10", limit=1, window_seconds=60, now=60.0)
	assert other.allowed
