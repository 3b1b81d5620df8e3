import pytest

from academyhub.domain.enrichment.throttle import RequestThrottle


class ManualClock:
	def __init__(self) -> None:
		self.now = 10.0
		self.sleeps: list[float] = []

	def __call__(self) -> float:
		return self.now

	async def sleep(self, seconds: float) -> None:
		self.sleeps.append(round(seconds, 3))
		self.now += seconds


@pytest.mark.asyncio
async def test_first_request_does_not_wait():
	clock = ManualClock()
	throttle = RequestThrottle(0.2, clock=clock, sleep=clock.sleep)
	await throttle.wait()
	assert clock.sleeps == []


@pytest.mark.asyncio
async def test_back_to_back_requests_are_spaced():
	clock = ManualClock()
	throttle = RequestThrottle(0.2, clock=clock, sleep=clock.sleep)
	await throttle.wait()
	clock.now += 0.05
	await throttle.wait()
	await throttle.wait()
	assert clock.sleeps == [0.15, 0.2]


@pytest.mark.asyncio
async def test_idle_gap_longer_than_interval_skips_sleep():
	clock = ManualClock()
	throttle = RequestThrottle(0.2, clock=clock, sleep=clock.sleep)
	await throttle.wait()
	clock.now += 1.0
	await throttle.wait()
	assert clock.sleeps == []


@pytest.mark.asyncio
async def test_reset_forgets_watermark():
	clock = ManualClock()
	throttle = RequestThrottle(0.2, clock=clock, sleep=clock.sleep)
	await throttle.wait()
	throttle.reset()
	await throttle.wait()
	assert clock.sleeps == []


def test_create_reads_interval_from_settings():
	assert RequestThrottle.create().min_interval == pytest.approx(0.2)
