import asyncio
from unittest.mock import AsyncMock

import pytest

from docsearch_server.health.probe import HEALTH_CHECK_KEY, HealthProbe
from docsearch_server.messaging.channel import InMemoryTaskChannel


@pytest.fixture
def probe(store, index, fake_redis):
    return HealthProbe(store, index, fake_redis, InMemoryTaskChannel(), timeout_seconds=0.2)


async def test_all_up(probe, fake_redis):
    report = await probe.check()

    assert report.status == "UP"
    assert report.checks == {
        "postgresql": "UP",
        "elasticsearch": "UP",
        "redis": "UP",
        "messaging": "UP",
    }
    assert fake_redis.ttls[HEALTH_CHECK_KEY] == 1


async def test_one_failure_marks_only_that_probe(probe, store):
    store.unavailable = True

    report = await probe.check()

    assert report.status == "DOWN"
    assert report.checks["postgresql"] == "DOWN"
    assert report.checks["elasticsearch"] == "UP"
    assert report.checks["redis"] == "UP"


async def test_redis_outage(probe, fake_redis):
    fake_redis.fail = True

    report = await probe.check()

    assert report.checks["redis"] == "DOWN"
    assert report.checks["postgresql"] == "UP"


async def test_falsy_ping_is_down(probe, index):
    index.ping = AsyncMock(return_value=False)

    report = await probe.check()

    assert report.checks["elasticsearch"] == "DOWN"


async def test_slow_probe_times_out(probe, index):
    async def hang():
        await asyncio.sleep(5)
        return True

    index.ping = hang

    report = await probe.check()

    assert report.checks["elasticsearch"] == "DOWN"
    assert report.checks["messaging"] == "UP"


async def test_no_redis_client(store, index):
    probe = HealthProbe(store, index, None, InMemoryTaskChannel(), timeout_seconds=0.2)

    report = await probe.check()

    assert report.checks["redis"] == "DOWN"
