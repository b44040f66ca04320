import asyncio

import pytest

from callflow.scheduler import DeferredActions


@pytest.mark.asyncio
async def test_runs_after_delay():
    actions = DeferredActions()
    ran = []
    actions.schedule(0.01, lambda: ran.append("sync"), "sync")
    assert len(actions) == 1
    await asyncio.sleep(0.05)
    assert ran == ["sync"]
    assert len(actions) == 0


@pytest.mark.asyncio
async def test_runs_coroutine_actions():
    actions = DeferredActions()
    ran = []

    async def cleanup():
        ran.append("async")

    await actions.schedule(0, cleanup, "async")
    assert ran == ["async"]


@pytest.mark.asyncio
async def test_failure_is_logged_not_raised(caplog):
    actions = DeferredActions()

    def broken():
        raise OSError("disk gone")

    await actions.schedule(0, broken, "Audio cleanup a.mp3")
    assert "Audio cleanup a.mp3 failed: disk gone" in caplog.text


@pytest.mark.asyncio
async def test_flush_runs_pending_once():
    actions = DeferredActions()
    ran = []
    actions.schedule(3600, lambda: ran.append(1), "slow")
    actions.schedule(3600, lambda: ran.append(2), "slower")

    await actions.flush()
    assert sorted(ran) == [1, 2]
    assert len(actions) == 0

    await actions.flush()
    assert sorted(ran) == [1, 2]
