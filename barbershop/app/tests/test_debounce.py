import asyncio

from barbershop.app.workers.debounce import DebouncedTask


def _counter():
    calls = []

    async def callback():
        calls.append(asyncio.get_running_loop().time())

    return calls, callback


def test_burst_collapses_into_one_call():
    async def scenario():
        calls, callback = _counter()
        task = DebouncedTask(callback, 0.05)
        for _ in range(5):
            task.trigger()
            await asyncio.sleep(0.01)
        assert task.pending
        await asyncio.sleep(0.15)
        return calls, task

    calls, task = asyncio.run(scenario())
    assert len(calls) == 1
    assert task.fired == 1
    assert not task.pending


def test_each_event_resets_timer():
    async def scenario():
        calls, callback = _counter()
        task = DebouncedTask(callback, 0.08)
        start = asyncio.get_running_loop().time()
        task.trigger()
        await asyncio.sleep(0.05)
        task.trigger()
        await asyncio.sleep(0.2)
        return calls[0] - start

    assert asyncio.run(scenario()) >= 0.12


def test_shorter_delay_never_shortens_pending_deadline():
    async def scenario():
        calls, callback = _counter()
        task = DebouncedTask(callback, 0.3)
        task.trigger(0.2)
        task.trigger(0.01)
        await asyncio.sleep(0.08)
        early = len(calls)
        await asyncio.sleep(0.25)
        return early, len(calls)

    assert asyncio.run(scenario()) == (0, 1)


def test_flush_and_cancel():
    async def scenario():
        calls, callback = _counter()
        task = DebouncedTask(callback, 10)
        await task.flush()
        assert calls == []
        task.trigger()
        await task.flush()
        assert len(calls) == 1
        task.trigger()
        task.cancel()
        await asyncio.sleep(0)
        return len(calls), task.pending

    assert asyncio.run(scenario()) == (1, False)


def test_callback_errors_are_logged_not_raised(caplog):
    async def boom():
        raise RuntimeError("reload failed")

    async def scenario():
        task = DebouncedTask(boom, 0.01, name="test-debounce")
        task.trigger()
        await asyncio.sleep(0.05)
        return task.fired

    assert asyncio.run(scenario()) == 1
    assert "test-debounce: callback failed" in caplog.text
