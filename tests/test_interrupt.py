import asyncio

import pytest

from deepshell.agent.interrupt import InterruptController, InterruptMonitor
from deepshell.errors import TaskInterrupted


def test_trigger_calls_listeners_once() -> None:
    controller = InterruptController()
    calls: list[str] = []
    controller.on_interrupt(lambda: calls.append("a"))
    controller.on_interrupt(lambda: calls.append("b"))

    controller.trigger()
    controller.trigger()

    assert calls == ["a", "b"]
    assert controller.interrupted


def test_unregister_and_clear() -> None:
    controller = InterruptController()
    calls: list[int] = []
    unregister = controller.on_interrupt(lambda: calls.append(1))
    unregister()
    unregister()

    controller.trigger()
    assert calls == []

    controller.clear()
    assert not controller.interrupted
    controller.check()


def test_failing_listener_does_not_stop_others() -> None:
    controller = InterruptController()
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    controller.on_interrupt(broken)
    controller.on_interrupt(lambda: calls.append("ok"))
    controller.trigger()

    assert calls == ["ok"]


def test_check_raises_when_interrupted() -> None:
    controller = InterruptController()
    controller.trigger()

    with pytest.raises(TaskInterrupted):
        controller.check()


@pytest.mark.asyncio
async def test_run_cancellable_returns_result() -> None:
    controller = InterruptController()

    async def work() -> int:
        await asyncio.sleep(0)
        return 42

    assert await controller.run_cancellable(work()) == 42


@pytest.mark.asyncio
async def test_run_cancellable_cancels_on_interrupt() -> None:
    controller = InterruptController()
    cancelled = asyncio.Event()

    async def slow() -> None:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, controller.trigger)

    with pytest.raises(TaskInterrupted):
        await asyncio.wait_for(controller.run_cancellable(slow()), timeout=5)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_monitor_without_tty_only_installs_sigint() -> None:
    class Pipe:
        def isatty(self) -> bool:
            return False

    monitor = InterruptMonitor(InterruptController(), stream=Pipe())
    monitor.start()
    try:
        assert not monitor._reading
    finally:
        monitor.stop()
    assert not monitor.active
