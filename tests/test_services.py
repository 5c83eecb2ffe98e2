import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatborg.services import ServiceExitedError, ServiceGroup, TelegramBotService


class FakeService:
    def __init__(self, name, events, *, run=None):
        self.name = name
        self.events = events
        self._run = run
        self.stopped = asyncio.Event()

    async def run(self):
        if self._run is not None:
            await self._run()
            return
        await self.stopped.wait()

    async def stop(self):
        self.events.append(f"stop {self.name}")
        self.stopped.set()


@pytest.mark.asyncio
async def test_stop_event_stops_services_in_reverse_order():
    events = []
    stop_event = asyncio.Event()
    group = ServiceGroup([FakeService("db", events), FakeService("bot", events)])

    asyncio.get_running_loop().call_soon(stop_event.set)
    await asyncio.wait_for(group.run(stop_event), timeout=5)

    assert events == ["stop bot", "stop db"]


@pytest.mark.asyncio
async def test_failure_is_raised_after_stopping_everything():
    events = []

    async def crash():
        raise RuntimeError("connection lost")

    group = ServiceGroup([FakeService("db", events), FakeService("bot", events, run=crash)])

    with pytest.raises(RuntimeError, match="connection lost"):
        await asyncio.wait_for(group.run(asyncio.Event()), timeout=5)

    assert events == ["stop bot", "stop db"]


@pytest.mark.asyncio
async def test_service_exiting_on_its_own_is_a_failure():
    async def quit_early():
        return None

    group = ServiceGroup([FakeService("bot", [], run=quit_early)])

    with pytest.raises(ServiceExitedError, match="bot"):
        await asyncio.wait_for(group.run(asyncio.Event()), timeout=5)


@pytest.mark.asyncio
async def test_failing_stop_does_not_prevent_other_stops(caplog):
    events = []
    broken = FakeService("broken", events)
    broken.stop = AsyncMock(side_effect=RuntimeError("stuck"))
    stop_event = asyncio.Event()
    stop_event.set()

    await asyncio.wait_for(
        ServiceGroup([FakeService("db", events), broken]).run(stop_event), timeout=5
    )

    assert events == ["stop db"]
    assert "Failed to stop service broken" in caplog.text


@pytest.mark.asyncio
async def test_telegram_bot_service():
    borg = MagicMock()
    borg.run_until_disconnected = AsyncMock()
    borg.cancel_active_tasks = AsyncMock()
    borg.disconnect = AsyncMock()
    service = TelegramBotService(borg)

    await service.run()
    await service.stop()

    borg.run_until_disconnected.assert_awaited_once()
    borg.cancel_active_tasks.assert_awaited_once()
    borg.disconnect.assert_awaited_once()
