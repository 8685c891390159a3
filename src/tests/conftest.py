import pytest
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict
from osmium_hub.core.device_registry import DeviceRegistry
from osmium_hub.core.scheduler import CronTimer


class FakeClock:
    """Manually advanced clock"""
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer(CronTimer):
    """Records registrations instead of waiting on the wall clock.
    Recurrence validation is inherited, so bad expressions still fail."""
    def __init__(self):
        super().__init__()
        self.registrations: Dict[str, tuple] = {}
        self._next = 0

    def register(self, cron_expr: str, callback: Callable[[], Awaitable[Any]]) -> str:
        self.validate(cron_expr)
        self._next += 1
        handle = f"timer-{self._next}"
        self.registrations[handle] = (cron_expr, callback)
        return handle

    def cancel(self, handle: str) -> bool:
        return self.registrations.pop(handle, None) is not None

    def cancel_all(self) -> None:
        self.registrations.clear()

    def active_handles(self):
        return list(self.registrations)

    async def trigger(self, handle: str):
        _, callback = self.registrations[handle]
        return await callback()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 17, 7, 0, 0))

@pytest.fixture
def registry(clock):
    return DeviceRegistry(clock=clock)

@pytest.fixture
def fake_timer():
    return FakeTimer()
