# Recurring schedules and the timers that drive them
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from datetime import datetime
import asyncio
import threading
import uuid
from croniter import croniter
from .device_registry import DeviceRegistry
from .dispatcher import CommandDispatcher
from ..models.schedule import Schedule
from ..utils.exceptions import NotFoundError, ValidationError
from ..utils.helpers import build_cron_expression, next_schedule_id
from ..utils.logging import get_logger

logger = get_logger(__name__)


class CronTimer:
    """
    Runs a callback every time a cron expression comes due.

    Each registration is one asyncio task that sleeps until the next
    occurrence computed by croniter, so register() must be called with a
    running event loop. Every firing runs in a task of its own: cancelling
    a registration stops future firings, never one already running.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._firings: Set[asyncio.Task] = set()

    @staticmethod
    def validate(cron_expr: str) -> None:
        if not croniter.is_valid(cron_expr):
            raise ValidationError(f"Invalid recurrence: '{cron_expr}'")

    def register(self, cron_expr: str, callback: Callable[[], Awaitable[Any]]) -> str:
        self.validate(cron_expr)
        handle = str(uuid.uuid4())
        self._tasks[handle] = asyncio.get_running_loop().create_task(
            self._run(cron_expr, callback)
        )
        return handle

    def cancel(self, handle: str) -> bool:
        task = self._tasks.pop(handle, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in list(self._tasks):
            self.cancel(handle)

    def active_handles(self) -> List[str]:
        return [handle for handle, task in self._tasks.items() if not task.done()]

    async def _run(self, cron_expr: str, callback: Callable[[], Awaitable[Any]]) -> None:
        occurrences = croniter(cron_expr, self.clock())
        while True:
            next_run = occurrences.get_next(datetime)
            delay = (next_run - self.clock()).total_seconds()
            await asyncio.sleep(max(0.0, delay))
            firing = asyncio.ensure_future(callback())
            self._firings.add(firing)
            firing.add_done_callback(lambda task: self._firing_done(cron_expr, task))

    def _firing_done(self, cron_expr: str, task: asyncio.Future) -> None:
        self._firings.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Timer callback for '{cron_expr}' failed: {error!r}")

    def in_flight(self) -> int:
        return len(self._firings)


class ScheduleManager:
    """
    Owns the schedules and exactly one timer per enabled schedule.

    Every firing sends the schedule's command to all devices the registry
    knows at that moment, including devices first seen after the schedule
    was created.
    """

    def __init__(self, registry: DeviceRegistry, dispatcher: CommandDispatcher,
                 timer: Optional[CronTimer] = None):
        self.registry = registry
        self.dispatcher = dispatcher
        self.timer = timer or CronTimer()
        self.schedules: Dict[str, Schedule] = {}
        self.timers: Dict[str, str] = {}  # schedule id -> timer handle
        self._lock = threading.Lock()
        self._last_id = 0

    def _next_id(self) -> str:
        with self._lock:
            self._last_id = next_schedule_id(self._last_id)
            return str(self._last_id)

    @staticmethod
    def _coerce_int(name: str, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            pass
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"'{name}' must be an integer, got {value!r}")

    def _disarm(self, schedule_id: str) -> None:
        handle = self.timers.pop(schedule_id, None)
        if handle is not None:
            self.timer.cancel(handle)

    def _arm(self, schedule: Schedule) -> None:
        # never more than one timer per schedule
        self._disarm(schedule.id)
        if schedule.enabled:
            self.timers[schedule.id] = self.timer.register(
                schedule.cron_expr,
                lambda: self.fire(schedule.id)
            )

    def _get(self, schedule_id: str) -> Schedule:
        schedule = self.schedules.get(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    def list_all(self) -> List[Schedule]:
        with self._lock:
            return [schedule.model_copy() for schedule in self.schedules.values()]

    def get(self, schedule_id: str) -> Schedule:
        with self._lock:
            return self._get(schedule_id).model_copy()

    def is_armed(self, schedule_id: str) -> bool:
        return schedule_id in self.timers

    async def create(self, label: Optional[str], hour: Any, minute: Any,
                     command: Optional[str]) -> Schedule:
        """
        Add an enabled schedule and start its timer.

        hour and minute are only converted to integers. Values outside the
        clock range are passed to the recurrence as given; if croniter
        cannot parse the result the schedule is rejected unchanged.
        """
        if label is None or hour is None or minute is None or not command:
            raise ValidationError("Missing fields")
        hour = self._coerce_int("hour", hour)
        minute = self._coerce_int("minute", minute)
        cron_expr = build_cron_expression(hour, minute)
        self.timer.validate(cron_expr)

        schedule = Schedule(
            id=self._next_id(),
            label=label,
            hour=hour,
            minute=minute,
            command=command,
            cron_expr=cron_expr,
            enabled=True
        )
        with self._lock:
            self.schedules[schedule.id] = schedule
            self._arm(schedule)
        logger.info(f"Created schedule {schedule.id} '{label}' at {cron_expr} -> {command}")

        await self.dispatcher.announce_schedule(schedule, self.registry.device_ids())
        return schedule.model_copy()

    async def toggle(self, schedule_id: str, enabled: Optional[bool] = None) -> Schedule:
        with self._lock:
            schedule = self._get(schedule_id)
            schedule.enabled = (not schedule.enabled) if enabled is None else bool(enabled)
            self._arm(schedule)
        logger.info(f"Schedule {schedule_id} {'enabled' if schedule.enabled else 'disabled'}")
        return schedule.model_copy()

    async def delete(self, schedule_id: str) -> None:
        with self._lock:
            self._get(schedule_id)
            self._disarm(schedule_id)
            del self.schedules[schedule_id]
        logger.info(f"Deleted schedule {schedule_id}")

    async def fire(self, schedule_id: str) -> Dict[str, bool]:
        """
        Dispatch the schedule's command to every known device.

        Dispatches run concurrently so a slow publish for one device does not
        hold up the others. A failure is logged and recorded as False for
        that device only.
        """
        with self._lock:
            schedule = self.schedules.get(schedule_id)
            if schedule is None or not schedule.enabled:
                logger.warning(f"Ignoring firing of inactive schedule {schedule_id}")
                return {}
            label, command = schedule.label, schedule.command

        device_ids = self.registry.device_ids()
        outcomes = await asyncio.gather(
            *(self.dispatcher.dispatch(device_id, command, source=label) for device_id in device_ids),
            return_exceptions=True
        )

        results: Dict[str, bool] = {}
        for device_id, outcome in zip(device_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"[CRON] {label}: dispatch to {device_id} failed: {outcome}")
                results[device_id] = False
            else:
                results[device_id] = True
        logger.info(f"[CRON] {label} -> {command} (sent via {self.dispatcher.via} "
                    f"to {sum(results.values())}/{len(results)} devices)")
        return results

    async def shutdown(self) -> None:
        with self._lock:
            for schedule_id in list(self.timers):
                self._disarm(schedule_id)
        self.timer.cancel_all()
