# Engine wiring: one registry, one dispatcher, one schedule manager per process
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from .device_registry import DeviceRegistry
from .dispatcher import CommandDispatcher, ConfirmedPublisher, create_dispatcher
from .scheduler import CronTimer, ScheduleManager
from ..utils.logging import get_logger

logger = get_logger(__name__)

@dataclass
class EngineState:
    """Everything the engine owns. Built once at start-up and handed to the
    API and the MQTT handlers; nothing here is persisted."""
    registry: DeviceRegistry
    dispatcher: CommandDispatcher
    schedules: ScheduleManager

    async def shutdown(self) -> None:
        await self.schedules.shutdown()


def build_engine(dispatch_config: Dict[str, Any],
                 publisher: Optional[ConfirmedPublisher] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 timer: Optional[CronTimer] = None) -> EngineState:
    registry = DeviceRegistry(clock=clock)
    dispatcher = create_dispatcher(dispatch_config, registry, publisher)
    schedules = ScheduleManager(registry, dispatcher, timer or CronTimer(clock=clock))
    logger.info(f"Engine ready, commands are delivered via {dispatcher.via}")
    return EngineState(registry=registry, dispatcher=dispatcher, schedules=schedules)
