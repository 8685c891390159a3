# src/osmium_hub/api/dependencies.py
from fastapi import Request
from typing import Annotated
from fastapi import Depends
from ..core.device_registry import DeviceRegistry
from ..core.dispatcher import CommandDispatcher
from ..core.scheduler import ScheduleManager

async def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.engine.registry

async def get_dispatcher(request: Request) -> CommandDispatcher:
    return request.app.state.engine.dispatcher

async def get_schedule_manager(request: Request) -> ScheduleManager:
    return request.app.state.engine.schedules

# Type definitions for dependencies
RegistryDependency = Annotated[DeviceRegistry, Depends(get_registry)]
DispatcherDependency = Annotated[CommandDispatcher, Depends(get_dispatcher)]
ScheduleManagerDependency = Annotated[ScheduleManager, Depends(get_schedule_manager)]
