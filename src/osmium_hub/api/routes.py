# src/osmium_hub/api/routes.py
from fastapi import APIRouter, HTTPException
from typing import List
from ..models.device import CommandRequest, CommandResult, DeviceView, LogEntry
from ..utils.exceptions import TransportError, ValidationError
from ..utils.logging import get_logger
from .dependencies import DispatcherDependency, RegistryDependency

logger = get_logger(__name__)

operator_router = APIRouter(tags=["dashboard"])

@operator_router.get("/devices", response_model=List[DeviceView])
async def list_devices(registry: RegistryDependency) -> List[DeviceView]:
    return registry.snapshot()


@operator_router.post("/command", response_model=CommandResult)
async def send_command(request: CommandRequest, dispatcher: DispatcherDependency) -> CommandResult:
    try:
        await dispatcher.dispatch(request.device_id, request.command)
        return CommandResult(sent=request.command, via=dispatcher.via)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransportError:
        raise HTTPException(status_code=500, detail=f"{dispatcher.via} publish failed")
    except Exception as e:
        logger.error(f"Error sending command to {request.device_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to send command: {str(e)}")


@operator_router.get("/logs/{device_id}", response_model=List[LogEntry])
async def get_logs(device_id: str, registry: RegistryDependency) -> List[LogEntry]:
    return registry.get_log(device_id)
