from fastapi import APIRouter, HTTPException
from typing import Dict, Optional
from ...models.device import CommandPickup, StatusReport
from ...utils.exceptions import ValidationError
from ...utils.logging import get_logger
from ..dependencies import RegistryDependency

logger = get_logger(__name__)

device_router = APIRouter(tags=["device"])


'''
Endpoints called by the ESP32 firmware

# every 3 seconds
GET  /device/command?id=esp32-01     -> {"command": "on"} once, then {"command": "none"}

# after the LED changes
POST /device/status {"device": "esp32-01", "status": true}
'''

@device_router.get("/device/command", response_model=CommandPickup)
async def poll_command(registry: RegistryDependency, id: Optional[str] = None) -> CommandPickup:
    try:
        registry.record_contact(id)
        command = registry.consume_pending_command(id)
        return CommandPickup(command=command)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error serving command poll for {id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to poll command: {str(e)}")


@device_router.post("/device/status")
async def report_status(report: StatusReport, registry: RegistryDependency) -> Dict[str, bool]:
    try:
        registry.record_contact(report.device, report.status)
        return {"ok": True}
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error recording status for {report.device}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to record status: {str(e)}")
