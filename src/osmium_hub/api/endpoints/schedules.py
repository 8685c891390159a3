from fastapi import APIRouter, HTTPException
from typing import Dict, List, Optional
from ...models.schedule import Schedule, ScheduleCreate, ScheduleToggle
from ...utils.exceptions import NotFoundError, ValidationError
from ...utils.logging import get_logger
from ..dependencies import ScheduleManagerDependency

logger = get_logger(__name__)

schedule_router = APIRouter(tags=["schedules"])


@schedule_router.get("/schedules", response_model=List[Schedule])
async def list_schedules(manager: ScheduleManagerDependency) -> List[Schedule]:
    return manager.list_all()


@schedule_router.post("/schedules", response_model=Schedule)
async def add_schedule(body: ScheduleCreate, manager: ScheduleManagerDependency) -> Schedule:
    try:
        return await manager.create(body.label, body.hour, body.minute, body.command)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating schedule: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to create schedule: {str(e)}")


@schedule_router.patch("/schedules/{schedule_id}", response_model=Schedule)
async def toggle_schedule(schedule_id: str, manager: ScheduleManagerDependency,
                          body: Optional[ScheduleToggle] = None) -> Schedule:
    try:
        return await manager.toggle(schedule_id, body.enabled if body else None)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Not found")


@schedule_router.delete("/schedules/{schedule_id}")
async def delete_schedule(schedule_id: str, manager: ScheduleManagerDependency) -> Dict[str, bool]:
    try:
        await manager.delete(schedule_id)
        return {"ok": True}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Not found")
