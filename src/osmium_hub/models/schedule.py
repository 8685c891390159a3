from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional

class Schedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str
    hour: int
    minute: int
    command: str
    cron_expr: str = Field(..., alias="cronExpr")
    enabled: bool = True


class ScheduleCreate(BaseModel):
    """Body of a new schedule. Fields are checked by the ScheduleManager so
    that a missing field is reported the same way from every caller."""
    label: Optional[str] = None
    hour: Optional[Any] = None
    minute: Optional[Any] = None
    command: Optional[str] = None


class ScheduleToggle(BaseModel):
    enabled: Optional[bool] = None
