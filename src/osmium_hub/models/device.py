from pydantic import BaseModel, ConfigDict, Field
from dataclasses import dataclass, field
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

NO_COMMAND = "none"
LOG_CAPACITY = 50

class LogEntry(BaseModel):
    """One line of a device's activity log. Immutable once appended."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime = Field(..., alias="time")
    message: str = Field(..., alias="msg")


@dataclass
class DeviceRecord:
    id: str
    status: bool = False
    last_contact: Optional[datetime] = None
    pending_command: str = NO_COMMAND
    # newest first, oldest evicted past capacity
    log: Deque[LogEntry] = field(default_factory=lambda: deque(maxlen=LOG_CAPACITY))


class DeviceView(BaseModel):
    """Snapshot of a device as shown on the dashboard"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: bool
    last_seen: Optional[datetime] = Field(None, alias="lastSeen")
    command: str
    logs: List[LogEntry]
    online: bool

    @classmethod
    def from_record(cls, record: DeviceRecord, online: bool) -> 'DeviceView':
        return cls(
            id=record.id,
            status=record.status,
            last_seen=record.last_contact,
            command=record.pending_command,
            logs=list(record.log),
            online=online
        )


class CommandRequest(BaseModel):
    """Ad-hoc command from the operator"""
    model_config = ConfigDict(populate_by_name=True)

    device_id: Optional[str] = Field(None, alias="deviceId")
    command: Optional[str] = None


class StatusReport(BaseModel):
    """Status posted by a polling device"""
    device: Optional[str] = None
    status: Optional[bool] = None


class CommandPickup(BaseModel):
    command: str


class CommandResult(BaseModel):
    ok: bool = True
    sent: str
    via: str
