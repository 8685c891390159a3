# Per-device state: status, last contact, pending command and activity log
from typing import Callable, Dict, List, Optional
from datetime import datetime, timedelta
import threading
from ..models.device import DeviceRecord, DeviceView, LogEntry, NO_COMMAND
from ..utils.exceptions import ValidationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Devices poll every 3s; a device silent for this long is offline
ONLINE_TIMEOUT = timedelta(milliseconds=10000)

def is_online(record: DeviceRecord, now: datetime) -> bool:
    """Liveness at `now`. Computed on every read, never stored."""
    if record.last_contact is None:
        return False
    return now - record.last_contact < ONLINE_TIMEOUT

def _led(status: bool) -> str:
    return "LED ON" if status else "LED OFF"


class DeviceRegistry:
    """
    Source of truth for every device the hub has heard of.

    Records are created on first reference and live until the process exits.
    All public methods are serialized behind one lock.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self.devices: Dict[str, DeviceRecord] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _require_id(device_id: Optional[str]) -> str:
        if device_id is None or not str(device_id).strip():
            raise ValidationError("Missing device id")
        return str(device_id)

    def _get_or_create(self, device_id: str) -> DeviceRecord:
        record = self.devices.get(device_id)
        if record is None:
            record = DeviceRecord(id=device_id)
            self.devices[device_id] = record
            logger.info(f"Registered new device: {device_id}")
        return record

    def _append(self, record: DeviceRecord, message: str) -> None:
        record.log.appendleft(LogEntry(timestamp=self.clock(), message=message))

    def get_or_create(self, device_id: str) -> DeviceRecord:
        device_id = self._require_id(device_id)
        with self._lock:
            return self._get_or_create(device_id)

    def get(self, device_id: str) -> Optional[DeviceRecord]:
        with self._lock:
            return self.devices.get(device_id)

    def record_contact(self, device_id: str, observed_status: Optional[bool] = None,
                       via: Optional[str] = None) -> DeviceRecord:
        """Mark the device as seen now. A status, when present, overwrites the
        stored one and is logged; without it the contact is a heartbeat."""
        device_id = self._require_id(device_id)
        with self._lock:
            record = self._get_or_create(device_id)
            record.last_contact = self.clock()
            if observed_status is not None:
                record.status = bool(observed_status)
                channel = f" via {via}" if via else ""
                self._append(record, f"Status update{channel}: {_led(record.status)}")
            return record

    def set_pending_command(self, device_id: str, command: str,
                            source: Optional[str] = None) -> DeviceRecord:
        device_id = self._require_id(device_id)
        if not command:
            raise ValidationError("Missing command")
        with self._lock:
            record = self._get_or_create(device_id)
            record.pending_command = command
            suffix = f" ({source})" if source else ""
            self._append(record, f"Command queued: {command}{suffix}")
            return record

    def consume_pending_command(self, device_id: str) -> str:
        """Hand out the pending command once. No acknowledgement is tracked, so
        a command is cleared even if the device never acts on it."""
        device_id = self._require_id(device_id)
        with self._lock:
            record = self._get_or_create(device_id)
            command = record.pending_command
            if command != NO_COMMAND:
                record.pending_command = NO_COMMAND
                self._append(record, f"Command sent: {command}")
            return command

    def append_log(self, device_id: str, message: str) -> None:
        device_id = self._require_id(device_id)
        with self._lock:
            self._append(self._get_or_create(device_id), message)

    def get_log(self, device_id: str) -> List[LogEntry]:
        with self._lock:
            record = self.devices.get(device_id)
            return list(record.log) if record else []

    def device_ids(self) -> List[str]:
        with self._lock:
            return list(self.devices)

    def list_all(self) -> List[DeviceRecord]:
        with self._lock:
            return list(self.devices.values())

    def snapshot(self) -> List[DeviceView]:
        """Every device with its liveness evaluated against the current time"""
        with self._lock:
            now = self.clock()
            return [
                DeviceView.from_record(record, is_online(record, now))
                for record in self.devices.values()
            ]
