from typing import Any
from ..core.device_registry import DeviceRegistry
from ..utils.exceptions import ValidationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

class MQTTMessageHandlers:
    def __init__(self, registry: DeviceRegistry, topic_prefix: str = "osmium"):
        self.registry = registry
        self.topic_prefix = topic_prefix

    @property
    def status_topic(self) -> str:
        return f"{self.topic_prefix}/+/status"

    async def device_status_handler(self, topic: str, payload: Any) -> None:
        """Handle LED status reported by a push-subscribed device
        Expected topic format: {prefix}/{device_id}/status
        Expected payload: "on", anything else means off
        """
        parts = topic.split('/')
        if len(parts) != 3 or parts[0] != self.topic_prefix or parts[2] != 'status':
            logger.error(f"Invalid topic format: {topic}")
            return

        device_id = parts[1]
        status = payload is True or str(payload).strip().lower() == 'on'
        try:
            self.registry.record_contact(device_id, status, via="MQTT")
        except ValidationError as e:
            logger.error(f"Rejected status on {topic}: {e}")
            return
        logger.info(f"[MQTT] Device {device_id} status: {'ON' if status else 'OFF'}")
