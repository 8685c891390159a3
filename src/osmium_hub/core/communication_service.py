from typing import Dict, Any, Optional
import asyncio
from ..adapters.mqtt import MQTTAdapter
from ..core.device_registry import DeviceRegistry
from ..utils.logging import get_logger
from ..utils.exceptions import CommunicationError
from ..handlers.mqtt_handlers import MQTTMessageHandlers

logger = get_logger(__name__)

class CommunicationService:
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.mqtt_config: Dict[str, Any] = config['communication'].get('mqtt', {})
        self.topic_prefix = config.get('dispatch', {}).get('topic_prefix', 'osmium')
        self.mqtt: Optional[MQTTAdapter] = None
        self.handlers: Optional[MQTTMessageHandlers] = None
        self._mqtt_connection_timeout = self.mqtt_config.get('connection_timeout', 90)  # seconds

    @property
    def mqtt_enabled(self) -> bool:
        return bool(self.mqtt_config.get('enabled', False))

    async def _wait_for_mqtt_connection(self) -> None:
        """Wait for MQTT connection to be established"""
        try:
            await asyncio.wait_for(
                self.mqtt.connected.wait(),
                timeout=self._mqtt_connection_timeout
            )
        except asyncio.TimeoutError:
            raise CommunicationError(
                f"MQTT connection timeout after {self._mqtt_connection_timeout} seconds"
            )

    async def initialize(self) -> None:
        logger.info("Initializing Communication Service")
        if not self.mqtt_enabled:
            logger.info("MQTT disabled, devices must poll for commands")
            return
        try:
            self.mqtt = MQTTAdapter(self.mqtt_config)
            await self.mqtt.connect()
            logger.info("Mqtt service started")
            await self._wait_for_mqtt_connection()
            logger.info("MQTT connection established")
        except Exception as e:
            logger.error(f"Failed to initialize MQTT service: {str(e)}")
            if self.mqtt:
                await self.mqtt.disconnect()
            raise CommunicationError(f"MQTT initialization failed: {str(e)}")

    async def attach(self, registry: DeviceRegistry) -> None:
        """Route device status messages into the registry"""
        if not self.mqtt:
            return
        self.handlers = MQTTMessageHandlers(registry, self.topic_prefix)
        try:
            await self.mqtt.subscribe(self.handlers.status_topic, self.handlers.device_status_handler)
        except CommunicationError as e:
            logger.error(f"Failed to subscribe to {self.handlers.status_topic}: {str(e)}")
            raise

    async def shutdown(self) -> None:
        logger.info("Shutting down communication services")
        if self.mqtt:
            await self.mqtt.disconnect()
