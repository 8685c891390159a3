# Delivery strategies for commands: queue-for-pull or publish-for-push
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol
import asyncio
from .device_registry import DeviceRegistry
from ..models.schedule import Schedule
from ..utils.exceptions import ConfigurationError, TransportError, ValidationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

AT_LEAST_ONCE = 1

class ConfirmedPublisher(Protocol):
    async def publish_confirmed(self, topic: str, payload: str, qos: int, timeout: float) -> None:
        ...

    async def publish(self, message: Dict[str, Any]) -> None:
        ...


class CommandDispatcher(ABC):
    """
    Hands a command to one device.

    Both strategies take the same arguments and raise the same errors:
    ValidationError for a missing device id or command, TransportError when
    the command could not be delivered to the transport. Every successful
    dispatch appends exactly one line to the device's log.
    """
    via: str = ""

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry

    @staticmethod
    def validate(device_id: Optional[str], command: Optional[str]) -> None:
        if not device_id or not str(device_id).strip():
            raise ValidationError("Missing device id")
        if not command or not str(command).strip():
            raise ValidationError("Missing command")

    @abstractmethod
    async def dispatch(self, device_id: str, command: str, source: Optional[str] = None) -> None:
        """Deliver `command` to `device_id`. `source` names the schedule
        that issued it, if any."""
        pass

    async def announce_schedule(self, schedule: Schedule, device_ids: List[str]) -> None:
        """Tell devices about a new schedule. Only meaningful for push."""
        pass


class PullDispatcher(CommandDispatcher):
    """Queues the command on the device record; the device's next poll
    picks it up through DeviceRegistry.consume_pending_command."""
    via = "poll"

    async def dispatch(self, device_id: str, command: str, source: Optional[str] = None) -> None:
        self.validate(device_id, command)
        self.registry.set_pending_command(device_id, command, source=source)
        logger.debug(f"Queued {command} for {device_id}")


class PushDispatcher(CommandDispatcher):
    """Publishes the command to the device's MQTT topic and logs it only
    once the broker has acknowledged the publish."""
    via = "MQTT"

    def __init__(self, registry: DeviceRegistry, publisher: ConfirmedPublisher,
                 topic_prefix: str = "osmium", publish_timeout: float = 5.0):
        super().__init__(registry)
        self.publisher = publisher
        self.topic_prefix = topic_prefix
        self.publish_timeout = publish_timeout

    def command_topic(self, device_id: str) -> str:
        return f"{self.topic_prefix}/{device_id}/command"

    def schedule_topic(self, device_id: str) -> str:
        return f"{self.topic_prefix}/{device_id}/schedule"

    async def _publish(self, topic: str, payload: str) -> None:
        try:
            await asyncio.wait_for(
                self.publisher.publish_confirmed(topic, payload, AT_LEAST_ONCE, self.publish_timeout),
                timeout=self.publish_timeout
            )
        except asyncio.TimeoutError:
            raise TransportError(f"Publish to {topic} timed out after {self.publish_timeout}s")
        except Exception as e:
            raise TransportError(f"Publish to {topic} failed: {e}") from e

    async def dispatch(self, device_id: str, command: str, source: Optional[str] = None) -> None:
        self.validate(device_id, command)
        topic = self.command_topic(device_id)
        try:
            await self._publish(topic, command)
        except TransportError as e:
            logger.error(str(e))
            raise

        if source:
            self.registry.append_log(device_id, f"Scheduled command via {self.via}: {command} ({source})")
        else:
            self.registry.append_log(device_id, f"Command sent via {self.via}: {command}")
        logger.info(f"Published {command} to {topic}")

    async def announce_schedule(self, schedule: Schedule, device_ids: List[str]) -> None:
        """Queue `label,hour,minute,command,1` on each device's schedule
        topic. Best effort: nothing waits for the broker."""
        message = f"{schedule.label},{schedule.hour},{schedule.minute},{schedule.command},1"
        for device_id in device_ids:
            try:
                await self.publisher.publish({
                    "topic": self.schedule_topic(device_id),
                    "payload": message,
                    "qos": AT_LEAST_ONCE
                })
                logger.info(f"Sent schedule to {device_id}: {message}")
            except Exception as e:
                logger.warning(f"Could not send schedule to {device_id}: {e}")


def create_dispatcher(config: Dict[str, Any], registry: DeviceRegistry,
                      publisher: Optional[ConfirmedPublisher] = None) -> CommandDispatcher:
    """Pick the delivery strategy for the whole deployment from `dispatch.mode`"""
    mode = str(config.get('mode', 'push')).lower()
    if mode == 'pull':
        return PullDispatcher(registry)
    if mode == 'push':
        if publisher is None:
            raise ConfigurationError("Push dispatch requires an MQTT connection")
        return PushDispatcher(
            registry,
            publisher,
            topic_prefix=config.get('topic_prefix', 'osmium'),
            publish_timeout=float(config.get('publish_timeout', 5.0))
        )
    raise ConfigurationError(f"Unknown dispatch mode: {mode}")
