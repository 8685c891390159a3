import asyncio
from typing import Dict, Any, Awaitable, Callable, Optional, Union, List
from pydantic import BaseModel, Field
import aiomqtt as mqtt
from aiomqtt import Will
import json
import traceback
from ..adapters.base import CommunicationAdapter
from ..utils.logging import get_logger
from ..utils.exceptions import CommunicationError
from contextlib import asynccontextmanager
import random
import ssl

logger = get_logger(__name__)

'''
usage Examples

await mqtt_adapter.connect()
await mqtt_adapter.subscribe("osmium/+/status", message_handler)

# fire and forget, retried in the background
await mqtt_adapter.publish({
    "topic": "osmium/esp32-01/command",
    "payload": "on",
    "qos": 1
})

# waits for the broker acknowledgement
await mqtt_adapter.publish_confirmed("osmium/esp32-01/command", "on", qos=1, timeout=5)

await mqtt_adapter.disconnect()

'''

MessageHandler = Callable[[str, Any], Awaitable[None]]


class MQTTConfig(BaseModel):
    """MQTT configuration model"""
    host: str = Field(..., description="MQTT broker hostname")
    port: int = Field(1883, description="MQTT broker port")
    username: Optional[str] = Field(None, description="MQTT username")
    password: Optional[str] = Field(None, description="MQTT password")
    keepalive: int = Field(60, description="Connection keepalive in seconds")
    client_id: str = Field("osmium-server", description="MQTT client ID prefix")
    ssl: bool = Field(False, description="Enable SSL/TLS")
    reconnect_interval: float = Field(5.0, description="Reconnection interval in seconds")
    max_reconnect_attempts: int = Field(5, description="Maximum reconnection attempts")
    message_queue_size: int = Field(1000, description="Maximum size of message queue")
    ca_cert: Optional[str] = Field(None, description="Custom CA certificate")
    client_cert: Optional[str] = Field(None, description="Client certificate")
    client_key: Optional[str] = Field(None, description="Required if client_cert is set")
    verify_hostname: bool = Field(True, description="Verify broker's hostname")
    tls_version: Optional[str] = Field(None, description="TLS1_2, TLS1_3, etc.")
    subscribe_qos: int = Field(1, description="qos for subscribe topics")
    publish_qos: int = Field(1, description="qos for publish message")
    clean_session: bool = Field(True, description="start without a persistent session")

class MQTTMessage(BaseModel):
    """MQTT message model"""
    topic: str
    payload: Union[dict, str, bytes]
    qos: int = Field(0, ge=0, le=2)
    retain: bool = False


def encode_payload(payload: Any) -> bytes:
    if isinstance(payload, dict):
        payload = json.dumps(payload)
    elif not isinstance(payload, (str, bytes)):
        payload = str(payload)
    if isinstance(payload, str):
        payload = payload.encode()
    return payload


class MQTTAdapter(CommunicationAdapter):
    def __init__(self, config: Dict[str, Any]):
        """Initialize MQTT adapter with configuration"""
        try:
            self.config = MQTTConfig(**config)
            self.config.keepalive = max(30, self.config.keepalive)
        except Exception as e:
            raise CommunicationError(f"Invalid MQTT configuration: {str(e)}")

        self.client: Optional[mqtt.Client] = None
        # topic filter (may contain + and # wildcards) -> handlers
        self.message_handlers: Dict[str, List[MessageHandler]] = {}
        self.connected = asyncio.Event()
        self._stop_flag = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._message_queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.message_queue_size)
        self._publish_queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.message_queue_size)
        self._subscription_lock = asyncio.Lock()
        self._publish_lock = asyncio.Lock()

    @property
    def status_topic(self) -> str:
        return f"{self.config.client_id}/status"

    async def _publish_worker(self):
        """Worker task to handle publishing messages from queue"""
        while not self._stop_flag.is_set():
            try:
                message = await self._publish_queue.get()
                attempt = 0
                while attempt < self.config.max_reconnect_attempts and not self._stop_flag.is_set():
                    try:
                        async with self._publish_lock:
                            if self.client and self.connected.is_set():
                                await self.client.publish(
                                    topic=message.topic,
                                    payload=message.payload,
                                    qos=message.qos,
                                    retain=message.retain
                                )
                                logger.debug(f"Published to {message.topic}")
                                break
                            else:
                                raise CommunicationError("Not connected to MQTT broker")
                    except Exception as e:
                        attempt += 1
                        if attempt >= self.config.max_reconnect_attempts:
                            logger.error(f"Failed to publish message after {attempt} attempts: {str(e)}")
                            break
                        wait_time = min(self.config.reconnect_interval * (2 ** (attempt - 1)), 60)
                        logger.warning(f"Publish attempt {attempt} failed, retrying in {wait_time} seconds...")
                        await asyncio.sleep(wait_time)
                self._publish_queue.task_done()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in publish worker: {str(e)}")
                await asyncio.sleep(1)

    async def _subscribe_topics(self) -> None:
        """Subscribe to all stored topic filters after (re)connecting"""
        async with self._subscription_lock:
            for topic in self.message_handlers:
                if self.client:
                    try:
                        await self.client.subscribe(topic, qos=self.config.subscribe_qos)
                        logger.info(f"Resubscribed to topic: {topic}")
                    except Exception as e:
                        logger.error(f"Failed to resubscribe to topic {topic}: {str(e)}")

    def _create_tls_context(self) -> Optional[ssl.SSLContext]:
        """Create SSL context for MQTT connection based on config"""
        if not self.config.ssl:
            return None

        context = ssl.create_default_context()

        if self.config.ca_cert:
            context.load_verify_locations(cafile=self.config.ca_cert)

        if self.config.client_cert:
            if not self.config.client_key:
                raise ValueError("Client key must be provided when using client certificate")
            context.load_cert_chain(
                certfile=self.config.client_cert,
                keyfile=self.config.client_key
            )

        if self.config.tls_version:
            context.minimum_version = getattr(ssl.TLSVersion, self.config.tls_version.upper(),
                                        ssl.TLSVersion.TLSv1_2)

        context.check_hostname = self.config.verify_hostname

        return context

    @asynccontextmanager
    async def _get_client(self):
        """Context manager for MQTT client with automatic reconnection"""
        attempt = 0
        connected_once = False
        while attempt < self.config.max_reconnect_attempts and not self._stop_flag.is_set():
            try:
                # Last Will and Testament marks the hub offline if it drops
                will = Will(
                    topic=self.status_topic,
                    payload="Offline",
                    qos=self.config.subscribe_qos,
                    retain=True)

                async with mqtt.Client(
                    hostname=self.config.host,
                    port=self.config.port,
                    username=self.config.username,
                    password=self.config.password,
                    keepalive=self.config.keepalive,
                    identifier=f"{self.config.client_id}-{random.getrandbits(24):06x}",
                    clean_session=self.config.clean_session,
                    will=will,
                    tls_context=self._create_tls_context()
                ) as client:
                    self.client = client
                    self.connected.set()

                    await client.publish(self.status_topic, payload="Online", qos=1, retain=True)

                    logger.info(f"Connected to MQTT broker {self.config.host}:{self.config.port}")
                    try:
                        await self._subscribe_topics()
                        connected_once = True
                        yield client
                    finally:
                        self.connected.clear()
                        self.client = None
                        logger.info("Disconnected from MQTT broker")
                break

            except Exception:
                if connected_once:
                    # the session itself failed, let the caller reconnect
                    raise
                attempt += 1
                logger.error(f"MQTT connection attempt {attempt} failed: {traceback.format_exc()}")
                if attempt >= self.config.max_reconnect_attempts:
                    raise CommunicationError(f"Failed to connect to MQTT broker after {attempt} attempts")

                # Exponential backoff for reconnection attempts
                wait_time = min(self.config.reconnect_interval * (2 ** (attempt - 1)), 60)
                logger.info(f"MQTT Retry will happen after {wait_time} seconds")
                await asyncio.sleep(wait_time)

        if not connected_once:
            raise CommunicationError("MQTT adapter stopped before connecting")

    async def _process_messages(self) -> None:
        """Receive MQTT messages and queue them for the handlers"""
        while not self._stop_flag.is_set():
            try:
                async with self._get_client() as client:
                    async for message in client.messages:
                        if self._stop_flag.is_set():
                            break

                        topic = str(message.topic)
                        try:
                            payload = message.payload.decode()
                            try:
                                payload = json.loads(payload)
                            except json.JSONDecodeError:
                                pass  # Keep payload as string if not JSON
                            logger.debug(f"received {payload} from {topic}")

                            try:
                                self._message_queue.put_nowait((topic, payload))
                            except asyncio.QueueFull:
                                logger.warning("Message queue full, dropping message")

                        except Exception as e:
                            logger.error(f"Error processing message on topic {topic}: {str(e)}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                if not self._stop_flag.is_set():
                    logger.error(f"Error in message processing loop: {str(e)}")
                    await asyncio.sleep(self.config.reconnect_interval)

    def handlers_for(self, topic: str) -> List[MessageHandler]:
        """Handlers of every subscribed filter that matches a concrete topic"""
        matched: List[MessageHandler] = []
        for topic_filter, handlers in self.message_handlers.items():
            if mqtt.Topic(topic).matches(topic_filter):
                matched.extend(handlers)
        return matched

    async def dispatch_message(self, topic: str, payload: Any) -> None:
        for handler in self.handlers_for(topic):
            try:
                await handler(topic, payload)
            except Exception as e:
                logger.error(f"Error in message handler for topic {topic}: {str(e)}")

    async def _process_message_queue(self) -> None:
        """Process messages from the queue"""
        while not self._stop_flag.is_set():
            try:
                topic, payload = await self._message_queue.get()
                await self.dispatch_message(topic, payload)
                self._message_queue.task_done()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error processing queued message: {traceback.format_exc()}")
                await asyncio.sleep(1)

    async def connect(self) -> None:
        """Connect to MQTT broker and start message processing"""
        try:
            self._stop_flag.clear()
            self._tasks = [
                asyncio.create_task(self._process_messages()),
                asyncio.create_task(self._publish_worker()),
                asyncio.create_task(self._process_message_queue()),
            ]
        except Exception as e:
            raise CommunicationError(f"Failed to start MQTT adapter: {str(e)}")

    async def disconnect(self) -> None:
        """Disconnect from MQTT broker and cleanup"""
        try:
            self._stop_flag.set()

            for task in self._tasks:
                if task and not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            self._tasks = []
            self.connected.clear()

            logger.info("MQTT adapter stopped")
        except Exception as e:
            raise CommunicationError(f"Error disconnecting from MQTT: {str(e)}")

    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Subscribe a handler to a topic filter"""
        async with self._subscription_lock:
            try:
                if topic not in self.message_handlers:
                    self.message_handlers[topic] = []
                    if self.client and self.connected.is_set():
                        await self.client.subscribe(topic, qos=self.config.subscribe_qos)

                self.message_handlers[topic].append(handler)
                logger.info(f"Subscribed to topic: {topic}")
            except Exception as e:
                raise CommunicationError(f"Failed to subscribe to topic {topic}: {str(e)}")

    async def publish(self, message: Union[MQTTMessage, Dict[str, Any]]) -> None:
        """Queue message for publishing"""
        try:
            if isinstance(message, dict):
                message = MQTTMessage(**message)

            queued_message = MQTTMessage(
                topic=message.topic,
                payload=encode_payload(message.payload),
                qos=message.qos,
                retain=message.retain
            )
            self._publish_queue.put_nowait(queued_message)
            logger.debug(f"Queued message for topic: {message.topic}")
        except asyncio.QueueFull:
            logger.error("Publish queue full, dropping message")
            raise CommunicationError("Publish queue full")
        except Exception as e:
            raise CommunicationError(f"Failed to queue MQTT message: {str(e)}")

    async def publish_confirmed(self, topic: str, payload: Any, qos: int = 1,
                                timeout: float = 5.0) -> None:
        """Publish now and return once the broker has acknowledged it.

        Raises CommunicationError when not connected, on a broker error or
        when no acknowledgement arrives within `timeout` seconds.
        """
        client = self.client
        if not client or not self.connected.is_set():
            raise CommunicationError("Not connected to MQTT broker")
        try:
            await asyncio.wait_for(
                client.publish(topic, payload=encode_payload(payload), qos=qos),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise CommunicationError(f"No acknowledgement for {topic} within {timeout}s")
        except mqtt.MqttError as e:
            raise CommunicationError(f"MQTT publish failed: {str(e)}")
