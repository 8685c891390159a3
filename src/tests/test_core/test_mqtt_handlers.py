import pytest
from unittest.mock import AsyncMock
from osmium_hub.adapters.base import CommunicationAdapter
from osmium_hub.adapters.mqtt import MQTTAdapter, encode_payload
from osmium_hub.handlers.mqtt_handlers import MQTTMessageHandlers
from osmium_hub.utils.exceptions import CommunicationError


@pytest.fixture
def handlers(registry):
    return MQTTMessageHandlers(registry, topic_prefix="osmium")

@pytest.mark.asyncio
async def test_status_message_records_contact(handlers, registry, clock):
    await handlers.device_status_handler("osmium/esp32-01/status", "on")

    record = registry.get("esp32-01")
    assert record.status is True
    assert record.last_contact == clock.now
    assert record.log[0].message == "Status update via MQTT: LED ON"

    await handlers.device_status_handler("osmium/esp32-01/status", "off")
    assert record.status is False

@pytest.mark.asyncio
async def test_status_message_on_foreign_topic_is_ignored(handlers, registry):
    await handlers.device_status_handler("other/esp32-01/status", "on")
    await handlers.device_status_handler("osmium/esp32-01/status/extra", "on")

    assert registry.device_ids() == []

def test_invalid_mqtt_config_is_rejected():
    with pytest.raises(CommunicationError):
        MQTTAdapter({"port": 1883})

def test_payload_encoding():
    assert encode_payload("on") == b"on"
    assert encode_payload(b"raw") == b"raw"
    assert encode_payload({"command": "on"}) == b'{"command": "on"}'
    assert encode_payload(1) == b"1"

@pytest.mark.asyncio
async def test_wildcard_subscription_routes_messages(handlers, registry):
    adapter = MQTTAdapter({"host": "localhost"})
    await adapter.subscribe(handlers.status_topic, handlers.device_status_handler)
    unrelated = AsyncMock()
    await adapter.subscribe("osmium/+/schedule", unrelated)

    await adapter.dispatch_message("osmium/esp32-07/status", "on")

    assert registry.get("esp32-07").status is True
    unrelated.assert_not_called()

@pytest.mark.asyncio
async def test_confirmed_publish_requires_connection():
    adapter = MQTTAdapter({"host": "localhost"})
    with pytest.raises(CommunicationError):
        await adapter.publish_confirmed("osmium/esp32-01/command", "on", qos=1, timeout=1)

@pytest.mark.asyncio
async def test_confirmed_publish_waits_for_client():
    adapter = MQTTAdapter({"host": "localhost"})
    adapter.client = AsyncMock()
    adapter.connected.set()

    await adapter.publish_confirmed("osmium/esp32-01/command", "on", qos=1, timeout=1)

    adapter.client.publish.assert_awaited_once_with("osmium/esp32-01/command", payload=b"on", qos=1)

def test_adapter_interface_is_connect_subscribe_publish():
    assert CommunicationAdapter.__abstractmethods__ == {"connect", "disconnect", "subscribe", "publish"}
    assert isinstance(MQTTAdapter({"host": "localhost"}), CommunicationAdapter)
