import pytest
import asyncio
from unittest.mock import AsyncMock
from osmium_hub.core.dispatcher import PullDispatcher, PushDispatcher, create_dispatcher
from osmium_hub.models.device import NO_COMMAND
from osmium_hub.models.schedule import Schedule
from osmium_hub.utils.exceptions import (
    CommunicationError, ConfigurationError, TransportError, ValidationError
)


@pytest.fixture
def publisher():
    return AsyncMock()

@pytest.mark.asyncio
async def test_pull_dispatch_queues_command(registry):
    dispatcher = PullDispatcher(registry)
    await dispatcher.dispatch("esp32-01", "on")

    assert registry.get("esp32-01").pending_command == "on"
    assert registry.get_log("esp32-01")[0].message == "Command queued: on"
    assert registry.consume_pending_command("esp32-01") == "on"
    assert registry.consume_pending_command("esp32-01") == NO_COMMAND

@pytest.mark.asyncio
@pytest.mark.parametrize("device_id,command", [(None, "on"), ("esp32-01", None), ("esp32-01", "")])
async def test_missing_fields_are_rejected(registry, publisher, device_id, command):
    for dispatcher in (PullDispatcher(registry), PushDispatcher(registry, publisher)):
        with pytest.raises(ValidationError):
            await dispatcher.dispatch(device_id, command)

    publisher.publish_confirmed.assert_not_called()
    assert registry.device_ids() == []

@pytest.mark.asyncio
async def test_push_dispatch_logs_after_acknowledgement(registry, publisher):
    dispatcher = PushDispatcher(registry, publisher, topic_prefix="osmium", publish_timeout=2)
    await dispatcher.dispatch("esp32-01", "on")

    publisher.publish_confirmed.assert_awaited_once_with("osmium/esp32-01/command", "on", 1, 2)
    record = registry.get("esp32-01")
    assert record.pending_command == NO_COMMAND
    assert [entry.message for entry in record.log] == ["Command sent via MQTT: on"]

@pytest.mark.asyncio
async def test_push_dispatch_from_schedule_names_the_schedule(registry, publisher):
    dispatcher = PushDispatcher(registry, publisher)
    await dispatcher.dispatch("esp32-01", "off", source="night")

    assert registry.get_log("esp32-01")[0].message == "Scheduled command via MQTT: off (night)"

@pytest.mark.asyncio
async def test_push_failure_mutates_nothing(registry, publisher):
    registry.get_or_create("esp32-01")
    publisher.publish_confirmed.side_effect = CommunicationError("Not connected to MQTT broker")
    dispatcher = PushDispatcher(registry, publisher)

    with pytest.raises(TransportError):
        await dispatcher.dispatch("esp32-01", "on")

    record = registry.get("esp32-01")
    assert record.pending_command == NO_COMMAND
    assert list(record.log) == []

@pytest.mark.asyncio
async def test_push_publish_is_bounded_by_timeout(registry):
    class HangingPublisher:
        async def publish_confirmed(self, topic, payload, qos, timeout):
            await asyncio.sleep(10)

    dispatcher = PushDispatcher(registry, HangingPublisher(), publish_timeout=0.05)

    with pytest.raises(TransportError):
        await asyncio.wait_for(dispatcher.dispatch("esp32-01", "on"), timeout=1)
    assert registry.get_log("esp32-01") == []

@pytest.mark.asyncio
async def test_announce_schedule_is_best_effort(registry, publisher):
    publisher.publish.side_effect = [None, CommunicationError("Publish queue full")]
    dispatcher = PushDispatcher(registry, publisher)
    schedule = Schedule(id="1", label="morning", hour=7, minute=30, command="on", cron_expr="30 7 * * *")

    await dispatcher.announce_schedule(schedule, ["A", "B"])

    assert publisher.publish.await_count == 2
    first = publisher.publish.await_args_list[0].args[0]
    assert first == {"topic": "osmium/A/schedule", "payload": "morning,7,30,on,1", "qos": 1}

def test_create_dispatcher_selects_strategy(registry, publisher):
    assert isinstance(create_dispatcher({"mode": "pull"}, registry), PullDispatcher)

    push = create_dispatcher({"mode": "push", "topic_prefix": "lab", "publish_timeout": 1}, registry, publisher)
    assert isinstance(push, PushDispatcher)
    assert push.command_topic("x") == "lab/x/command"

    with pytest.raises(ConfigurationError):
        create_dispatcher({"mode": "push"}, registry)
    with pytest.raises(ConfigurationError):
        create_dispatcher({"mode": "carrier-pigeon"}, registry)
