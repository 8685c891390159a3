import pytest
from datetime import timedelta
from osmium_hub.core.device_registry import is_online
from osmium_hub.models.device import LOG_CAPACITY, NO_COMMAND
from osmium_hub.utils.exceptions import ValidationError


def test_new_device_defaults(registry):
    record = registry.get_or_create("esp32-01")

    assert record.status is False
    assert record.last_contact is None
    assert record.pending_command == NO_COMMAND
    assert list(record.log) == []

def test_get_or_create_is_idempotent(registry):
    first = registry.get_or_create("esp32-01")
    second = registry.get_or_create("esp32-01")

    assert first is second
    assert registry.device_ids() == ["esp32-01"]

@pytest.mark.parametrize("device_id", [None, "", "   "])
def test_missing_device_id_is_rejected_before_mutation(registry, device_id):
    with pytest.raises(ValidationError):
        registry.record_contact(device_id, True)
    with pytest.raises(ValidationError):
        registry.set_pending_command(device_id, "on")

    assert registry.device_ids() == []

def test_contact_with_status_logs_transition(registry, clock):
    registry.record_contact("esp32-01", True)
    record = registry.get("esp32-01")

    assert record.status is True
    assert record.last_contact == clock.now
    assert record.log[0].message == "Status update: LED ON"

    registry.record_contact("esp32-01", False, via="MQTT")
    assert record.status is False
    assert record.log[0].message == "Status update via MQTT: LED OFF"

def test_heartbeat_contact_does_not_log(registry, clock):
    registry.record_contact("esp32-01", True)
    clock.advance(seconds=3)
    registry.record_contact("esp32-01")
    record = registry.get("esp32-01")

    assert record.status is True
    assert record.last_contact == clock.now
    assert len(record.log) == 1

def test_pending_command_is_handed_out_once(registry):
    registry.set_pending_command("esp32-01", "on")

    assert registry.consume_pending_command("esp32-01") == "on"
    for _ in range(5):
        assert registry.consume_pending_command("esp32-01") == NO_COMMAND

    messages = [entry.message for entry in registry.get_log("esp32-01")]
    assert messages == ["Command sent: on", "Command queued: on"]

def test_pending_command_last_write_wins(registry):
    registry.set_pending_command("esp32-01", "on")
    registry.set_pending_command("esp32-01", "off", source="night")

    assert registry.get_log("esp32-01")[0].message == "Command queued: off (night)"
    assert registry.consume_pending_command("esp32-01") == "off"

def test_log_is_capped_newest_first(registry):
    for i in range(LOG_CAPACITY + 1):
        registry.append_log("esp32-01", f"event {i}")

    log = registry.get_log("esp32-01")
    assert len(log) == LOG_CAPACITY
    assert log[0].message == f"event {LOG_CAPACITY}"
    assert log[-1].message == "event 1"
    assert "event 0" not in [entry.message for entry in log]

def test_log_of_unknown_device_is_empty(registry):
    assert registry.get_log("ghost") == []
    assert registry.get("ghost") is None

def test_online_boundary(registry, clock):
    record = registry.get_or_create("esp32-01")
    assert is_online(record, clock.now) is False

    registry.record_contact("esp32-01")
    assert is_online(record, clock.now + timedelta(milliseconds=9999)) is True
    assert is_online(record, clock.now + timedelta(milliseconds=10000)) is False

def test_liveness_scenario(registry, clock):
    registry.get_or_create("A")
    assert registry.snapshot()[0].online is False

    registry.record_contact("A", True)
    view = registry.snapshot()[0]
    assert view.online is True
    assert any("LED ON" in entry.message for entry in view.logs)

    clock.advance(seconds=11)
    assert registry.snapshot()[0].online is False
