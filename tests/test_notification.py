import io
import json
from datetime import datetime, timezone

import pytest

from probe_monitor.notification import parse_notification
from probe_monitor.pipeline import ProbePipeline
from probe_monitor.replay import iter_notifications, replay_file


def test_parse_full_message():
    notification = parse_notification(
        json.dumps(
            {
                "address": "aa:bb:cc:dd:ee:01",
                "name": "MEATER",
                "services": ["A75CC7FC-C956-488F-AC2A-2DBC08B63A04"],
                "payload": "d002000100010000",
                "timestamp": "2024-06-01T12:00:00+00:00",
                "battery": 90,
                "rssi": -60,
            }
        )
    )
    assert notification.identity.address == "AA:BB:CC:DD:EE:01"
    assert notification.identity.name == "MEATER"
    assert notification.identity.service_uuids == frozenset(
        {"a75cc7fc-c956-488f-ac2a-2dbc08b63a04"}
    )
    assert notification.payload == bytes.fromhex("d002000100010000")
    assert notification.timestamp == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert notification.battery_level == 90
    assert notification.signal_strength == -60


def test_parse_address_from_topic_and_epoch_timestamp():
    notification = parse_notification(
        {"payload": "fa00", "timestamp": 0}, address="aa:bb"
    )
    assert notification.identity.address == "AA:BB"
    assert notification.identity.name == ""
    assert notification.timestamp == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_naive_timestamp_is_utc():
    notification = parse_notification(
        {"address": "AA", "payload": "", "timestamp": "2024-06-01T12:00:00"}
    )
    assert notification.timestamp.tzinfo == timezone.utc


@pytest.mark.parametrize(
    "message",
    [
        "not json",
        "[1, 2]",
        '{"payload": "fa00"}',
        '{"address": "AA"}',
        '{"address": "AA", "payload": "zz"}',
        '{"address": "AA", "payload": "fa00", "battery": "full"}',
        '{"address": "AA", "payload": "fa00", "timestamp": "yesterday"}',
    ],
)
def test_parse_rejects_malformed_messages(message):
    with pytest.raises(ValueError):
        parse_notification(message)


def test_iter_notifications_skips_bad_lines(caplog):
    stream = io.StringIO(
        "# recorded session\n"
        '{"address": "AA", "name": "MEATER", "payload": "d002000000000000"}\n'
        "\n"
        "garbage\n"
        '{"address": "AA", "name": "MEATER", "payload": "da02000000000000"}\n'
    )
    notifications = list(iter_notifications(stream))
    assert len(notifications) == 2
    assert "Skipping line 4" in caplog.text


def test_replay_file(tmp_path, tracker):
    log = tmp_path / "session.jsonl"
    lines = [
        {
            "address": "AA:BB:CC:DD:EE:02",
            "name": "MEATER",
            "payload": "d002000000000000",
            "timestamp": "2024-06-01T12:00:00+00:00",
        },
        {
            "address": "AA:BB:CC:DD:EE:02",
            "name": "MEATER",
            "payload": "0000",
            "timestamp": "2024-06-01T12:00:01+00:00",
        },
        {
            "address": "AA:BB:CC:DD:EE:02",
            "name": "MEATER",
            "payload": "da02000000000000",
            "timestamp": "2024-06-01T12:01:00+00:00",
        },
    ]
    log.write_text("\n".join(json.dumps(line) for line in lines))

    pipeline = ProbePipeline(tracker)
    assert replay_file(log, pipeline) == 2

    snapshot = tracker.snapshots()[0]
    # 0x02DA = 730 -> 73.0 °C
    assert snapshot.current_temperature_f == pytest.approx(163.4)
    assert len(snapshot.history) == 2
