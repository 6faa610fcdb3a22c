# tests/test_exporter.py
from unittest.mock import MagicMock, Mock, patch

import pytest
import pytest_asyncio
from helpers import at, core, pack_13bit
from prometheus_client import CollectorRegistry

from probe_monitor.config import PrometheusExporterSettings
from probe_monitor.error import WrongLengthError
from probe_monitor.exporter import PrometheusExporter
from probe_monitor.models import SensorRole
from probe_monitor.notification import Notification
from probe_monitor.pipeline import ProbePipeline
from probe_monitor.signals import decode_failed, reading_rejected


@pytest.fixture
def test_registry():
    return CollectorRegistry()


@pytest.fixture
def exporter_settings():
    return PrometheusExporterSettings(enabled=True, port=9100)


@pytest_asyncio.fixture
async def running_exporter(exporter_settings, test_registry):
    with patch("probe_monitor.exporter.start_http_server") as mock_start:
        mock_start.return_value = [MagicMock(), Mock()]
        exporter = PrometheusExporter(
            settings=exporter_settings, registry=test_registry
        )
        await exporter.start()
        yield exporter
        await exporter.stop()


@pytest.mark.asyncio
@patch("probe_monitor.exporter.start_http_server")
async def test_start_and_stop(mock_start_http_server, exporter_settings, test_registry):
    server = MagicMock()
    mock_start_http_server.return_value = [server, Mock()]

    exporter = PrometheusExporter(settings=exporter_settings, registry=test_registry)
    await exporter.start()
    mock_start_http_server.assert_called_once_with(9100, registry=test_registry)

    await exporter.stop()
    server.shutdown.assert_called_once()
    assert exporter.server is None
    assert test_registry.get_sample_value("probe_decode_errors_total") is None


@pytest.mark.asyncio
@patch("probe_monitor.exporter.start_http_server")
async def test_start_failure_is_raised(
    mock_start_http_server, exporter_settings, test_registry
):
    mock_start_http_server.side_effect = OSError("Address already in use")
    exporter = PrometheusExporter(settings=exporter_settings, registry=test_registry)
    with pytest.raises(OSError):
        await exporter.start()


@pytest.mark.asyncio
async def test_pipeline_metrics(
    running_exporter, test_registry, tracker, meatstick_identity
):
    pipeline = ProbePipeline(tracker, targets={meatstick_identity.address: 244.0})
    payload = pack_13bit([1400] * 4 + [8191] * 3 + [1000])
    pipeline.handle_notification(Notification(meatstick_identity, payload, at(0)))

    labels = {"address": meatstick_identity.address, "model": "MeatStick"}
    assert test_registry.get_sample_value(
        "probe_temperature_fahrenheit", labels
    ) == pytest.approx(122.0)
    assert test_registry.get_sample_value(
        "probe_ambient_temperature_fahrenheit", labels
    ) == pytest.approx(86.0)
    assert test_registry.get_sample_value(
        "probe_target_temperature_fahrenheit", labels
    ) == pytest.approx(244.0)
    assert test_registry.get_sample_value(
        "probe_progress_ratio", labels
    ) == pytest.approx(0.5)
    assert (
        test_registry.get_sample_value(
            "probe_device_info",
            {
                "address": meatstick_identity.address,
                "name": meatstick_identity.name,
                "brand": "MeatStick",
                "model": "MeatStick",
            },
        )
        == 1.0
    )


@pytest.mark.asyncio
async def test_safety_and_confidence_metrics(
    running_exporter, test_registry, tracker, meatstick_identity
):
    """Safety status and confidence are derived from the reading's age."""
    pipeline = ProbePipeline(tracker)
    # Core 185 F is above 90% of the 200 F internal limit.
    payload = pack_13bit([2100] * 4 + [8191] * 3 + [1000])
    labels = {"address": meatstick_identity.address, "model": "MeatStick"}

    with patch("probe_monitor.exporter.utcnow", return_value=at(10)):
        pipeline.handle_notification(Notification(meatstick_identity, payload, at(0)))
    assert test_registry.get_sample_value(
        "probe_confidence_ratio", labels
    ) == pytest.approx(1.0)
    assert (
        test_registry.get_sample_value(
            "probe_safety_status",
            {**labels, "probe_safety_status": "warning_internal_high"},
        )
        == 1.0
    )
    assert (
        test_registry.get_sample_value(
            "probe_safety_status", {**labels, "probe_safety_status": "safe"}
        )
        == 0.0
    )

    with patch("probe_monitor.exporter.utcnow", return_value=at(900)):
        running_exporter.handle_state_changed(
            None, snapshot=tracker.snapshot(meatstick_identity)
        )
    assert test_registry.get_sample_value(
        "probe_confidence_ratio", labels
    ) == pytest.approx(0.0)
    assert (
        test_registry.get_sample_value(
            "probe_safety_status", {**labels, "probe_safety_status": "device_offline"}
        )
        == 1.0
    )


@pytest.mark.asyncio
async def test_failure_counters(
    running_exporter, test_registry, tracker, meatstick_identity
):
    pipeline = ProbePipeline(tracker)
    pipeline.handle_notification(Notification(meatstick_identity, bytes(8), at(0)))
    pipeline.handle_notification(
        Notification(meatstick_identity, pack_13bit([8191] * 8), at(1))
    )

    address = meatstick_identity.address
    assert (
        test_registry.get_sample_value(
            "probe_decode_errors_total", {"address": address, "reason": "wrong_length"}
        )
        == 1.0
    )
    # All four core sensors are out of range.
    assert (
        test_registry.get_sample_value(
            "probe_rejected_readings_total", {"address": address, "role": "core"}
        )
        == 4.0
    )
    assert (
        test_registry.get_sample_value(
            "probe_unusable_payloads_total", {"address": address}
        )
        == 1.0
    )


@pytest.mark.asyncio
async def test_signals_disconnected_after_stop(
    exporter_settings, test_registry, meatstick_identity
):
    with patch("probe_monitor.exporter.start_http_server") as mock_start:
        mock_start.return_value = [MagicMock(), Mock()]
        exporter = PrometheusExporter(
            settings=exporter_settings, registry=test_registry
        )
        await exporter.start()
        await exporter.stop()

    decode_failed.send(None, identity=meatstick_identity, error=WrongLengthError(13, 2))
    reading_rejected.send(
        None, identity=meatstick_identity, reading=core(700.0), role=SensorRole.CORE
    )
    assert (
        test_registry.get_sample_value(
            "probe_decode_errors_total",
            {"address": meatstick_identity.address, "reason": "wrong_length"},
        )
        is None
    )
