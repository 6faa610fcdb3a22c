import logging
from http.server import HTTPServer

from prometheus_client import REGISTRY, Counter, Enum, Gauge, start_http_server

from .config import PrometheusExporterSettings, SafetySettings
from .models import DeviceRecord, DeviceSnapshot, SafetyStatus
from .signals import (
    decode_failed,
    device_discovered,
    no_usable_reading,
    reading_rejected,
    state_changed,
)
from .tracker import utcnow

logger = logging.getLogger(__name__)


class PrometheusExporter:
    def __init__(
        self,
        settings: PrometheusExporterSettings,
        safety_settings: SafetySettings | None = None,
        registry=REGISTRY,
    ):
        # Collectors are registered on start so that a reloaded exporter can
        # replace the old one without name clashes.
        self.settings = settings
        self.safety_settings = safety_settings or SafetySettings()
        self.server: HTTPServer | None = None
        self.registry = registry
        label_names = ["address", "model"]

        self._info_gauge = Gauge(
            "probe_device_info",
            "Information about a thermometer probe",
            ["address", "name", "brand", "model"],
            registry=None,
        )
        self._temperature_gauge = Gauge(
            "probe_temperature_fahrenheit",
            "Current core temperature of the probe",
            label_names,
            registry=None,
        )
        self._ambient_gauge = Gauge(
            "probe_ambient_temperature_fahrenheit",
            "Current ambient temperature of the probe",
            label_names,
            registry=None,
        )
        self._target_gauge = Gauge(
            "probe_target_temperature_fahrenheit",
            "Target core temperature set for the probe",
            label_names,
            registry=None,
        )
        self._progress_gauge = Gauge(
            "probe_progress_ratio",
            "Progress of the core temperature toward the target",
            label_names,
            registry=None,
        )
        self._confidence_gauge = Gauge(
            "probe_confidence_ratio",
            "Confidence in the freshness of the latest reading",
            label_names,
            registry=None,
        )
        self._safety_enum = Enum(
            "probe_safety_status",
            "Latest temperatures compared against the device limits",
            label_names,
            states=[status.value for status in SafetyStatus],
            registry=None,
        )
        self._decode_errors = Counter(
            "probe_decode_errors",
            "Payloads that could not be decoded",
            ["address", "reason"],
            registry=None,
        )
        self._rejected_readings = Counter(
            "probe_rejected_readings",
            "Sensor readings rejected by validation",
            ["address", "role"],
            registry=None,
        )
        self._unusable_payloads = Counter(
            "probe_unusable_payloads",
            "Payloads without any plausible core reading",
            ["address"],
            registry=None,
        )
        self._collectors = [
            self._info_gauge,
            self._temperature_gauge,
            self._ambient_gauge,
            self._target_gauge,
            self._progress_gauge,
            self._confidence_gauge,
            self._safety_enum,
            self._decode_errors,
            self._rejected_readings,
            self._unusable_payloads,
        ]

    def handle_device_discovered(self, sender, **kwargs):
        record: DeviceRecord | None = kwargs.get("record")
        if not record:
            return
        self._info_gauge.labels(
            address=record.address,
            name=record.name,
            brand=record.brand,
            model=record.model,
        ).set(1)

    def handle_state_changed(self, sender, **kwargs):
        snapshot: DeviceSnapshot | None = kwargs.get("snapshot")
        if not snapshot:
            return

        labels = {
            "address": snapshot.identity.address,
            "model": snapshot.capability.model if snapshot.capability else "Unknown",
        }
        values = {
            self._temperature_gauge: snapshot.current_temperature_f,
            self._ambient_gauge: snapshot.ambient_temperature_f,
            self._target_gauge: snapshot.target_temperature_f,
        }
        for gauge, value in values.items():
            if value is not None:
                gauge.labels(**labels).set(float(value))
        self._progress_gauge.labels(**labels).set(snapshot.progress())

        now = utcnow()
        self._confidence_gauge.labels(**labels).set(snapshot.confidence(now))
        status = snapshot.safety_status(
            now, self.safety_settings.warning_threshold_percent
        )
        self._safety_enum.labels(**labels).state(status.value)

    def handle_decode_failed(self, sender, **kwargs):
        identity = kwargs.get("identity")
        error = kwargs.get("error")
        if identity is None:
            return
        reason = getattr(error, "reason", "decode_error")
        self._decode_errors.labels(address=identity.address, reason=reason).inc()

    def handle_reading_rejected(self, sender, **kwargs):
        identity = kwargs.get("identity")
        role = kwargs.get("role")
        if identity is None or role is None:
            return
        self._rejected_readings.labels(
            address=identity.address, role=role.value
        ).inc()

    def handle_no_usable_reading(self, sender, **kwargs):
        identity = kwargs.get("identity")
        if identity is None:
            return
        self._unusable_payloads.labels(address=identity.address).inc()

    def _connect_signals(self):
        device_discovered.connect(self.handle_device_discovered)
        state_changed.connect(self.handle_state_changed)
        decode_failed.connect(self.handle_decode_failed)
        reading_rejected.connect(self.handle_reading_rejected)
        no_usable_reading.connect(self.handle_no_usable_reading)

    def _disconnect_signals(self):
        device_discovered.disconnect(self.handle_device_discovered)
        state_changed.disconnect(self.handle_state_changed)
        decode_failed.disconnect(self.handle_decode_failed)
        reading_rejected.disconnect(self.handle_reading_rejected)
        no_usable_reading.disconnect(self.handle_no_usable_reading)

    async def start(self):
        """Connects to signals and starts the Prometheus HTTP server."""
        for collector in self._collectors:
            try:
                self.registry.register(collector)
            except ValueError:
                logger.debug(f"Collector {collector} is already registered.")
        self._connect_signals()
        logger.info("PrometheusExporter connected to signals.")

        if self.server:
            logger.warning("Prometheus server already running.")
            return
        try:
            self.server, _ = start_http_server(
                self.settings.port, registry=self.registry
            )
            logger.info(
                f"Prometheus exporter server started on port {self.settings.port}"
            )
        except OSError as e:
            logger.error(
                f"Failed to start Prometheus exporter on port {self.settings.port}: {e}"
            )
            raise

    async def stop(self):
        """Stops the server and disconnects from signals for a clean shutdown."""
        self._disconnect_signals()
        logger.info("PrometheusExporter disconnected from signals.")

        for collector in self._collectors:
            try:
                self.registry.unregister(collector)
            except KeyError:
                logger.debug(
                    f"Collector {collector} was not found in registry during "
                    "unregister."
                )
        logger.info("All Prometheus collectors have been unregistered.")

        if self.server:
            if hasattr(self.server, "shutdown"):
                self.server.shutdown()
            if hasattr(self.server, "server_close"):
                self.server.server_close()
            self.server = None
            logger.info("Prometheus exporter server stopped.")
