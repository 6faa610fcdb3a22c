import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Protocol

from .config import AppSettings
from .config_loader import load_settings_from_cli
from .error import ConfigError
from .exporter import PrometheusExporter
from .logging import setup_logging
from .models import snapshot_to_dict
from .mqtt import MqttClient
from .pipeline import ProbePipeline
from .replay import replay_file
from .signals import notification_received, target_requested
from .tracker import DeviceStateTracker, utcnow

logger = logging.getLogger(__name__)


class Component(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def create_pipeline(settings: AppSettings) -> ProbePipeline:
    tracker = DeviceStateTracker(settings.tracker, settings.validation)
    return ProbePipeline(tracker, targets=settings.targets)


class Application:
    def __init__(self, settings: AppSettings, cli_args: argparse.Namespace):
        self.settings = settings
        self.cli_args = cli_args
        self.stopping = False
        self.is_reloading = False

        setup_logging(self.settings)

        # Device state survives configuration reloads.
        self.pipeline = create_pipeline(self.settings)
        self.tracker = self.pipeline.tracker
        notification_received.connect(self.pipeline.handle_signal)
        target_requested.connect(self.pipeline.handle_target_request)

        self._components: dict[str, Component] = self._create_all_components(
            self.settings
        )

    def _create_all_components(self, settings: AppSettings) -> dict[str, Component]:
        components: dict[str, Component] = {}

        if settings.mqtt:
            components["mqtt"] = MqttClient(
                settings.mqtt, settings.tracker, settings.safety
            )

        if settings.prometheus_exporter.enabled:
            components["prometheus_exporter"] = PrometheusExporter(
                settings=settings.prometheus_exporter,
                safety_settings=settings.safety,
            )

        return components

    def _apply_core_settings(self, settings: AppSettings) -> None:
        self.tracker.apply_settings(settings.tracker, settings.validation)
        self.pipeline.apply_targets(settings.targets)

    async def reload_settings(self):
        if self.is_reloading:
            logger.warning("Reload already in progress, ignoring request.")
            return

        logger.info("SIGHUP received, reloading configuration.")
        self.is_reloading = True
        old_components = self._components
        old_settings = self.settings

        try:
            new_settings = load_settings_from_cli(self.cli_args)
            setup_logging(new_settings)
            new_components = self._create_all_components(new_settings)

            logger.info("Stopping old components...")
            await self._stop_components(old_components)

            self.settings = new_settings
            self._components = new_components
            self._apply_core_settings(new_settings)

            logger.info("Starting new components...")
            await self._start_components(self._components)

            logger.info("Configuration reloaded and components restarted successfully.")

        except ConfigError as e:
            logger.error(
                f"Failed to load new configuration, keeping the old. Reason:\n{e}"
            )
            self._components = old_components
            self.settings = old_settings
            logger.info("No changes applied due to configuration error.")
        except Exception as e:
            logger.error(f"Failed to apply new configuration: {e}", exc_info=True)
            logger.info("Rolling back to the previous configuration.")
            self.settings = old_settings
            self._components = old_components
            self._apply_core_settings(old_settings)

            try:
                logger.info("Restarting old components...")
                await self._start_components(self._components)
                logger.info("Rollback successful.")
            except Exception as rollback_e:
                logger.critical(f"Rollback failed: {rollback_e}", exc_info=True)
                sys.exit(1)
        finally:
            self.is_reloading = False

    async def _start_components(self, components: dict[str, Component]) -> None:
        logger.info("Starting components...")
        await asyncio.gather(*[c.start() for c in components.values()])
        logger.info("Components started successfully.")

    async def _stop_components(self, components: dict[str, Component]) -> None:
        logger.info("Stopping components...")
        # Stop components in reverse order of creation for graceful shutdown
        for key in reversed(list(components.keys())):
            await components[key].stop()
        logger.info("Components stopped successfully.")

    async def start(self):
        logger.info("Starting all components...")
        await self._start_components(self._components)

    async def stop(self):
        if self.stopping:
            return
        self.stopping = True

        logger.info("Stopping all components...")
        await self._stop_components(self._components)
        notification_received.disconnect(self.pipeline.handle_signal)
        target_requested.disconnect(self.pipeline.handle_target_request)


async def run_app(settings: AppSettings, args: argparse.Namespace):
    app = None
    shutdown_event = asyncio.Event()

    def graceful_shutdown():
        if not shutdown_event.is_set():
            logger.info("Shutdown signal received. Initiating graceful shutdown...")
            shutdown_event.set()

    try:
        app = Application(settings, args)
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, graceful_shutdown)

        loop.add_signal_handler(
            signal.SIGHUP, lambda: asyncio.create_task(app.reload_settings())
        )

        await app.start()
        logger.info("Application started successfully. Waiting for signals...")

        await shutdown_event.wait()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received.")
    except OSError as e:
        logger.critical(
            f"Application encountered a critical error during startup and will exit: "
            f"{e}",
            exc_info=True,
        )
        sys.exit(1)
    except Exception as e:
        logger.error(f"An unexpected error occurred: {e}", exc_info=True)
    finally:
        if app:
            await app.stop()


def run_replay(settings: AppSettings, path: str) -> list[dict]:
    """Replays a notification log and returns the final device snapshots."""
    setup_logging(settings)
    pipeline = create_pipeline(settings)
    replay_file(path, pipeline)

    now = utcnow()
    snapshots = [
        snapshot_to_dict(
            snapshot,
            now,
            stale_after=settings.tracker.stale_after,
            window=settings.tracker.eta_window,
            warning_threshold_percent=settings.safety.warning_threshold_percent,
        )
        for snapshot in pipeline.tracker.snapshots()
    ]
    for item in snapshots:
        print(json.dumps(item))
    return snapshots
