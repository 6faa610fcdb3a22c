import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

import aiomqtt

from .config import MqttSettings, SafetySettings, TrackerSettings
from .models import DeviceSnapshot, snapshot_to_dict
from .notification import parse_notification
from .signals import notification_received, state_changed, target_requested
from .tracker import utcnow

logger = logging.getLogger(__name__)


def address_from_topic(topic: str, pattern: str) -> Optional[str]:
    """Returns the topic level matched by the first '+' wildcard of the pattern."""
    topic_levels = topic.split("/")
    for index, level in enumerate(pattern.split("/")):
        if level == "+" and index < len(topic_levels):
            return topic_levels[index]
    return None


class MqttClient:
    """
    Bridges the probe pipeline to an MQTT broker.

    Notification messages published by a BLE gateway are turned into
    notification_received signals, target requests into target_requested
    signals, and every state change is published back as JSON.
    """

    def __init__(
        self,
        settings: MqttSettings,
        tracker_settings: TrackerSettings | None = None,
        safety_settings: SafetySettings | None = None,
    ):
        self.settings = settings
        self.tracker_settings = tracker_settings or TrackerSettings()
        self.safety_settings = safety_settings or SafetySettings()
        self.client = aiomqtt.Client(
            hostname=self.settings.host,
            port=self.settings.port,
            username=self.settings.username,
            password=self.settings.password,
        )
        self._stop_event = asyncio.Event()
        self._mqtt_loop_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def __aenter__(self):
        return await self.client.__aenter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.__aexit__(exc_type, exc_val, exc_tb)

    async def start(self):
        logger.info("Starting MQTT client.")
        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        state_changed.connect(self.handle_state_changed)
        self._mqtt_loop_task = asyncio.create_task(self._run_mqtt_loop())

    async def _run_mqtt_loop(self):
        while not self._stop_event.is_set():
            try:
                async with self as client:
                    await self._subscribe_to_topics(client)
                    logger.info("MQTT client connected.")
                    async for message in client.messages:
                        self.handle_message(message)
            except aiomqtt.MqttError as error:
                logger.error(
                    f"MQTT error: {error}. "
                    f"Reconnecting in {self.settings.reconnect_interval} seconds."
                )
                await asyncio.sleep(self.settings.reconnect_interval)
            except asyncio.CancelledError:
                logger.info("MQTT client loop task successfully cancelled.")
                break
            finally:
                logger.info("MQTT client disconnected.")

    async def stop(self):
        logger.info("Stopping MQTT client.")
        state_changed.disconnect(self.handle_state_changed)
        self._stop_event.set()
        if self._mqtt_loop_task and not self._mqtt_loop_task.done():
            self._mqtt_loop_task.cancel()
            try:
                await self._mqtt_loop_task
            except asyncio.CancelledError:
                logger.info(
                    "MQTT client loop task successfully awaited after cancellation."
                )
        self._mqtt_loop_task = None

    async def _subscribe_to_topics(self, client: aiomqtt.Client):
        await client.subscribe(self.settings.notify_topic, qos=self.settings.qos)
        await client.subscribe(self.settings.target_topic, qos=self.settings.qos)

    def handle_message(self, message: aiomqtt.Message) -> None:
        topic = str(message.topic)
        payload = message.payload
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode(errors="replace")
        else:
            payload = str(payload)

        if message.topic.matches(self.settings.notify_topic):
            address = address_from_topic(topic, self.settings.notify_topic)
            try:
                notification = parse_notification(payload, address=address)
            except ValueError as e:
                logger.warning(f"Ignoring malformed notification on {topic}: {e}")
                return
            notification_received.send(self, notification=notification)
        elif message.topic.matches(self.settings.target_topic):
            address = address_from_topic(topic, self.settings.target_topic)
            if not address:
                logger.warning(f"No device address in target topic {topic}")
                return
            target = self._parse_target(payload)
            if target is False:
                logger.warning(f"Ignoring invalid target '{payload}' on {topic}")
                return
            target_requested.send(
                self, address=address, target_temperature_f=target
            )
        else:
            logger.debug(f"Ignoring message on unexpected topic {topic}")

    @staticmethod
    def _parse_target(payload: str) -> Union[float, None, bool]:
        """Returns the target in °F, None to clear it, or False if invalid."""
        text = payload.strip()
        if text == "" or text.lower() in ("none", "null", "clear"):
            return None
        try:
            return float(text)
        except ValueError:
            return False

    def handle_state_changed(self, sender, **kwargs):
        snapshot: DeviceSnapshot | None = kwargs.get("snapshot")
        if not snapshot or self._loop is None or self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.publish_snapshot(snapshot), self._loop)

    async def publish_snapshot(self, snapshot: DeviceSnapshot):
        topic = self.settings.state_topic.format(address=snapshot.identity.address)
        payload = snapshot_to_dict(
            snapshot,
            utcnow(),
            stale_after=self.tracker_settings.stale_after,
            window=self.tracker_settings.eta_window,
            warning_threshold_percent=(
                self.safety_settings.warning_threshold_percent
            ),
        )
        await self.publish(
            topic, payload, qos=self.settings.qos, retain=self.settings.retain
        )

    async def publish(
        self,
        topic: str,
        payload: Union[str, Dict[str, Any]],
        qos: int = 0,
        retain: bool = False,
    ):
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        try:
            await self.client.publish(topic, payload, qos=qos, retain=retain)
        except aiomqtt.MqttError:
            logger.warning("MQTT client not connected, cannot publish message.")
