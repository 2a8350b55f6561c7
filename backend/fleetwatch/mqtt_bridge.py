# ==============================================================================
# == backend/fleetwatch/mqtt_bridge.py - Position feed to dashboard bridge    ==
# ==============================================================================

import asyncio
import json
import logging
from typing import Dict, Optional, Set

import paho.mqtt.client as mqtt

from .config import settings
from .database import FleetSessionLocal
from . import crud
from .processors.alert_feed import AlertFeed
from .processors.alerts import Alert
from .processors.samples import PositionSample
from .websocket import manager as ws_manager

logger = logging.getLogger(__name__)

class MQTTBridge:
    """
    Listens to the upstream position feed and classifies every sample as it
    arrives. paho runs its own network thread; each message is handed to the
    FastAPI event loop so samples are processed one at a time, in order.
    """
    def __init__(self):
        logger.info("🛠️ Initializing MQTT Bridge Instance...")

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if settings.MQTT_USER:
            self.client.username_pw_set(settings.MQTT_USER, settings.MQTT_PASSWORD)

        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.client.on_disconnect = self.on_disconnect

        # device_id -> vehicle_id, reloaded from the fleet DB
        self.device_map: Dict[str, int] = {}

        self.feed = AlertFeed(resolve_vehicle=self.device_map.get)
        self.feed.subscribe(self.push_alert)

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self._reload_task: Optional[asyncio.Task] = None

    def on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            logger.info("✅ MQTT Connected to Broker.")
            client.subscribe(settings.MQTT_POSITION_TOPIC)
            logger.info(f"   ✓ Subscribed: {settings.MQTT_POSITION_TOPIC}")
        else:
            logger.error(f"❌ MQTT Connection failed: rc={rc}")

    def on_disconnect(self, client, userdata, flags, rc, properties=None):
        if rc != 0:
            logger.warning(f"⚠️ Unexpected MQTT disconnect: rc={rc}. Reconnecting...")

    def on_message(self, client, userdata, msg):
        """Runs on paho's thread: hand the payload to the event loop."""
        try:
            payload_str = msg.payload.decode('utf-8')
        except UnicodeDecodeError:
            logger.debug(f"⚠️ Ignored binary payload on {msg.topic}")
            return

        if self.loop and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(
                self.process_pipeline(msg.topic, payload_str),
                self.loop
            )

    # --- START/STOP, called from the FastAPI lifespan ---
    def start(self):
        logger.info("🚀 Starting MQTT Bridge inside FastAPI...")

        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("❌ No running event loop found! Bridge cannot start.")
            return

        self._reload_task = self.loop.create_task(self.reload_devices_periodically())

        try:
            self.client.connect(settings.MQTT_BROKER, settings.MQTT_PORT, 60)
            self.client.loop_start()  # network I/O on its own thread
            logger.info("✅ MQTT Bridge started successfully.")
        except Exception as e:
            logger.error(f"❌ Failed to start MQTT Bridge: {e}")

    def stop(self):
        logger.info("🛑 Stopping MQTT Bridge...")
        if self._reload_task:
            self._reload_task.cancel()
        self.client.loop_stop()
        self.client.disconnect()
    # --------------------------------------

    async def reload_devices(self):
        async with FleetSessionLocal() as db:
            new_map = await crud.all_device_vehicles(db)
        # update in place: the feed's resolver is bound to this dict
        self.device_map.clear()
        self.device_map.update(new_map)
        logger.debug(f"🔄 Device map reloaded: {len(new_map)} devices")

    async def reload_devices_periodically(self):
        logger.info("🔄 Started device map auto-reload task")
        while True:
            try:
                await self.reload_devices()
            except Exception as e:
                logger.error(f"Error reloading devices: {e}")
            await asyncio.sleep(settings.DEVICE_CACHE_TTL)

    async def process_pipeline(self, topic: str, raw_payload: str):
        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError:
            logger.warning(f"⚠️ Invalid JSON on {topic}")
            return
        if not isinstance(payload, dict):
            logger.warning(f"⚠️ Unexpected payload on {topic}: {type(payload).__name__}")
            return

        # fleet/<device_id>/positions carries the device id in the topic
        if "device_id" not in payload:
            parts = topic.split("/")
            if len(parts) >= 2:
                payload["device_id"] = parts[1]

        try:
            sample = PositionSample.from_payload(payload)
        except ValueError as e:
            logger.warning(f"⚠️ Rejected sample on {topic}: {e}")
            return

        result = self.feed.on_sample(sample)
        if result.severity.value != "info":
            logger.warning(f"🚨 [{sample.device_id}] {result.severity.value.upper()}: {result.description}")

        vehicle_id = self.device_map.get(sample.device_id)
        if vehicle_id is not None:
            await ws_manager.broadcast({
                "type": "position",
                "vehicle_id": vehicle_id,
                "device_id": sample.device_id,
                "latitude": sample.latitude,
                "longitude": sample.longitude,
                "speed": sample.speed,
                "created_at": sample.created_at.isoformat() if sample.created_at else None,
            })

    def push_alert(self, alert: Alert):
        """AlertFeed listener: schedule the websocket push on the loop."""
        if not self.loop:
            return
        message = {"type": "alert", **alert.to_dict()}
        task = self.loop.create_task(ws_manager.broadcast(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
