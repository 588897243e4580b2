"""
Hub Relay - MQTT Hub Ingress
Receives hub events published to hubs/{hub_id}/events and feeds them to
the ingest pipeline
"""

import asyncio
import json
import logging

import paho.mqtt.client as mqtt

from app.relay.pipeline import IngestPipeline

logger = logging.getLogger(__name__)


class MQTTBridge:
    """
    Moves MQTT hub events onto the event loop.

    paho runs its network loop in a background thread; payloads are handed
    to the loop through a queue drained by a single worker, so events are
    processed one at a time in arrival order.
    """

    def __init__(
        self,
        pipeline: IngestPipeline,
        broker: str = "localhost",
        port: int = 1883,
        topic: str = "hubs/+/events",
    ):
        self.pipeline = pipeline
        self.broker = broker
        self.port = port
        self.topic = topic
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[dict] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Called when connected to MQTT broker."""
        logger.info(f"✅ Connected to MQTT broker: {self.broker}:{self.port}")

        # Subscribe on every (re)connect
        client.subscribe(self.topic)
        logger.info(f"📡 Subscribed to: {self.topic}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Called when disconnected from MQTT broker."""
        logger.warning(f"⚠️ Disconnected from MQTT broker: {reason_code}")

    def _on_message(self, client, userdata, msg):
        """Called from the paho thread when a message is received."""
        # Parse topic: hubs/{hub_id}/events
        parts = msg.topic.split("/")
        if len(parts) != 3:
            logger.warning(f"⚠️ Unexpected topic: {msg.topic}")
            return

        hub_id = parts[1]
        try:
            payload = json.loads(msg.payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Undecodable payload from hub {hub_id}: {e}")
            return

        if not isinstance(payload, dict):
            logger.warning(f"⚠️ Non-object payload from hub {hub_id} ignored")
            return

        if payload.get("type") == "hub_connect":
            payload.setdefault("hubId", hub_id)

        logger.debug(f"📩 Received {payload.get('type')} from hub {hub_id}")
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, payload)

    async def _drain(self):
        while True:
            payload = await self._queue.get()
            try:
                await self.pipeline.handle(payload)
            finally:
                self._queue.task_done()

    async def start(self):
        """Connect to the broker and start consuming."""
        self._loop = asyncio.get_running_loop()
        self._worker = asyncio.create_task(self._drain(), name="mqtt-ingress")

        logger.info(f"📡 Connecting to {self.broker}:{self.port}")
        self.client.connect_async(self.broker, self.port, 60)

        # MQTT network loop runs in a background thread
        self.client.loop_start()

    async def stop(self):
        """Disconnect and stop the worker."""
        self.client.disconnect()
        self.client.loop_stop()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        logger.info("⏹️ MQTT ingress stopped")
