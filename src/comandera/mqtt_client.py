"""
MQTT order-event listener.

Subscribes to the branch order topic and triggers printing for each event:

    comandera/<branch>/orders        {"order_id": "...", "action": "comanda" | "ticket"}
    comandera/<branch>/print-status  {"order_id": "...", "action": "...", "success": ..., ...}

paho runs its network loop on its own thread; print jobs are handed to the
asyncio loop that owns the printer manager.
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .config import config
from .errors import ComanderaError, message
from .utils.logger import logger


ACTIONS = ("comanda", "ticket")


class OrderEventListener:
    """
    Bridges broker order events to a ``PrinterManager``.

    Args:
        manager: Printer manager whose coroutines run the print jobs
        loop: Event loop the manager lives on
    """

    def __init__(self, manager, loop: asyncio.AbstractEventLoop, topic: Optional[str] = None,
                 status_topic: Optional[str] = None):
        self.manager = manager
        self.loop = loop
        self.topic = topic or config.TOPIC_ORDERS
        self.status_topic = status_topic or config.TOPIC_PRINT_STATUS
        self.client = None
        self.is_connected = False

        # Statistics
        self.stats = {
            "connection_time": None,
            "messages_received": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
            "last_message_time": None,
        }

    def connect(self, timeout: float = 10) -> bool:
        """
        Connect to the broker and start the network loop.

        Returns:
            True if connected before ``timeout``
        """
        try:
            logger.info(f"🔌 Connecting to MQTT broker: {config.MQTT_BROKER}:{config.MQTT_PORT}")

            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=config.CLIENT_ID)
            if config.MQTT_USERNAME:
                self.client.username_pw_set(config.MQTT_USERNAME, config.MQTT_PASSWORD)

            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.on_message = self._on_message

            self.client.connect(config.MQTT_BROKER, config.MQTT_PORT, config.MQTT_KEEPALIVE)
            self.client.loop_start()

            # Wait for connection
            start_time = time.time()
            while not self.is_connected and time.time() - start_time < timeout:
                time.sleep(0.1)

            if not self.is_connected:
                logger.error("❌ MQTT connection timeout")
                return False

            self.stats["connection_time"] = time.time()
            return True

        except (OSError, ValueError) as e:
            logger.error(f"❌ MQTT connection error: {str(e)}")
            return False

    def disconnect(self):
        """Disconnect from the broker."""
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
        self.is_connected = False
        logger.info("🔌 MQTT disconnected")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            self.is_connected = True
            client.subscribe(self.topic, qos=config.MQTT_QOS)
            logger.info(f"📡 Subscribed to order topic: {self.topic}")
        else:
            logger.error(f"❌ MQTT connection failed: {reason_code}")
            self.is_connected = False

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self.is_connected = False
        if reason_code != 0:
            logger.warning(f"⚠️ MQTT unexpected disconnection: {reason_code}")

    def _on_message(self, client, userdata, msg):
        self.stats["messages_received"] += 1
        self.stats["last_message_time"] = time.time()
        self.handle_payload(msg.payload)

    def parse_event(self, payload: bytes) -> Optional[Dict[str, Any]]:
        """
        Validate an order event.

        Returns:
            ``{"order_id", "action"}`` or None for unusable payloads
        """
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Invalid JSON in order event: {str(e)}")
            return None

        if not isinstance(event, dict) or not event.get("order_id"):
            logger.warning("⚠️ Order event without order_id dropped")
            return None

        action = event.get("action", "comanda")
        if action not in ACTIONS:
            logger.warning(f"⚠️ Unknown order action dropped: {action}")
            return None

        return {"order_id": str(event["order_id"]), "action": action}

    def handle_payload(self, payload: bytes):
        """Schedule the print job for one raw broker payload."""
        event = self.parse_event(payload)
        if event is None:
            return None
        logger.order_event(event["order_id"], event["action"])
        future = asyncio.run_coroutine_threadsafe(self.run_event(event), self.loop)
        future.add_done_callback(self._job_done)
        return future

    def _job_done(self, future):
        if future.cancelled():
            logger.warning("⚠️ Print job cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error(f"❌ Print job crashed: {error!r}")

    async def run_event(self, event: Dict[str, str]) -> Dict[str, Any]:
        """Run one event against the manager and publish its status."""
        order_id, action = event["order_id"], event["action"]
        status: Dict[str, Any] = {"order_id": order_id, "action": action, "timestamp": int(time.time() * 1000)}

        if action == "ticket":
            try:
                status["success"] = await self.manager.print_ticket(order_id)
            except Exception as e:
                logger.exception(f"❌ Ticket job failed: {str(e)}", order_id=order_id)
                status["success"] = False
                status["error"] = message("ticket_failed", str(e))
        else:
            try:
                results = await self.manager.process_order_comanda(order_id)
            except ComanderaError as e:
                status["success"] = False
                status["error"] = str(e)
            except Exception as e:
                logger.exception(f"❌ Comanda job failed: {str(e)}", order_id=order_id)
                status["success"] = False
                status["error"] = message("comanda_failed", str(e))
            else:
                status["results"] = {getattr(d, "value", d): ok for d, ok in results.items()}
                status["success"] = bool(results) and all(results.values())

        if not status["success"]:
            status.setdefault("error", self.manager.last_error)
            self.stats["jobs_failed"] += 1
        else:
            self.stats["jobs_completed"] += 1

        self._publish(self.status_topic, status)
        return status

    def _publish(self, topic: str, data: dict):
        if not self.is_connected:
            logger.warning("⚠️ Cannot publish - MQTT not connected")
            return

        payload = json.dumps(data)
        result = self.client.publish(topic, payload, qos=config.MQTT_QOS)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            logger.debug(f"📤 Published to {topic}", size=len(payload))
        else:
            logger.error(f"❌ Publish failed: {result.rc}")

    def get_connection_info(self) -> dict:
        return {
            "connected": self.is_connected,
            "broker": config.MQTT_BROKER,
            "port": config.MQTT_PORT,
            "client_id": config.CLIENT_ID,
            "topics": config.get_topics(),
            "stats": self.stats.copy(),
        }
