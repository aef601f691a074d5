# ============================================================
# publisher.py — RabbitMQ events and notification dispatch
# ------------------------------------------------------------
# Booking events (BookingCreated, BookingCancelled, ...) are
# published on the "events" fanout exchange; the notification
# workers turn them into emails / WhatsApp messages.
#
# NotificationDispatcher is fire-and-forget: publishing runs on
# a small worker pool and any failure is logged, never raised
# to the booking operation that emitted the event.
# ============================================================
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import pika

from config import Settings

logger = logging.getLogger(__name__)


# Publishes one message on the fanout exchange:
#   - event_type : event name
#   - payload    : event data
# Every consumer bound to the exchange receives it.
def publish_event(event_type: str, payload: dict, settings: Settings):
    params = pika.ConnectionParameters(
        host=settings.rabbitmq_host,
        socket_timeout=settings.publish_timeout_seconds,
        blocked_connection_timeout=settings.publish_timeout_seconds,
    )
    conn = pika.BlockingConnection(params)
    try:
        ch = conn.channel()
        # durable=True so the exchange survives a broker restart
        ch.exchange_declare(exchange=settings.events_exchange, exchange_type="fanout", durable=True)
        message = {"type": event_type, "payload": payload}
        ch.basic_publish(exchange=settings.events_exchange, routing_key="", body=json.dumps(message, default=str))
        logger.info("[event] %s %s", event_type, payload)
    finally:
        conn.close()


class NotificationDispatcher:
    """Best-effort event emitter used by the booking service.

    Background sends go through a pool of ``publish_workers`` threads, so a
    stalled broker queues events instead of piling up threads.
    """

    def __init__(
        self,
        settings: Settings,
        publish: Optional[Callable[[str, dict, Settings], None]] = None,
        background: bool = True,
    ):
        self.settings = settings
        self.publish = publish or publish_event
        self.background = background
        self._executor = None
        if background:
            self._executor = ThreadPoolExecutor(max_workers=settings.publish_workers, thread_name_prefix="events")

    def emit(self, event_type: str, payload: dict) -> None:
        if not self.settings.notifications_enabled:
            logger.debug("[event] notifications disabled, dropping %s", event_type)
            return
        if self._executor is not None:
            self._executor.submit(self._send, event_type, payload)
        else:
            self._send(event_type, payload)

    def _send(self, event_type: str, payload: dict) -> None:
        try:
            self.publish(event_type, payload, self.settings)
        except Exception:
            logger.warning("[event] failed to publish %s %s", event_type, payload, exc_info=True)

    def close(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
