# ============================================================
# reconciler.py — Background enrollment repair
# ------------------------------------------------------------
# A booking insert can succeed while the enrolled increment that
# follows it fails. This loop periodically recounts confirmed
# bookings for every upcoming class and rewrites drifted counts.
# ============================================================
import logging
import threading
from typing import Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from config import Settings
from publisher import NotificationDispatcher
from service import BookingService

logger = logging.getLogger(__name__)


def reconcile_once(engine: Engine, settings: Settings) -> Dict[int, int]:
    with Session(engine) as s:
        service = BookingService(s, NotificationDispatcher(settings), settings)
        return service.reconcile_active()


def start_reconciler(engine: Engine, settings: Settings, stop: Optional[threading.Event] = None):
    interval = settings.reconcile_interval_seconds
    if interval <= 0:
        logger.info("[reconcile] disabled")
        return
    stop = stop or threading.Event()
    logger.info("[reconcile] running every %ss", interval)
    while not stop.is_set():
        try:
            counts = reconcile_once(engine, settings)
            logger.info("[reconcile] checked %d upcoming class(es)", len(counts))
        except Exception as e:
            logger.error("[reconcile] pass failed: %s — retrying in %ss", e, interval)
        stop.wait(interval)
