# ============================================================
# app.py — Booking service entry point
# ------------------------------------------------------------
# Builds the FastAPI application:
#   - creates the tables in the database
#   - starts the enrollment reconciler in a background thread
#   - mounts the REST routes and the domain error handler
# ============================================================
import logging
import threading

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

import models  # noqa: F401  registers the tables
from api import dispatcher, engine, router
from config import get_settings
from errors import BookingError
from reconciler import start_reconciler

settings = get_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Booking Service")


@app.on_event("startup")
def start():
    # create tables (members, classes, bookings, membership_requests)
    SQLModel.metadata.create_all(engine)
    # reconciler runs in a daemon thread so it never blocks the API
    threading.Thread(target=start_reconciler, args=(engine, settings), daemon=True).start()


@app.on_event("shutdown")
def stop():
    dispatcher.close()


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.http_status >= 500:
        logger.warning("[api] %s %s -> %s", request.method, request.url.path, exc.details)
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(router)
