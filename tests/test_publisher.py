import json
import logging
import threading

import publisher
from publisher import NotificationDispatcher, publish_event


class FakeChannel:
    def __init__(self):
        self.declared = []
        self.published = []

    def exchange_declare(self, **kw):
        self.declared.append(kw)

    def basic_publish(self, **kw):
        self.published.append(kw)


class FakeConnection:
    instances = []

    def __init__(self, params):
        self.params = params
        self.ch = FakeChannel()
        self.closed = False
        FakeConnection.instances.append(self)

    def channel(self):
        return self.ch

    def close(self):
        self.closed = True


def test_publish_event_on_fanout_exchange(settings, monkeypatch):
    FakeConnection.instances.clear()
    monkeypatch.setattr(publisher.pika, "BlockingConnection", FakeConnection)

    publish_event("BookingCreated", {"bookingId": 7}, settings)

    conn = FakeConnection.instances[0]
    assert conn.params.host == settings.rabbitmq_host
    assert conn.ch.declared == [{"exchange": "events", "exchange_type": "fanout", "durable": True}]
    body = json.loads(conn.ch.published[0]["body"])
    assert body == {"type": "BookingCreated", "payload": {"bookingId": 7}}
    assert conn.closed


def test_dispatcher_swallows_publish_errors(settings, caplog):
    def publish(event_type, payload, settings):
        raise ConnectionError("broker down")

    dispatcher = NotificationDispatcher(settings, publish=publish, background=False)
    with caplog.at_level(logging.WARNING, logger="publisher"):
        dispatcher.emit("BookingCancelled", {"bookingId": 1})

    assert "failed to publish BookingCancelled" in caplog.text


def test_dispatcher_disabled(settings):
    sent = []
    settings.notifications_enabled = False
    dispatcher = NotificationDispatcher(settings, publish=lambda *a: sent.append(a), background=False)

    dispatcher.emit("BookingCreated", {})

    assert sent == []


def test_dispatcher_sends_in_background(settings):
    done = threading.Event()
    sent = []

    def publish(event_type, payload, settings):
        sent.append(event_type)
        done.set()

    NotificationDispatcher(settings, publish=publish).emit("BookingCreated", {"bookingId": 1})

    assert done.wait(timeout=2)
    assert sent == ["BookingCreated"]


def test_dispatcher_pool_bounds_concurrent_sends(settings):
    settings.publish_workers = 1
    release = threading.Event()
    started = []
    lock = threading.Lock()

    def publish(event_type, payload, settings):
        with lock:
            started.append(event_type)
        release.wait(timeout=2)

    dispatcher = NotificationDispatcher(settings, publish=publish)
    dispatcher.emit("BookingCreated", {"bookingId": 1})
    dispatcher.emit("BookingCancelled", {"bookingId": 1})

    # the second event waits for the only worker
    assert not release.wait(timeout=0.2)
    assert started == ["BookingCreated"]

    release.set()
    dispatcher.close(wait=True)
    assert started == ["BookingCreated", "BookingCancelled"]
