import json
import logging
import threading
import time

import pytest

import sms_alerts.utils.twilio_client as twilio_client
from sms_alerts.transport import DELIVERY_LOGGER_NAME, SmsAlertHandler, delivery_log, report_delivery
from sms_alerts.utils.config import ConfigurationError, DispatcherConfig, TwilioCredentials
from sms_alerts.utils.twilio_client import DeliveryError, OutboundPayload, TwilioChannel

CREDS = TwilioCredentials(account_sid="ACxxx", auth_token="tok")


def _config(**overrides):
    values = {
        "credentials": CREDS,
        "originator": "AppAlerts",
        "recipients": ("+15555550123", "+15555550124"),
        "level": "error",
    }
    values.update(overrides)
    return DispatcherConfig(**values)


def _record(level, msg, name="app"):
    return logging.makeLogRecord(
        {"name": name, "levelno": level, "levelname": logging.getLevelName(level), "msg": msg}
    )


class RecordingChannel:
    def __init__(self):
        self.sent = []
        self.called = threading.Event()

    def send(self, payload):
        self.sent.append(payload)
        self.called.set()
        return ["SM1"]


class BlockingChannel:
    """Never returns until released; stands in for a hung network call."""

    def __init__(self):
        self.release = threading.Event()

    def send(self, payload):
        self.release.wait(10)
        return []


class FailingChannel:
    def send(self, payload):
        raise ConnectionError("provider unreachable")


class RecordingSink:
    def __init__(self):
        self.calls = []
        self.called = threading.Event()

    def __call__(self, payload, error, response):
        self.calls.append((payload, error, response))
        self.called.set()


@pytest.fixture
def handlers():
    created = []
    yield created
    for h in created:
        h.close()


def _handler(handlers, **kwargs):
    kwargs.setdefault("channel", RecordingChannel())
    h = SmsAlertHandler(kwargs.pop("config", _config()), **kwargs)
    handlers.append(h)
    return h


def test_payload_for_error_scenario(handlers):
    h = _handler(handlers)
    payload = h.build_payload(_record(logging.ERROR, "Server crashed"))
    assert payload == OutboundPayload(
        originator="AppAlerts",
        recipients=("+15555550123", "+15555550124"),
        body="[error] Server crashed",
    )


def test_log_sends_payload_and_reports_success(handlers):
    channel = RecordingChannel()
    sink = RecordingSink()
    h = _handler(handlers, channel=channel, sink=sink)

    future = h.log(_record(logging.ERROR, "x" * 200))
    future.result(timeout=5)

    assert sink.called.wait(5)
    assert channel.sent[0].body == "[error] " + "x" * 140 + " ..."
    payload, error, response = sink.calls[0]
    assert error is None
    assert response == ["SM1"]


def test_callback_fires_before_delivery_completes(handlers):
    channel = BlockingChannel()
    h = _handler(handlers, channel=channel)
    done = []

    started = time.monotonic()
    future = h.log(_record(logging.ERROR, "slow"), callback=lambda: done.append(True))
    elapsed = time.monotonic() - started

    assert done == [True]
    assert not future.done()
    assert elapsed < 1.0
    channel.release.set()


def test_acknowledgment_independent_of_hung_channel(handlers):
    channel = BlockingChannel()
    h = _handler(handlers, channel=channel, max_workers=1)
    acked = threading.Event()
    h.add_logged_listener(lambda record: acked.set())

    # Saturate the single delivery worker first
    h.log(_record(logging.ERROR, "first"))
    h.log(_record(logging.ERROR, "second"))

    assert acked.wait(2)
    channel.release.set()


def test_listener_receives_the_record(handlers):
    h = _handler(handlers)
    seen = []
    got = threading.Event()

    def listener(record):
        seen.append(record.getMessage())
        got.set()

    h.add_logged_listener(listener)
    h.log(_record(logging.ERROR, "disk full"))
    assert got.wait(2)
    assert seen == ["disk full"]

    h.remove_logged_listener(listener)
    assert h._listeners == []


def test_failing_channel_neither_raises_nor_blocks(handlers):
    sink = RecordingSink()
    h = _handler(handlers, channel=FailingChannel(), sink=sink)

    started = time.monotonic()
    h.log(_record(logging.ERROR, "boom"))
    assert time.monotonic() - started < 1.0

    assert sink.called.wait(5)
    _, error, response = sink.calls[0]
    assert isinstance(error, ConnectionError)
    assert response is None
    # No retry
    time.sleep(0.1)
    assert len(sink.calls) == 1


def test_logger_threshold_gates_notifications(handlers):
    channel = RecordingChannel()
    h = _handler(handlers, channel=channel, config=_config(level="warning"))

    logger = logging.getLogger("test_transport.threshold")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(h)
    try:
        logger.info("not important")
        logger.debug("noise")
        assert not channel.called.wait(0.2)

        logger.warning("disk at %d%%", 91)
        assert channel.called.wait(5)
        assert [p.body for p in channel.sent] == ["[warning] disk at 91%"]
    finally:
        logger.removeHandler(h)


def test_handler_level_comes_from_config(handlers):
    assert _handler(handlers).level == logging.ERROR
    assert _handler(handlers, config=_config(level="WARN")).level == logging.WARNING
    assert _handler(handlers, config=_config(level=logging.CRITICAL)).level == logging.CRITICAL


def test_delivery_logger_records_are_ignored(handlers):
    channel = RecordingChannel()
    h = _handler(handlers, channel=channel)

    h.handle(_record(logging.ERROR, "sms.delivery_failed", name=DELIVERY_LOGGER_NAME))
    h.handle(_record(logging.ERROR, "nested", name=DELIVERY_LOGGER_NAME + ".twilio"))
    assert not channel.called.wait(0.2)

    h.handle(_record(logging.ERROR, "real problem", name="sms_alerts.deliveryman"))
    assert channel.called.wait(5)


def test_sink_errors_go_to_handle_error(handlers, monkeypatch):
    def broken_sink(payload, error, response):
        raise RuntimeError("sink down")

    h = _handler(handlers, sink=broken_sink)
    handled = threading.Event()
    monkeypatch.setattr(h, "handleError", lambda record: handled.set())

    h.log(_record(logging.ERROR, "boom")).result(timeout=5)
    assert handled.is_set()


def test_emit_after_close_does_not_raise(handlers, monkeypatch):
    h = _handler(handlers)
    errors = []
    monkeypatch.setattr(h, "handleError", lambda record: errors.append(record))

    h.close()
    h.emit(_record(logging.ERROR, "late"))
    assert len(errors) == 1


def test_empty_recipients_fail_construction():
    channel = RecordingChannel()
    with pytest.raises(ConfigurationError):
        SmsAlertHandler(_config(recipients=()), channel=channel)
    assert channel.sent == []


def test_default_channel_is_twilio(handlers, monkeypatch):
    built = []

    class StubTwilioClient:
        def __init__(self, account_sid, auth_token):
            built.append((account_sid, auth_token))

    monkeypatch.setattr(twilio_client, "TwilioClient", StubTwilioClient)

    h = SmsAlertHandler(_config())
    handlers.append(h)
    assert isinstance(h.channel, TwilioChannel)
    assert built == [("ACxxx", "tok")]


def test_report_delivery_uses_isolated_logger():
    captured = []

    class Capture(logging.Handler):
        def emit(self, record):
            captured.append(record)

    capture = Capture()
    delivery_log.addHandler(capture)
    try:
        payload = OutboundPayload("AppAlerts", ("+15555550123",), "[error] boom")
        report_delivery(payload, DeliveryError([("+15555550123", ValueError("bad"))]), None)

        class Msg:
            sid = "SM123"

        report_delivery(payload, None, [Msg()])
    finally:
        delivery_log.removeHandler(capture)

    assert delivery_log.propagate is False
    assert [r.levelno for r in captured] == [logging.ERROR, logging.INFO]
    assert "SM123" in captured[1].getMessage()


class ChattyChannel(RecordingChannel):
    """Logs from inside send(), the way HTTP libraries do on the worker thread."""

    def send(self, payload):
        logging.getLogger("urllib3.connectionpool").warning("Retrying after connection broken")
        logging.getLogger("app.jobs").error("unrelated failure logged mid-send")
        return super().send(payload)


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    old_level = root.level
    root.setLevel(logging.INFO)
    attached = []
    yield attached
    for h in attached:
        root.removeHandler(h)
    root.setLevel(old_level)


def test_records_logged_during_send_do_not_start_new_sends(handlers, root_logger):
    channel = ChattyChannel()
    h = _handler(handlers, channel=channel, config=_config(level="info"))
    logging.getLogger().addHandler(h)
    root_logger.append(h)

    logging.getLogger("app").info("one event")
    assert h.drain(5)
    time.sleep(0.2)
    assert h.drain(5)

    assert [p.body for p in channel.sent] == ["[info] one event"]


def test_twilio_sdk_logging_does_not_loop(handlers, root_logger, monkeypatch):
    import requests
    from twilio.rest import Client

    http_sends = []

    def fake_send(session, request, **kwargs):
        http_sends.append(request.url)
        logging.getLogger("urllib3.connectionpool").info("POST %s 201", request.url)
        resp = requests.Response()
        resp.status_code = 201
        resp.headers["Content-Type"] = "application/json"
        resp.encoding = "utf-8"
        resp._content = json.dumps(
            {
                "sid": f"SM{len(http_sends)}",
                "account_sid": "ACxxx",
                "to": "+15555550123",
                "from": "AppAlerts",
                "body": "[info] one event",
                "status": "queued",
                "num_segments": "1",
                "date_created": "Thu, 30 Jul 2015 20:12:31 +0000",
            }
        ).encode("utf-8")
        resp.request = request
        resp.url = request.url
        return resp

    monkeypatch.setattr(requests.Session, "send", fake_send)

    sink = RecordingSink()
    channel = TwilioChannel(Client("ACxxx", "tok"))
    h = _handler(handlers, channel=channel, sink=sink, config=_config(level="info", recipients=("+15555550123",)))
    logging.getLogger().addHandler(h)
    root_logger.append(h)

    logging.getLogger("app").info("one event")
    assert h.drain(5)
    time.sleep(0.3)
    assert h.drain(5)

    assert len(http_sends) == 1
    assert len(sink.calls) == 1
    _, error, response = sink.calls[0]
    assert error is None
    assert response[0].sid == "SM1"


def test_drain_waits_for_in_flight_sends(handlers):
    class SlowChannel(RecordingChannel):
        def send(self, payload):
            time.sleep(0.3)
            return super().send(payload)

    channel = SlowChannel()
    h = _handler(handlers, channel=channel)

    future = h.log(_record(logging.ERROR, "slow"))
    assert not future.done()

    h.flush()
    assert future.done()
    assert len(channel.sent) == 1
    assert h.drain(0)


def test_drain_is_bounded_by_timeout(handlers):
    channel = BlockingChannel()
    h = _handler(handlers, channel=channel, flush_timeout=0.1)
    h.log(_record(logging.ERROR, "hung"))

    started = time.monotonic()
    assert h.drain(0.1) is False
    h.flush()
    assert time.monotonic() - started < 2.0
    channel.release.set()
