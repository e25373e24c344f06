"""
SMS alert handler for the standard logging framework.

Attach SmsAlertHandler to any logger. Every record at or above the configured
level is condensed into a short SMS and sent to the configured recipients on a
worker thread. The logging call never waits on the network, and delivery
failures never raise into application code.

Delivery outcomes go to a separate sink (by default the non-propagating
"sms_alerts.delivery" logger). They are never routed back through the logger
being observed, so a failed SMS cannot trigger another SMS.
"""

import logging
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional, Set

from sms_alerts.formatter import SmsFormatter
from sms_alerts.utils.config import DispatcherConfig
from sms_alerts.utils.logger import get_logger
from sms_alerts.utils.twilio_client import OutboundPayload, TwilioChannel

DELIVERY_LOGGER_NAME = "sms_alerts.delivery"

# Writes to stderr only and never propagates to the root logger.
delivery_log = get_logger(DELIVERY_LOGGER_NAME, stream=sys.stderr)

DeliverySink = Callable[[OutboundPayload, Optional[BaseException], Any], None]


def _sids(response: Any) -> List[str]:
    items = response if isinstance(response, (list, tuple)) else [response]
    return [getattr(item, "sid", "<no-sid>") for item in items if item is not None]


def report_delivery(payload: OutboundPayload, error: Optional[BaseException], response: Any) -> None:
    """Default delivery sink: one line per attempt on the isolated delivery logger."""
    if error is not None:
        delivery_log.error(
            "sms.delivery_failed: error=%s recipients=%d",
            error,
            len(payload.recipients),
            extra={"fields": {"recipients": list(payload.recipients)}},
        )
    else:
        delivery_log.info(
            "sms.delivery_sent: sids=%s recipients=%d",
            ",".join(_sids(response)),
            len(payload.recipients),
        )


class SmsAlertHandler(logging.Handler):
    """
    logging.Handler that turns qualifying log records into SMS alerts.

    The handler level comes from config.level; the logging framework does the
    threshold check before emit() is ever called.

    Records logged while a send or listener is running on one of the handler's
    own threads (Twilio's HTTP client, requests, urllib3, the sink) are dropped
    in filter(), before the handler lock is taken.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        channel=None,
        formatter: Optional[logging.Formatter] = None,
        sink: Optional[DeliverySink] = None,
        max_workers: int = 4,
        flush_timeout: Optional[float] = 10.0,
    ):
        super().__init__(level=config.levelno)
        self.config = config
        self.channel = channel if channel is not None else TwilioChannel.from_credentials(config.credentials)
        self.setFormatter(formatter or SmsFormatter())
        self.sink = sink or report_delivery
        self.flush_timeout = flush_timeout

        self._listeners: List[Callable[[logging.LogRecord], None]] = []
        self._local = threading.local()
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        # Acks get their own thread so a backlog of slow sends cannot delay them
        self._ack_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sms-alert-ack")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sms-alert")

    def add_logged_listener(self, listener: Callable[[logging.LogRecord], None]) -> None:
        """Register a callable invoked (off-thread) for every accepted record."""
        self._listeners.append(listener)

    def remove_logged_listener(self, listener: Callable[[logging.LogRecord], None]) -> None:
        self._listeners.remove(listener)

    def build_payload(self, record: logging.LogRecord) -> OutboundPayload:
        return OutboundPayload(
            originator=self.config.originator,
            recipients=self.config.recipients,
            body=self.format(record),
        )

    def log(self, record: logging.LogRecord, callback: Optional[Callable[[], None]] = None) -> Future:
        """
        Accept a record for delivery and return immediately.

        1) schedule the "logged" acknowledgment for listeners
        2) shape the record into an OutboundPayload
        3) submit the send to the worker pool
        4) the worker reports the outcome to the delivery sink
        5) callback() fires once local bookkeeping is done (not on delivery)

        Returns the Future of the send.
        """
        for listener in list(self._listeners):
            self._ack_executor.submit(self._acknowledge, listener, record)

        payload = self.build_payload(record)
        future = self._executor.submit(self._deliver, payload, record)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

        if callback is not None:
            callback()
        return future

    def filter(self, record: logging.LogRecord):
        # Nothing logged on behalf of a send may start another send
        if getattr(self._local, "delivering", False):
            return False
        if record.name == DELIVERY_LOGGER_NAME or record.name.startswith(DELIVERY_LOGGER_NAME + "."):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log(record)
        except Exception:
            self.handleError(record)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _acknowledge(self, listener: Callable[[logging.LogRecord], None], record: logging.LogRecord) -> None:
        self._local.delivering = True
        try:
            listener(record)
        except Exception:
            self.handleError(record)
        finally:
            self._local.delivering = False

    def _deliver(self, payload: OutboundPayload, record: logging.LogRecord) -> None:
        self._local.delivering = True
        try:
            try:
                response = self.channel.send(payload)
            except Exception as e:
                # Terminal for this alert: no retry, no queueing
                self._report(payload, e, None, record)
                return
            self._report(payload, None, response, record)
        finally:
            self._local.delivering = False

    def _report(self, payload, error, response, record) -> None:
        try:
            self.sink(payload, error, response)
        except Exception:
            self.handleError(record)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait up to timeout seconds for every submitted send to finish.

        Returns False if some sends were still running when the wait ended.
        Does not take the handler lock.
        """
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def flush(self) -> None:
        """Wait (bounded by flush_timeout) for in-flight sends, e.g. before a Lambda freezes."""
        self.drain(self.flush_timeout)

    def close(self) -> None:
        """Stop accepting alerts. In-flight sends finish in the background."""
        self.acquire()
        try:
            self._ack_executor.shutdown(wait=False)
            self._executor.shutdown(wait=False)
        finally:
            self.release()
        super().close()
