import json
import logging
import os
from typing import Optional

from sms_alerts.utils.config import load_config
from sms_alerts.utils.logger import build_alert_logger

ROUTES = {
    "/": (200, "Hello World :)"),
    "/simulateError": (500, "This should trigger error handling!"),
}

_logger: Optional[logging.Logger] = None


def get_demo_logger() -> logging.Logger:
    """
    Build the alerting logger once per container, from the environment.

    Unless DEMO_TEST_ENTRIES is "false", the four startup test entries are
    logged right after the logger is built.
    """
    global _logger
    if _logger is None:
        _logger = build_alert_logger(
            "sms_alerts.demo",
            load_config(),
            log_file=os.getenv("DEMO_LOG_FILE"),
        )
        if os.getenv("DEMO_TEST_ENTRIES", "true").strip().lower() not in ("0", "false", "no"):
            emit_test_entries(_logger)
    return _logger


def set_logger(logger: Optional[logging.Logger]) -> None:
    global _logger
    _logger = logger


def status_level(status_code: int) -> int:
    """Map an HTTP status to a log level: 5xx → ERROR, 4xx → WARNING, else INFO."""
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def emit_test_entries(logger: logging.Logger) -> None:
    logger.debug("This is a test at debug level.")
    logger.info("This is a test at info level.")
    logger.warning("This is a test at warning level.")
    logger.error("This is a test at error level.")


def lambda_handler(event, context):
    logger = get_demo_logger()

    http = event.get("requestContext", {}).get("http", {})
    method = http.get("method", "GET")
    path = event.get("rawPath") or http.get("path") or "/"

    status, text = ROUTES.get(path, (404, "Not Found"))
    if method != "GET" and path in ROUTES:
        status, text = 405, "Method Not Allowed"

    # Request log line; its level decides whether an SMS goes out
    logger.log(
        status_level(status),
        "HTTP %s %s %d",
        method,
        path,
        status,
        extra={"fields": {"request_id": getattr(context, "aws_request_id", None)}},
    )

    # Lambda freezes the container once we return; let pending alerts go out first
    for handler in logger.handlers:
        handler.flush()

    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"message": text}),
    }
