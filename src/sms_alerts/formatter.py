"""
SMS body formatting for log records.

A body is "[<level>] <message>", where <level> is the lower-cased level name.
Messages longer than MAX_MESSAGE_LENGTH are cut and marked with ELLIPSIS, so
the usual body fits in a single 160-character SMS segment.

The fixed 140-character budget does not account for the length of the level
name: "[critical] " is longer than "[error] ". Pass max_body_length to
SmsFormatter for a hard upper bound on the whole body instead.
"""

import logging
from typing import Optional

MAX_MESSAGE_LENGTH = 140
ELLIPSIS = " ..."


def _prefix(level: str) -> str:
    return f"[{level}] "


def truncate(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(message) > limit:
        return message[:limit] + ELLIPSIS
    return message


def format_body(level: str, message: str, max_body_length: Optional[int] = None) -> str:
    """
    Compose the SMS body for a level/message pair.

    With max_body_length set, the message budget shrinks whenever the default
    composition would overflow, so the result never exceeds max_body_length.
    """
    prefix = _prefix(level)
    body = prefix + truncate(message)

    if max_body_length is None or len(body) <= max_body_length:
        return body

    budget = max(max_body_length - len(prefix) - len(ELLIPSIS), 0)
    return (prefix + message[:budget] + ELLIPSIS)[:max_body_length]


class SmsFormatter(logging.Formatter):
    """Formats a LogRecord into a bounded SMS body. Never raises for string input."""

    def __init__(self, max_body_length: Optional[int] = None):
        super().__init__()
        if max_body_length is not None and max_body_length < 1:
            raise ValueError("max_body_length must be positive")
        self.max_body_length = max_body_length

    def format(self, record: logging.LogRecord) -> str:
        return format_body(
            record.levelname.lower(),
            record.getMessage(),
            max_body_length=self.max_body_length,
        )
