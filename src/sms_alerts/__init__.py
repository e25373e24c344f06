"""
SMS Alerts
==========

Log-severity-triggered SMS notifications for Python's logging framework.
Records at or above a configured level are condensed into a single-segment
SMS and sent through Twilio without blocking the logging call.

Modules under this package:
- formatter.py  → "[level] message" bodies, truncated to fit one SMS
- transport.py  → SmsAlertHandler (logging.Handler) and the delivery sink
- demo.py       → sample Lambda handler with status-based request logging
- utils/        → shared helpers (logging, config, secrets, Twilio client)

Environment variables expected:
  • SMS_ALERT_ORIGINATOR       - Sender ID or phone number
  • SMS_ALERT_RECIPIENTS       - Comma-separated phone numbers
  • SMS_ALERT_LEVEL            - Minimum alert severity (default: error)
  • TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN, or TWILIO_SECRET_NAME
  • AWS_REGION                 - Region for Secrets Manager (default: us-east-1)
  • LOG_LEVEL                  - Log verbosity of this package (default: INFO)
"""

from sms_alerts.formatter import SmsFormatter, format_body
from sms_alerts.transport import SmsAlertHandler, report_delivery
from sms_alerts.utils.config import (
    ConfigurationError,
    DispatcherConfig,
    TwilioCredentials,
    load_config,
)

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "ConfigurationError",
    "DispatcherConfig",
    "SmsAlertHandler",
    "SmsFormatter",
    "TwilioCredentials",
    "format_body",
    "load_config",
    "report_delivery",
]
