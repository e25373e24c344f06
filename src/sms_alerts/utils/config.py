import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv

from sms_alerts.utils.logger import get_logger

logger = get_logger("sms_alerts.config")

# Alphanumeric sender IDs are capped at 11 characters by carriers.
_ALPHANUMERIC_SENDER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 ]{0,10}$")
_PHONE_NUMBER = re.compile(r"^\+?\d{3,15}$")

_LEVEL_ALIASES = {"WARN": "WARNING"}


class ConfigurationError(RuntimeError):
    """Raised when the alerting setup is missing or invalid. Fatal at startup."""


@dataclass(frozen=True)
class TwilioCredentials:
    account_sid: str
    auth_token: str
    messaging_service_sid: Optional[str] = None

    def __repr__(self) -> str:
        return f"TwilioCredentials(account_sid={self.account_sid!r}, auth_token='***')"


def parse_recipients(raw: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    """
    Normalize a comma-separated string (or any iterable) of phone numbers.

    Blank entries are dropped, so "a, b,,c" → ("a", "b", "c").
    """
    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else raw
    return tuple(item.strip() for item in items if item and item.strip())


def resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    name = _LEVEL_ALIASES.get(name, name)
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ConfigurationError(f"Unknown log level: {level!r}")
    return value


@dataclass(frozen=True)
class DispatcherConfig:
    """
    Immutable alerting configuration, validated once at construction.

    credentials: Twilio account credentials (opaque to the dispatcher)
    originator:  sender identity, an alphanumeric ID (≤11 chars) or a phone number
    recipients:  non-empty ordered sequence of phone numbers
    level:       minimum severity that triggers an SMS
    """

    credentials: TwilioCredentials
    originator: str
    recipients: Tuple[str, ...]
    level: Union[str, int] = "error"

    def __post_init__(self):
        object.__setattr__(self, "recipients", parse_recipients(self.recipients))

        problems = []
        if not self.credentials or not self.credentials.account_sid or not self.credentials.auth_token:
            problems.append("credentials must include account_sid and auth_token")

        originator = self.originator or ""
        if not (_ALPHANUMERIC_SENDER.match(originator) or _PHONE_NUMBER.match(originator)):
            problems.append(
                f"originator {originator!r} must be a phone number or at most 11 alphanumeric characters"
            )

        if not self.recipients:
            problems.append("recipients must not be empty")
        bad = [r for r in self.recipients if not _PHONE_NUMBER.match(r)]
        if bad:
            problems.append(f"invalid recipient numbers: {', '.join(bad)}")

        if problems:
            msg = f"Invalid SMS alert configuration: {'; '.join(problems)}"
            logger.error(msg)
            raise ConfigurationError(msg)

        # Raises ConfigurationError on its own
        resolve_level(self.level)

    @property
    def levelno(self) -> int:
        return resolve_level(self.level)


def load_credentials(env: Mapping[str, str]) -> TwilioCredentials:
    """
    Resolve Twilio credentials either from Secrets Manager (TWILIO_SECRET_NAME)
    or from plain TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN variables.
    """
    if env.get("TWILIO_SECRET_NAME"):
        # Imported here so boto3 is only touched when the secret path is used
        from sms_alerts.utils.secrets import get_twilio_secrets

        secrets = get_twilio_secrets(env)
        return TwilioCredentials(
            account_sid=secrets.get("account_sid", ""),
            auth_token=secrets.get("auth_token", ""),
            messaging_service_sid=secrets.get("messaging_service_sid") or secrets.get("msid"),
        )

    missing = [name for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN") if not env.get(name)]
    if missing:
        msg = f"Missing required environment variables: {', '.join(missing)}"
        logger.error(msg)
        raise ConfigurationError(msg)

    return TwilioCredentials(
        account_sid=env["TWILIO_ACCOUNT_SID"],
        auth_token=env["TWILIO_AUTH_TOKEN"],
        messaging_service_sid=env.get("TWILIO_MESSAGING_SERVICE_SID") or None,
    )


def load_config(environ: Optional[Mapping[str, str]] = None) -> DispatcherConfig:
    """
    Build a DispatcherConfig from environment variables.

    SMS_ALERT_ORIGINATOR: sender identity
    SMS_ALERT_RECIPIENTS: comma-separated phone numbers
    SMS_ALERT_LEVEL:      minimum severity (default: error)
    TWILIO_SECRET_NAME or TWILIO_ACCOUNT_SID/TWILIO_AUTH_TOKEN: credentials

    When no mapping is given, a local .env file is loaded first.
    Raises ConfigurationError with a clear message if something is missing/invalid.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    missing = [
        name for name in ("SMS_ALERT_ORIGINATOR", "SMS_ALERT_RECIPIENTS") if not environ.get(name)
    ]
    if missing:
        msg = f"Missing required environment variables: {', '.join(missing)}"
        logger.error(msg)
        raise ConfigurationError(msg)

    config = DispatcherConfig(
        credentials=load_credentials(environ),
        originator=environ["SMS_ALERT_ORIGINATOR"].strip(),
        recipients=parse_recipients(environ["SMS_ALERT_RECIPIENTS"]),
        level=environ.get("SMS_ALERT_LEVEL", "error"),
    )
    logger.debug(
        "config.loaded: originator=%s recipients=%d level=%s",
        config.originator,
        len(config.recipients),
        config.level,
    )
    return config
