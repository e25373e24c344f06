# utils/twilio_client.py

import os
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from twilio.rest import Client as TwilioClient

from sms_alerts.utils.config import ConfigurationError, TwilioCredentials, load_credentials
from sms_alerts.utils.logger import get_logger

logger = get_logger("sms_alerts.twilio_client")


@dataclass(frozen=True)
class OutboundPayload:
    """One SMS to send: the same body goes to every recipient."""

    originator: str
    recipients: Tuple[str, ...]
    body: str


class DeliveryError(Exception):
    """
    Raised when one or more recipients could not be messaged.

    errors:    list of (recipient, exception) pairs
    responses: message instances for the recipients that did succeed
    """

    def __init__(self, errors: List[Tuple[str, Exception]], responses: Optional[List[Any]] = None):
        self.errors = errors
        self.responses = responses or []
        failed = ", ".join(f"{to}: {err}" for to, err in errors)
        super().__init__(f"SMS delivery failed for {len(errors)} recipient(s): {failed}")


def build_client(credentials: Optional[TwilioCredentials] = None) -> TwilioClient:
    """
    Build and return an authenticated Twilio client.

    When no credentials are passed they are resolved from the environment
    (see utils.config.load_credentials). Missing values raise ConfigurationError.
    """
    if credentials is None:
        credentials = load_credentials(os.environ)

    missing = [
        name
        for name, value in [
            ("account_sid", credentials.account_sid),
            ("auth_token", credentials.auth_token),
        ]
        if not value
    ]

    if missing:
        logger.error("twilio_client.missing_credentials: missing=%s", missing)
        raise ConfigurationError(f"Missing Twilio credentials: {', '.join(missing)}")

    client = TwilioClient(credentials.account_sid, credentials.auth_token)
    logger.info("twilio_client.initialized")
    return client


class TwilioChannel:
    """
    Delivery channel backed by the Twilio Messages API.

    send() is blocking; SmsAlertHandler runs it on a worker thread.
    Request timeouts are left to the Twilio HTTP client.
    """

    def __init__(self, client: TwilioClient, messaging_service_sid: Optional[str] = None):
        self.client = client
        self.messaging_service_sid = messaging_service_sid

    @classmethod
    def from_credentials(cls, credentials: TwilioCredentials) -> "TwilioChannel":
        return cls(build_client(credentials), credentials.messaging_service_sid)

    def _create(self, payload: OutboundPayload, to: str):
        # A messaging service picks the sender itself; otherwise send from the originator
        if self.messaging_service_sid:
            return self.client.messages.create(
                messaging_service_sid=self.messaging_service_sid,
                to=to,
                body=payload.body,
            )
        return self.client.messages.create(
            from_=payload.originator,
            to=to,
            body=payload.body,
        )

    def send(self, payload: OutboundPayload) -> List[Any]:
        """
        Send payload.body to every recipient. Returns the Twilio message instances.

        Every recipient is attempted; if any fail, DeliveryError is raised
        afterwards with the failures and the successful responses.
        """
        responses = []
        errors = []
        for to in payload.recipients:
            try:
                responses.append(self._create(payload, to))
            except Exception as e:
                errors.append((to, e))

        if errors:
            raise DeliveryError(errors, responses)
        return responses
