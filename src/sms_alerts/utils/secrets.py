import json
import os
from typing import Mapping, Optional

import boto3

from sms_alerts.utils.logger import get_logger

logger = get_logger("sms_alerts.secrets")


def _get_secret_name_and_region(env: Mapping[str, str]) -> tuple[str, str]:
    """
    Resolve the Twilio secret name and AWS region from environment variables.

    TWILIO_SECRET_NAME is required.
    AWS_REGION is optional; defaults to us-east-1 if not set.
    """
    secret_name = env.get("TWILIO_SECRET_NAME")
    region_name = env.get("AWS_REGION", "us-east-1")

    if not secret_name:
        msg = "Missing required environment variables: TWILIO_SECRET_NAME"
        logger.error(msg)
        raise RuntimeError(msg)

    return secret_name, region_name


def get_twilio_secrets(env: Optional[Mapping[str, str]] = None) -> dict:
    """
    Fetch Twilio credentials from AWS Secrets Manager.

    Expects the secret value to be a JSON object, e.g.:

        {
          "account_sid": "...",
          "auth_token": "...",
          "messaging_service_sid": "..."   # optional, "msid" also accepted
        }
    """
    secret_name, region_name = _get_secret_name_and_region(os.environ if env is None else env)

    logger.info("secrets.fetch: secret_name=%s region=%s", secret_name, region_name)

    client = boto3.client("secretsmanager", region_name=region_name)

    resp = client.get_secret_value(SecretId=secret_name)
    secret_str = resp.get("SecretString")

    if not secret_str:
        msg = f"Secret '{secret_name}' has no SecretString payload"
        logger.error(msg)
        raise RuntimeError(msg)

    try:
        data = json.loads(secret_str)
    except json.JSONDecodeError as e:
        logger.error("secrets.invalid_json: secret_name=%s error=%s", secret_name, e)
        raise

    if not isinstance(data, dict):
        msg = f"Secret '{secret_name}' must be a JSON object"
        logger.error(msg)
        raise RuntimeError(msg)

    return data
