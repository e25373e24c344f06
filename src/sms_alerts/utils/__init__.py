"""
SMS Alerts Utilities
====================

Shared helper modules:

- logger.py          → structured JSON logging and alert logger setup
- config.py          → validated alerting configuration from the environment
- secrets.py         → AWS Secrets Manager integration
- twilio_client.py   → authenticated Twilio client and delivery channel
"""
