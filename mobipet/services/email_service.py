"""
Transactional email delivery through Resend.
"""

import logging
from typing import Union

import resend

from mobipet.core import config

logger = logging.getLogger(__name__)


class Mailer:
    """Sends HTML email. Built once at startup and shared by all requests."""

    def __init__(self, api_key: str | None = None, from_address: str | None = None, enabled: bool | None = None):
        self.api_key = api_key if api_key is not None else config.RESEND_API_KEY
        self.from_address = from_address or config.EMAIL_FROM_ADDRESS
        wanted = config.EMAIL_ENABLED if enabled is None else enabled
        self.enabled = bool(wanted and self.api_key)
        if self.enabled:
            resend.api_key = self.api_key

    def send(self, to: Union[str, list[str]], subject: str, html: str) -> dict | None:
        recipients = [to] if isinstance(to, str) else list(to)
        if not self.enabled:
            logger.info('Email disabled; not sending "%s" to %s', subject, ", ".join(recipients))
            return None

        params = {
            "from": self.from_address,
            "to": recipients,
            "subject": subject,
            "html": html,
        }
        response = resend.Emails.send(params)
        logger.info('Sent "%s" to %s', subject, ", ".join(recipients))
        return response
