"""
OTP delivery over email and SMS.

Two modes, selected by OTP_DELIVERY_MODE:

* ``console`` – the code is written to the application log (development).
* ``webhook`` – a JSON message is POSTed to OTP_EMAIL_WEBHOOK_URL or
  OTP_SMS_WEBHOOK_URL; the gateway behind the URL does the actual sending.

Delivery never raises: failures come back as a DeliveryResult so the caller
decides whether the login attempt may continue.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import requests

from hivcare.config import (
    OTP_DELIVERY_MODE,
    OTP_DELIVERY_TIMEOUT,
    OTP_EMAIL_WEBHOOK_URL,
    OTP_EXPIRY_MINUTES,
    OTP_SENDER_NAME,
    OTP_SMS_WEBHOOK_URL,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class OtpNotifier:
    def __init__(self, mode: str = OTP_DELIVERY_MODE,
                 email_url: str = OTP_EMAIL_WEBHOOK_URL,
                 sms_url: str = OTP_SMS_WEBHOOK_URL,
                 timeout: float = OTP_DELIVERY_TIMEOUT,
                 sender_name: str = OTP_SENDER_NAME):
        self.mode = mode
        self.email_url = email_url
        self.sms_url = sms_url
        self.timeout = timeout
        self.sender_name = sender_name

    def send_email_otp(self, to: str, code: str) -> DeliveryResult:
        subject = f"{self.sender_name} - Authentication Code"
        body = (
            f"Your authentication code is {code}. "
            f"This code expires in {OTP_EXPIRY_MINUTES} minutes. "
            "Do not share this code with anyone."
        )
        return self._deliver("email", self.email_url, {
            "to": to, "subject": subject, "text": body,
        })

    def send_sms_otp(self, to: str, code: str) -> DeliveryResult:
        body = (
            f"{self.sender_name}: Your code is {code}. "
            f"Valid for {OTP_EXPIRY_MINUTES} min. Do not share."
        )
        return self._deliver("sms", self.sms_url, {"to": to, "text": body})

    def _deliver(self, channel: str, url: str, message: dict) -> DeliveryResult:
        if self.mode == "console":
            message_id = f"console-{uuid.uuid4().hex[:12]}"
            logger.info("[%s] OTP for %s: %s", channel, message["to"], message["text"])
            return DeliveryResult(success=True, message_id=message_id)

        if self.mode != "webhook":
            return DeliveryResult(success=False, error=f"Unknown delivery mode '{self.mode}'")

        if not url:
            logger.error("No %s webhook URL configured for OTP delivery", channel)
            return DeliveryResult(success=False, error=f"{channel} delivery is not configured")

        try:
            resp = requests.post(url, json=message, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("%s OTP delivery to %s failed: %s", channel, message["to"], e)
            return DeliveryResult(success=False, error=str(e))

        try:
            data = resp.json()
        except ValueError:
            data = None
        message_id = data.get("id") if isinstance(data, dict) else None
        return DeliveryResult(success=True, message_id=message_id)
