import logging
import re
from dataclasses import dataclass
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from ..config import Settings

log = logging.getLogger("notebook-api.sms")


@dataclass
class SmsResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def format_phone_number(phone: str, default_country_code: str = "+1") -> str:
    """Ensure a country code; short local numbers get ``default_country_code``."""
    phone = phone.strip()
    if phone.startswith("+"):
        return phone
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 10:
        return f"{default_country_code}{digits}"
    return f"+{digits}"


class SmsSender:
    """Thin wrapper over the Twilio client; disabled unless fully configured."""

    def __init__(self, account_sid: Optional[str], auth_token: Optional[str],
                 from_number: Optional[str], default_country_code: str = "+1", client=None):
        self.from_number = from_number
        self.default_country_code = default_country_code
        self.client = client
        if self.client is None and account_sid and auth_token and from_number:
            self.client = TwilioClient(account_sid, auth_token)
        if not self.is_ready():
            log.warning("Twilio credentials not configured; SMS notifications are disabled")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmsSender":
        return cls(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_PHONE_NUMBER,
            settings.DEFAULT_COUNTRY_CODE,
        )

    def is_ready(self) -> bool:
        return self.client is not None and bool(self.from_number)

    def send(self, to: str, body: str) -> SmsResult:
        if not self.is_ready():
            return SmsResult(False, error="Twilio is not configured. Set TWILIO_ACCOUNT_SID, "
                                          "TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER.")
        if not to or not body:
            return SmsResult(False, error="Missing required parameters: to and body")
        number = format_phone_number(to, self.default_country_code)
        try:
            message = self.client.messages.create(body=body, from_=self.from_number, to=number)
        except TwilioRestException as e:
            log.warning(f"SMS send to {number} failed: {e.msg}")
            return SmsResult(False, error=str(e.msg))
        log.info(f"SMS sent to {number}")
        return SmsResult(True, message_id=message.sid)
