import logging
from typing import Optional

from twilio.rest import Client as TwilioClient

from settings import Settings

logger = logging.getLogger(__name__)

APPROVED_STATUS = "approved"


class OtpService:
    """Sends and checks one-time passcodes through Twilio Verify.

    Codes, expiry and attempt limits live entirely on Twilio's side; this
    class only relays the send request and the pass/fail result.
    """

    def __init__(self, client: TwilioClient, service_sid: str):
        self.client = client
        self.service_sid = service_sid

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["OtpService"]:
        if not settings.otp_enabled:
            logger.warning("Twilio Verify is not configured; OTP routes will fail")
            return None

        client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        logger.info("Twilio client initialized successfully")
        return cls(client, settings.twilio_verify_service_sid)

    def _service(self):
        return self.client.verify.v2.services(self.service_sid)

    def send(self, phone: str) -> str:
        """Issue a code over SMS and return Twilio's verification sid."""
        verification = self._service().verifications.create(to=phone, channel="sms")
        logger.info(f"OTP sent: sid={verification.sid} to={phone}")
        return verification.sid

    def verify(self, phone: str, code: str) -> bool:
        check = self._service().verification_checks.create(to=phone, code=code)
        status = getattr(check, "status", None)
        logger.info(f"OTP check: to={phone} status={status}")
        return status == APPROVED_STATUS
