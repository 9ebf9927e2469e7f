import base64
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from settings import Settings

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Refresh this many seconds before the provider's stated expiry
TOKEN_EXPIRY_MARGIN = 60


def generate_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(raw.encode()).decode()


def provider_error_body(exc: Exception) -> Optional[Any]:
    """Return the upstream response body carried by a requests exception, if any."""
    response = getattr(exc, "response", None)
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _mask(token: Optional[str]) -> str:
    if not token:
        return "<none>"
    return f"{token[:4]}..."


class DarajaClient:
    """Thin client for the Daraja OAuth and STK Push endpoints."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self._clock = clock
        # (token, expires_at), only ever replaced as a whole
        self._cached_token: Optional[Tuple[str, float]] = None

    def get_access_token(self) -> str:
        """Retrieve an access token from Daraja, reusing a cached one while it is still valid."""
        cached = self._cached_token
        if cached is not None:
            token, expires_at = cached
            if self._clock() < expires_at:
                return token

        credentials = f"{self.settings.consumer_key}:{self.settings.consumer_secret}"
        auth = base64.b64encode(credentials.encode()).decode()
        headers = {"Authorization": f"Basic {auth}"}

        response = requests.get(
            f"{self.settings.mpesa_base_url}{TOKEN_PATH}",
            headers=headers,
            timeout=self.settings.http_timeout_seconds,
        )
        response.raise_for_status()
        token_data = response.json()
        token = token_data.get("access_token")
        if not token:
            raise ValueError("Access token missing from Daraja response")

        try:
            expires_in = int(token_data.get("expires_in"))
        except (TypeError, ValueError):
            expires_in = 0

        if expires_in > TOKEN_EXPIRY_MARGIN:
            self._cached_token = (token, self._clock() + expires_in - TOKEN_EXPIRY_MARGIN)
        else:
            self._cached_token = None

        return token

    def invalidate_token(self) -> None:
        self._cached_token = None

    def build_stk_payload(self, amount: Any, phone: str, timestamp: str) -> Dict[str, Any]:
        shortcode = self.settings.business_short_code
        return {
            "BusinessShortCode": shortcode,
            "Password": generate_password(shortcode, self.settings.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.mpesa_callback_url,
            "AccountReference": self.settings.mpesa_account_reference,
            "TransactionDesc": self.settings.mpesa_transaction_desc,
        }

    def stk_push(self, amount: Any = None, phone: Optional[str] = None) -> Dict[str, Any]:
        """Send an STK Push prompt and return Daraja's response body.

        Missing amount falls back to 1 and missing phone to the configured
        sandbox number. Provider and network errors are raised to the caller.
        """
        token = self.get_access_token()
        logger.info(f"Access token retrieved: {_mask(token)}")

        amount = amount or 1
        phone = phone or self.settings.sandbox_phone
        payload = self.build_stk_payload(amount, phone, generate_timestamp())

        logger.info(
            f"Sending STK Push to Daraja: amount={amount} phone={phone} "
            f"timestamp={payload['Timestamp']}"
        )

        response = requests.post(
            f"{self.settings.mpesa_base_url}{STK_PUSH_PATH}",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.settings.http_timeout_seconds,
        )
        if response.status_code == 401:
            # revoked before its stated expiry
            self.invalidate_token()
        response.raise_for_status()
        return response.json()
