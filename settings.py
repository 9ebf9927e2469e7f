from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_MPESA_BASE_URL = "https://sandbox.safaricom.co.ke"
DEFAULT_CALLBACK_URL = "https://elimisha-backend-kce7.onrender.com/callback"


# Environment Configuration
class Settings(BaseSettings):
    """Process-wide configuration, built once at startup and handed to the app.

    Each field is read from the environment variable of the same name in
    upper case (``CONSUMER_KEY``, ``MPESA_CALLBACK_URL``...), or from ``.env``.
    """

    # Daraja (M-Pesa) credentials
    consumer_key: str = ""
    consumer_secret: str = ""
    business_short_code: str = ""
    passkey: str = ""
    sandbox_phone: str = ""

    mpesa_base_url: str = DEFAULT_MPESA_BASE_URL
    mpesa_callback_url: str = DEFAULT_CALLBACK_URL
    mpesa_account_reference: str = "ElimishaApp"
    mpesa_transaction_desc: str = "Loan Payment"

    # Twilio Verify
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_verify_service_sid: Optional[str] = None

    port: int = 3000
    http_timeout_seconds: int = Field(default=20, gt=0)
    cors_origins: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("mpesa_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()] or ["*"]
        return value

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def otp_enabled(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_verify_service_sid
        )

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Read settings from the environment and a .env file (``.env`` in the cwd by default)."""
        if dotenv_path is None:
            return cls()
        return cls(_env_file=dotenv_path)
