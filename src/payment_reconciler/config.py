"""Gateway configuration loaded from the environment."""

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_BASE_URL = "https://api.portone.io"
DEFAULT_CANCEL_REASON = "Cancelled at customer request"


class GatewayConfig(BaseModel):
    """Connection and retry settings for the payment gateway."""
    base_url: str = Field(default=DEFAULT_BASE_URL, description="Gateway REST API base URL")
    api_secret: str = Field(default="", description="Gateway API secret")
    merchant_id: Optional[str] = Field(default=None, description="Merchant id (MID) sent with cancels")
    auth_scheme: str = Field(default="PortOne", description="Authorization header scheme")
    timeout_seconds: float = Field(default=5.0, gt=0, description="Per-request timeout")
    max_read_attempts: int = Field(default=3, ge=1, description="Attempts for idempotent reads")
    retry_backoff_seconds: float = Field(default=0.5, ge=0, description="Base exponential backoff")
    default_cancel_reason: str = Field(default=DEFAULT_CANCEL_REASON)

    @property
    def authorization_header(self) -> str:
        return f"{self.auth_scheme} {self.api_secret}"

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Build a config from PORTONE_* environment variables.

        Returns:
            GatewayConfig populated from the environment, with defaults for
            anything unset.
        """
        return cls(
            base_url=os.getenv("PORTONE_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            api_secret=os.getenv("PORTONE_API_SECRET") or os.getenv("PORTONE_V2_API_SECRET", ""),
            merchant_id=os.getenv("PORTONE_MERCHANT_ID") or None,
            timeout_seconds=float(os.getenv("PORTONE_TIMEOUT_SECONDS", "5.0")),
            max_read_attempts=int(os.getenv("PORTONE_MAX_READ_ATTEMPTS", "3")),
            retry_backoff_seconds=float(os.getenv("PORTONE_RETRY_BACKOFF_SECONDS", "0.5")),
            default_cancel_reason=os.getenv("PORTONE_DEFAULT_CANCEL_REASON", DEFAULT_CANCEL_REASON),
        )
