import os
from dataclasses import dataclass
from typing import Mapping, Self

from src.payments.errors import ConfigurationError


API_URLS = {
    "sandbox": "https://api.sandbox.midtrans.com/v2",
    "production": "https://api.midtrans.com/v2",
}


@dataclass(frozen=True)
class GatewayConfig:
    """Gateway credentials and connection settings, validated on construction."""

    server_key: str
    client_key: str
    environment: str = "sandbox"
    merchant_id: str = ""
    site_url: str = "http://localhost:4321"
    api_url: str | None = None
    timeout_seconds: float = 5.0

    def __post_init__(self):
        if not self.server_key or not self.client_key:
            raise ConfigurationError("Payment gateway credentials are not configured")
        if self.environment not in API_URLS:
            raise ConfigurationError(
                f'Gateway environment must be either "sandbox" or "production", '
                f"got {self.environment!r}"
            )
        if self.timeout_seconds <= 0:
            raise ConfigurationError("Gateway timeout must be positive")

    @property
    def base_url(self) -> str:
        return (self.api_url or API_URLS[self.environment]).rstrip("/")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        env = os.environ if environ is None else environ
        raw_timeout = env.get("MIDTRANS_TIMEOUT_SECONDS", "5")
        try:
            timeout = float(raw_timeout)
        except ValueError:
            raise ConfigurationError(
                f"MIDTRANS_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}"
            ) from None

        return cls(
            server_key=env.get("MIDTRANS_SERVER_KEY", ""),
            client_key=env.get("MIDTRANS_CLIENT_KEY", ""),
            environment=env.get("MIDTRANS_ENVIRONMENT", "sandbox"),
            merchant_id=env.get("MIDTRANS_MERCHANT_ID", ""),
            site_url=env.get("SITE_URL", "http://localhost:4321"),
            api_url=env.get("MIDTRANS_API_URL") or None,
            timeout_seconds=timeout,
        )
