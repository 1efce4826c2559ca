import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL")

# Paystack Configuration
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")
PAYSTACK_WEBHOOK_SECRET = os.getenv("PAYSTACK_WEBHOOK_SECRET")
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYSTACK_TIMEOUT_SECONDS = float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "20"))

# Fee split for client-to-business payments (5% retained by the platform)
PLATFORM_FEE_RATE = os.getenv("PLATFORM_FEE_RATE", "0.05")

# Client payment bounds, in major currency units
CLIENT_PAYMENT_MIN_AMOUNT = os.getenv("CLIENT_PAYMENT_MIN_AMOUNT", "10")
CLIENT_PAYMENT_MAX_AMOUNT = os.getenv("CLIENT_PAYMENT_MAX_AMOUNT", "65000")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "KES")

# Where the provider redirects the payer after a card checkout
PAYMENT_CALLBACK_BASE_URL = os.getenv("PAYMENT_CALLBACK_BASE_URL", "https://boinvit.com")

# Webhook rate limiting
WEBHOOK_RATE_LIMIT = int(os.getenv("WEBHOOK_RATE_LIMIT", "50"))
WEBHOOK_RATE_WINDOW_SECONDS = int(os.getenv("WEBHOOK_RATE_WINDOW_SECONDS", "60"))
# "memory" for a single instance, "redis" when several instances share the counters
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

# A partially applied settlement answers 500 (provider retries) instead of 200 when enabled
SETTLEMENT_FAIL_ON_PARTIAL = os.getenv("SETTLEMENT_FAIL_ON_PARTIAL", "false").lower() == "true"
# Settlements stuck in "processing" longer than this are picked up by the sweep
SETTLEMENT_STALE_SECONDS = int(os.getenv("SETTLEMENT_STALE_SECONDS", "900"))
SETTLEMENT_SWEEP_INTERVAL_SECONDS = int(os.getenv("SETTLEMENT_SWEEP_INTERVAL_SECONDS", "60"))

# CORS: fallback allow-list used when the runtime config store has none
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "ALLOWED_ORIGINS",
        "https://boinvit.com,https://www.boinvit.com,http://localhost:5173,http://localhost:8080",
    ).split(",")
    if o.strip()
]
CORS_CACHE_TTL = int(os.getenv("CORS_CACHE_TTL", "300"))

REQUIRED_PAYMENT_SETTINGS = ("PAYSTACK_SECRET_KEY", "PAYSTACK_WEBHOOK_SECRET", "DATABASE_URL")


class ConfigurationError(Exception):
    """Raised when a required secret or connection setting is missing"""

    status_code = 500

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


@dataclass(frozen=True)
class PaymentConfig:
    paystack_secret_key: str
    paystack_webhook_secret: str
    database_url: str
    paystack_base_url: str = "https://api.paystack.co"


def load_payment_config() -> PaymentConfig:
    """
    Read the payment secrets from the environment.

    Called per request so a missing secret fails that request with a 500
    instead of silently degrading.
    """
    values = {name: (os.getenv(name) or "").strip() for name in REQUIRED_PAYMENT_SETTINGS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(missing)

    return PaymentConfig(
        paystack_secret_key=values["PAYSTACK_SECRET_KEY"],
        paystack_webhook_secret=values["PAYSTACK_WEBHOOK_SECRET"],
        database_url=values["DATABASE_URL"],
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", PAYSTACK_BASE_URL).rstrip("/"),
    )
