import os
from dataclasses import dataclass
from decimal import Decimal

# ----- Config (values from env, defaults for local runs) -----
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./checkout.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

DOORDASH_DEVELOPER_ID = os.getenv("DOORDASH_DEVELOPER_ID")
DOORDASH_KEY_ID = os.getenv("DOORDASH_KEY_ID")
DOORDASH_SIGNING_SECRET = os.getenv("DOORDASH_SIGNING_SECRET")
DOORDASH_BASE_URL = os.getenv("DOORDASH_BASE_URL", "https://openapi.doordash.com")

NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL")


@dataclass(frozen=True)
class PricingPolicy:
    delivery_fee: Decimal = Decimal("2.99")
    service_fee_rate: Decimal = Decimal("0.05")
    tax_rate: Decimal = Decimal("0.0875")


def load_pricing_policy() -> PricingPolicy:
    return PricingPolicy(
        delivery_fee=Decimal(os.getenv("DELIVERY_FEE", "2.99")),
        service_fee_rate=Decimal(os.getenv("SERVICE_FEE_RATE", "0.05")),
        tax_rate=Decimal(os.getenv("TAX_RATE", "0.0875")),
    )


PRICING_POLICY = load_pricing_policy()
