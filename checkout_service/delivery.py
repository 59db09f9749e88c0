import base64
import logging
import time
from typing import Optional

import httpx
import jwt

from . import config, models
from .pricing import to_minor_units

logger = logging.getLogger("checkout-service")

DEFAULT_PHONE = "+16505555555"


class DoorDashClient:
    """Thin DoorDash Drive client; every request carries a fresh short-lived JWT."""

    def __init__(self, developer_id: str, key_id: str, signing_secret: str,
                 base_url: str = "https://openapi.doordash.com", http_client: Optional[httpx.Client] = None):
        self.developer_id = developer_id
        self.key_id = key_id
        self.signing_secret = signing_secret
        self.http = http_client or httpx.Client(base_url=base_url, timeout=config.HTTP_TIMEOUT)

    def token(self, now: Optional[int] = None) -> str:
        issued = int(now if now is not None else time.time())
        claims = {
            "aud": "doordash",
            "iss": self.developer_id,
            "kid": self.key_id,
            "iat": issued,
            "exp": issued + 300,
        }
        return jwt.encode(
            claims,
            base64.b64decode(self.signing_secret),
            algorithm="HS256",
            headers={"dd-ver": "DD-JWT-V1"},
        )

    def _headers(self):
        return {"Authorization": f"Bearer {self.token()}", "Content-Type": "application/json"}

    def create_delivery(self, order: models.Order, restaurant: models.Restaurant) -> dict:
        payload = {
            "external_delivery_id": f"order-{order.order_id}",
            "pickup_address": restaurant.address or "",
            "pickup_business_name": restaurant.name,
            "pickup_phone_number": restaurant.phone or DEFAULT_PHONE,
            "dropoff_address": order.delivery_address,
            "dropoff_business_name": order.customer_name,
            "dropoff_phone_number": order.customer_phone or DEFAULT_PHONE,
            "dropoff_instructions": order.delivery_instructions or "",
            "order_value": to_minor_units(order.total_amount),
        }
        r = self.http.post("/drive/v2/deliveries", json=payload, headers=self._headers())
        r.raise_for_status()
        return r.json()

    def get_delivery(self, external_delivery_id: str) -> dict:
        r = self.http.get(f"/drive/v2/deliveries/{external_delivery_id}", headers=self._headers())
        r.raise_for_status()
        return r.json()

    def cancel_delivery(self, external_delivery_id: str) -> dict:
        r = self.http.put(f"/drive/v2/deliveries/{external_delivery_id}/cancel", headers=self._headers())
        r.raise_for_status()
        return r.json()


def get_delivery_client() -> Optional[DoorDashClient]:
    if not (config.DOORDASH_DEVELOPER_ID and config.DOORDASH_KEY_ID and config.DOORDASH_SIGNING_SECRET):
        return None
    return DoorDashClient(
        config.DOORDASH_DEVELOPER_ID,
        config.DOORDASH_KEY_ID,
        config.DOORDASH_SIGNING_SECRET,
        config.DOORDASH_BASE_URL,
    )


def dispatch_delivery(client: Optional[DoorDashClient], order: models.Order,
                      restaurant: models.Restaurant, cid: str) -> Optional[str]:
    """Create the delivery for a confirmed order. Failures are logged, never raised."""
    if client is None:
        return None
    try:
        data = client.create_delivery(order, restaurant)
    except (httpx.HTTPError, ValueError, jwt.PyJWTError) as e:
        # a malformed signing secret fails in token(), before any request
        logger.warning(f"DoorDash delivery creation failed for order {order.order_id}: {e}",
                       extra={"correlation_id": cid})
        return None
    logger.info(f"DoorDash delivery created for order {order.order_id}",
                extra={"correlation_id": cid})
    return data.get("external_delivery_id") or data.get("id")
