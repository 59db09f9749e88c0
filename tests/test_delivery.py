import base64
import json
from decimal import Decimal

import httpx
import jwt

from checkout_service import config, models
from checkout_service.delivery import DEFAULT_PHONE, DoorDashClient, dispatch_delivery, get_delivery_client
from conftest import ADMIN, CUSTOMER

SECRET = b"k" * 32


def doordash(handler):
    http = httpx.Client(base_url="https://dd.test", transport=httpx.MockTransport(handler))
    return DoorDashClient("dev-1", "key-1", base64.b64encode(SECRET).decode(), http_client=http)


def sample_order():
    order = models.Order(
        order_id=5,
        delivery_address="1 Main St, San Francisco, CA 94103",
        customer_name="Ada Lovelace",
        customer_phone="+14155550100",
        total_amount=Decimal("26.09"),
    )
    restaurant = models.Restaurant(name="Sunset Pizzeria", address="123 Main St")
    return order, restaurant


def test_token_claims_and_header():
    token = doordash(lambda r: httpx.Response(200)).token(now=1700000000)

    assert jwt.get_unverified_header(token)["dd-ver"] == "DD-JWT-V1"
    claims = jwt.decode(token, SECRET, algorithms=["HS256"], audience="doordash",
                        options={"verify_exp": False})
    assert claims == {"aud": "doordash", "iss": "dev-1", "kid": "key-1",
                      "iat": 1700000000, "exp": 1700000300}


def test_create_delivery_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"external_delivery_id": "order-5", "delivery_status": "created"})

    order, restaurant = sample_order()
    data = doordash(handler).create_delivery(order, restaurant)

    assert data["delivery_status"] == "created"
    assert seen["path"] == "/drive/v2/deliveries"
    assert seen["auth"].startswith("Bearer ")
    body = seen["body"]
    assert body["external_delivery_id"] == "order-5"
    assert body["order_value"] == 2609
    assert body["pickup_phone_number"] == DEFAULT_PHONE
    assert body["dropoff_phone_number"] == "+14155550100"
    assert body["dropoff_instructions"] == ""


def test_dispatch_logs_and_swallows_http_errors():
    order, restaurant = sample_order()
    client = doordash(lambda r: httpx.Response(500, json={"message": "down"}))
    assert dispatch_delivery(client, order, restaurant, "cid-1") is None
    assert dispatch_delivery(None, order, restaurant, "cid-1") is None


def test_client_needs_credentials(monkeypatch):
    monkeypatch.setattr(config, "DOORDASH_DEVELOPER_ID", None)
    assert get_delivery_client() is None

    monkeypatch.setattr(config, "DOORDASH_DEVELOPER_ID", "dev-1")
    monkeypatch.setattr(config, "DOORDASH_KEY_ID", "key-1")
    monkeypatch.setattr(config, "DOORDASH_SIGNING_SECRET", base64.b64encode(SECRET).decode())
    assert isinstance(get_delivery_client(), DoorDashClient)


def test_confirming_an_order_dispatches_delivery(client, seeded):
    from checkout_service.main import app

    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"external_delivery_id": requests[-1]["external_delivery_id"]})

    app.dependency_overrides[get_delivery_client] = lambda: doordash(handler)

    body = {
        "restaurant_id": seeded["pizza"],
        "items": [{"item_id": seeded["margherita"], "quantity": 2}],
        "totals": {"total": "26.09"},
        "customer": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
                     "phone": "4155550100"},
        "delivery": {"street_address": "1 Main St", "city": "San Francisco", "state": "CA",
                     "postal_code": "94103"},
    }
    order = client.post("/v1/orders", json=body, headers=CUSTOMER).json()
    r = client.patch(f"/v1/admin/orders/{order['order_id']}/status", json={"status": "confirmed"}, headers=ADMIN)

    assert r.status_code == 200
    assert [req["external_delivery_id"] for req in requests] == [f"order-{order['order_id']}"]
    assert requests[0]["pickup_business_name"] == "Sunset Pizzeria"
    assert requests[0]["pickup_phone_number"] == "+14155550100"


def test_dispatch_survives_a_malformed_signing_secret():
    order, restaurant = sample_order()
    sent = []
    http = httpx.Client(base_url="https://dd.test",
                        transport=httpx.MockTransport(lambda r: sent.append(r) or httpx.Response(200)))
    client = DoorDashClient("dev-1", "key-1", "abc", http_client=http)

    assert dispatch_delivery(client, order, restaurant, "cid-1") is None
    assert sent == []


def test_confirm_succeeds_when_delivery_cannot_be_signed(client, seeded):
    from checkout_service.main import app

    http = httpx.Client(base_url="https://dd.test", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    app.dependency_overrides[get_delivery_client] = lambda: DoorDashClient("dev-1", "key-1", "abc", http_client=http)

    body = {
        "restaurant_id": seeded["pizza"],
        "items": [{"item_id": seeded["margherita"], "quantity": 2}],
        "totals": {"total": "26.09"},
        "customer": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
                     "phone": "4155550100"},
        "delivery": {"street_address": "1 Main St", "city": "San Francisco", "state": "CA",
                     "postal_code": "94103"},
    }
    order = client.post("/v1/orders", json=body, headers=CUSTOMER).json()
    r = client.patch(f"/v1/admin/orders/{order['order_id']}/status", json={"status": "confirmed"}, headers=ADMIN)

    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"
