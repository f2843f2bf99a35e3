"""Pytest fixtures for storefront tests."""

import json
from datetime import datetime, timezone
from typing import Callable, Dict, List, Tuple

import httpx
import pytest

from storefront.cart_service import CartService
from storefront.models import Order, User
from storefront.storage import MemoryStorage

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
BASE_URL = "http://backend.test/api"


def make_order(**overrides) -> Order:
    """Order snapshot as the backend would send it; overrides use wire names."""
    data = {
        "_id": "o1",
        "user": "u1",
        "orderItems": [{"name": "Mug", "image": "", "price": 10, "product": "p1", "qty": 2}],
        "shippingAddress": {
            "address": "1 Main St",
            "city": "Springfield",
            "postalCode": "12345",
            "country": "US",
        },
        "paymentMethod": "Credit Card",
        "itemsPrice": 20,
        "taxPrice": 2,
        "shippingPrice": 0,
        "totalPrice": 22,
        "createdAt": NOW.isoformat(),
    }
    data.update(overrides)
    return Order.model_validate(data)


def order_json(**overrides) -> dict:
    return make_order(**overrides).to_wire()


class FakeBackend:
    """Scripted backend for httpx.MockTransport; records every request."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, status: int = 200, json=None, handler=None):
        if handler is None:
            def handler(request, status=status, body=json):
                return httpx.Response(status, json=body)
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"message": f"No route {request.method} {path}"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        full = "/api" + path
        return [r for r in self.requests if r.method == method and r.url.path == full]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content or b"{}")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cart(storage):
    return CartService(storage)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def customer():
    return User(id="u1", name="Casey", email="casey@example.com", is_admin=False)


@pytest.fixture
def admin():
    return User(id="a1", name="Avery", email="avery@example.com", is_admin=True)


@pytest.fixture
def product():
    return {"_id": "p1", "name": "Mug", "price": 10.0, "image": "/img/mug.png"}
