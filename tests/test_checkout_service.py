"""Tests for checkout pricing and order placement."""

from decimal import Decimal

import pytest

from conftest import BASE_URL, NOW, order_json
from storefront.api_client import ApiClient
from storefront.checkout_service import CheckoutService, price_breakdown
from storefront.exceptions import ApiError, ValidationError
from storefront.models import ShippingAddress
from storefront.order_service import OrderService
from storefront.order_store import OrderStore
from storefront.session import SessionStore

ADDRESS = ShippingAddress(address="1 Main St", city="Springfield", postal_code="12345", country="US")


@pytest.fixture
def checkout(backend, storage, cart, customer):
    session = SessionStore(storage)
    session.start("customer-token", customer)
    api = ApiClient(session, base_url=BASE_URL, transport=backend.transport)
    orders = OrderStore(OrderService(api), session, clock=lambda: NOW)
    return CheckoutService(cart, orders)


class TestPriceBreakdown:
    def test_ten_percent_tax_and_free_shipping(self):
        prices = price_breakdown(Decimal("100.00"))

        assert prices.tax_price == Decimal("10.00")
        assert prices.shipping_price == Decimal("0")
        assert prices.total_price == Decimal("110.00")

    def test_tax_rounds_half_up_to_cents(self):
        assert price_breakdown(Decimal("0.05")).tax_price == Decimal("0.01")
        assert price_breakdown(Decimal("12.34")).tax_price == Decimal("1.23")

    def test_quote_follows_cart(self, checkout, product):
        checkout.cart.add_item(product, 3)
        assert checkout.quote().total_price == Decimal("33.00")


class TestBuildPayload:
    def test_empty_cart_is_rejected(self, checkout):
        with pytest.raises(ValidationError) as exc:
            checkout.build_payload(ADDRESS, "Credit Card")
        assert exc.value.message == "Cannot checkout empty cart"

    def test_missing_address_fields_use_wire_names(self, checkout, product):
        checkout.cart.add_item(product)

        with pytest.raises(ValidationError) as exc:
            checkout.build_payload(ShippingAddress(address="1 Main St", city=" "), "Credit Card")

        assert exc.value.message == "Please fill all shipping fields."
        assert set(exc.value.field_errors) == {"city", "postalCode", "country"}

    def test_unknown_payment_method(self, checkout, product):
        checkout.cart.add_item(product)

        with pytest.raises(ValidationError) as exc:
            checkout.build_payload(ADDRESS, "Bitcoin")

        assert exc.value.message == "Please choose a payment method."
        assert set(exc.value.field_errors) == {"paymentMethod"}

    def test_address_and_payment_both_invalid(self, checkout, product):
        checkout.cart.add_item(product)

        with pytest.raises(ValidationError) as exc:
            checkout.build_payload(ShippingAddress(address="1 Main St"), "Bitcoin")

        assert exc.value.message == "Please fill all shipping fields and choose a payment method."
        assert set(exc.value.field_errors) == {"city", "postalCode", "country", "paymentMethod"}

    def test_payload_snapshots_cart(self, checkout, product):
        checkout.cart.add_item(product, 2)

        wire = checkout.build_payload(ADDRESS, "PayPal").to_wire()

        assert wire["orderItems"] == [
            {"name": "Mug", "image": "/img/mug.png", "price": 10.0, "product": "p1", "qty": 2}
        ]
        assert wire["itemsPrice"] == 20.0
        assert wire["taxPrice"] == 2.0
        assert wire["totalPrice"] == 22.0
        assert wire["shippingAddress"]["postalCode"] == "12345"


class TestPlaceOrder:
    def test_success_clears_cart(self, checkout, backend, product):
        checkout.cart.add_item(product, 2)
        backend.on("POST", "/orders", status=201, json=order_json(_id="o7"))

        order = checkout.place_order(ADDRESS, "Credit Card")

        assert order.id == "o7"
        assert checkout.cart.items == []
        assert checkout.orders.my_orders[0].id == "o7"
        assert backend.requests[0].headers["Authorization"] == "Bearer customer-token"

    def test_failure_keeps_cart(self, checkout, backend, product):
        checkout.cart.add_item(product, 2)
        backend.on("POST", "/orders", status=400, json={"message": "Product out of stock"})

        with pytest.raises(ApiError) as exc:
            checkout.place_order(ADDRESS, "Credit Card")

        assert exc.value.message == "Product out of stock"
        assert checkout.cart.item_count == 2
        assert checkout.orders.my_orders == []

    def test_invalid_input_makes_no_request(self, checkout, backend):
        with pytest.raises(ValidationError):
            checkout.place_order(ADDRESS, "Credit Card")
        assert backend.requests == []
