"""
Checkout service: turns the active cart into a placed order.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List

from storefront.cart_service import CartService
from storefront.config import Config
from storefront.exceptions import ValidationError
from storefront.models import Order, OrderItem, OrderPayload, PriceBreakdown, ShippingAddress
from storefront.order_store import OrderStore

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

SHIPPING_MESSAGE = "Please fill all shipping fields."
PAYMENT_MESSAGE = "Please choose a payment method."


def price_breakdown(items_price: Decimal) -> PriceBreakdown:
    """Tax at Config.TAX_RATE rounded half-up to cents, flat shipping"""
    items_price = Decimal(items_price)
    tax_price = (items_price * Config.TAX_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
    shipping_price = Config.SHIPPING_PRICE
    return PriceBreakdown(
        items_price=items_price,
        tax_price=tax_price,
        shipping_price=shipping_price,
        total_price=items_price + tax_price + shipping_price,
    )


def _checkout_message(field_errors: Dict[str, str]) -> str:
    if set(field_errors) == {"paymentMethod"}:
        return PAYMENT_MESSAGE
    if "paymentMethod" in field_errors:
        return "Please fill all shipping fields and choose a payment method."
    return SHIPPING_MESSAGE


class CheckoutService:
    """Service for checkout operations"""

    def __init__(self, cart: CartService, orders: OrderStore):
        self.cart = cart
        self.orders = orders

    def quote(self) -> PriceBreakdown:
        return price_breakdown(self.cart.total)

    def build_payload(self, shipping_address: ShippingAddress, payment_method: str) -> OrderPayload:
        """
        Validate checkout input and snapshot the cart into an order payload.

        Raises:
            ValidationError: empty cart, incomplete address or unknown payment method
        """
        if not self.cart.items:
            raise ValidationError("Cannot checkout empty cart")

        field_errors: Dict[str, str] = {
            field: "This field is required" for field in shipping_address.missing_fields()
        }
        if payment_method not in Config.PAYMENT_METHODS:
            field_errors["paymentMethod"] = (
                f"Choose one of: {', '.join(Config.PAYMENT_METHODS)}"
            )
        if field_errors:
            raise ValidationError(_checkout_message(field_errors), field_errors)

        order_items: List[OrderItem] = [
            OrderItem(
                name=item.name,
                image=item.image or "",
                price=item.price,
                product=item.product_id,
                qty=item.quantity,
            )
            for item in self.cart.items
        ]
        prices = self.quote()

        return OrderPayload(
            order_items=order_items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            **prices.model_dump(),
        )

    def place_order(self, shipping_address: ShippingAddress, payment_method: str) -> Order:
        """
        Place an order for the active cart.

        The cart is cleared only after the backend accepted the order, so a
        failed placement leaves it intact for a retry.
        """
        payload = self.build_payload(shipping_address, payment_method)
        order = self.orders.place_order(payload)
        self.cart.clear_cart()
        return order
