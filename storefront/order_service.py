"""
Order calls against the backend.

Every transition endpoint answers with the order's post-transition
snapshot, which callers treat as the truth.
"""
from typing import Any, List, Optional

from storefront.api_client import ApiClient
from storefront.models import Order, OrderPayload, PaymentResult

DEFAULT_ADMIN_NOTE = "Manually marked as paid by admin"


def _orders(data: Any) -> List[Order]:
    """Order list from a bare list or a {orders|results: [...]} envelope"""
    if isinstance(data, dict):
        data = data.get("orders") or data.get("results") or []
    if not isinstance(data, list):
        return []
    return [Order.model_validate(o) for o in data]


class OrderService:
    def __init__(self, api: ApiClient):
        self.api = api

    def place_order(self, payload: OrderPayload) -> Order:
        return Order.model_validate(self.api.post("/orders", payload.to_wire()))

    def get_my_orders(self) -> List[Order]:
        return _orders(self.api.get("/orders/myorders"))

    def get_order(self, order_id: str) -> Order:
        return Order.model_validate(self.api.get(f"/orders/{order_id}"))

    def get_all_orders(self) -> List[Order]:
        return _orders(self.api.get("/orders"))

    def pay_order(self, order_id: str, payment_result: PaymentResult) -> Order:
        return Order.model_validate(self.api.put(f"/orders/{order_id}/pay", payment_result.to_wire()))

    def cancel_order(self, order_id: str) -> Order:
        return Order.model_validate(self.api.put(f"/orders/{order_id}/cancel", {}))

    def mark_delivered(self, order_id: str) -> Order:
        return Order.model_validate(self.api.put(f"/orders/{order_id}/receive"))

    def ship_order(self, order_id: str) -> Order:
        return Order.model_validate(self.api.put(f"/orders/{order_id}/ship", {}))

    def mark_as_paid(self, order_id: str, admin_note: Optional[str] = None) -> Order:
        body = {"adminNote": admin_note or DEFAULT_ADMIN_NOTE}
        return Order.model_validate(self.api.put(f"/orders/{order_id}/mark-paid", body))

    def refund_order(self, order_id: str) -> Order:
        return Order.model_validate(self.api.put(f"/orders/{order_id}/refund", {}))

    def delete_order(self, order_id: str) -> None:
        self.api.delete(f"/orders/{order_id}")
