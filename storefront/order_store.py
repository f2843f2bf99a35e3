"""
Client-side order cache with guarded lifecycle transitions.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from storefront.exceptions import TransitionNotAllowedError
from storefront.models import Order, OrderPayload, PaymentResult
from storefront.optimistic import OptimisticUpdate
from storefront.order_lifecycle import (
    ADMIN_ONLY,
    Actor,
    Transition,
    apply_transition,
    ensure_allowed,
    utcnow,
)
from storefront.order_service import OrderService
from storefront.session import SessionStore

logger = logging.getLogger(__name__)

OrderCache = Tuple[List[Order], List[Order], Optional[Order]]


class OrderStore:
    """
    Cached copies of the session's orders.

    Copies may be stale the moment a request resolves, so every successful
    transition replaces each cached copy with the server's returned
    snapshot. Transitions whose guard fails against the cached copy are
    refused locally without contacting the backend.
    """

    def __init__(
        self,
        service: OrderService,
        session: SessionStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service = service
        self.session = session
        self.clock = clock
        self.my_orders: List[Order] = []
        self.all_orders: List[Order] = []
        self.current_order: Optional[Order] = None
        self.last_update: Optional[OptimisticUpdate] = None
        # Incremented by reset(); optimistic snapshots from an older generation are stale
        self._generation = 0

    @property
    def actor(self) -> Actor:
        return Actor.ADMIN if self.session.is_admin else Actor.CUSTOMER

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user.id if self.session.user else None

    def cached(self, order_id: str) -> Optional[Order]:
        if self.current_order is not None and self.current_order.id == order_id:
            return self.current_order
        for order in self.my_orders + self.all_orders:
            if order.id == order_id:
                return order
        return None

    def reset(self) -> None:
        self._generation += 1
        self.my_orders = []
        self.all_orders = []
        self.current_order = None
        self.last_update = None

    # Queries

    def place_order(self, payload: OrderPayload) -> Order:
        order = self.service.place_order(payload)
        self.my_orders = [order] + [o for o in self.my_orders if o.id != order.id]
        self.current_order = order
        logger.info(f"Order placed: {order.id}, Total: {order.total_price}")
        return order

    def fetch_my_orders(self) -> List[Order]:
        self.my_orders = self.service.get_my_orders()
        return self.my_orders

    def fetch_all_orders(self) -> List[Order]:
        self.all_orders = self.service.get_all_orders()
        return self.all_orders

    def fetch_order(self, order_id: str) -> Order:
        order = self.service.get_order(order_id)
        self._replace(order)
        self.current_order = order
        return order

    # Transitions

    def pay_order(self, order_id: str, payment_result: PaymentResult) -> Order:
        self._guard(order_id, Transition.PAY, Actor.CUSTOMER)
        order = self.service.pay_order(order_id, payment_result)
        self._replace(order)
        return order

    def cancel_order(self, order_id: str, actor: Optional[Actor] = None) -> Order:
        self._guard(order_id, Transition.CANCEL, actor or self.actor)
        order = self.service.cancel_order(order_id)
        self._replace(order)
        return order

    def mark_delivered(self, order_id: str, actor: Optional[Actor] = None) -> Order:
        self._guard(order_id, Transition.DELIVER, actor or self.actor)
        order = self.service.mark_delivered(order_id)
        self._replace(order)
        return order

    def ship_order(self, order_id: str) -> Order:
        self._guard(order_id, Transition.SHIP, Actor.ADMIN)
        order = self.service.ship_order(order_id)
        self._replace(order)
        return order

    def mark_as_paid(self, order_id: str, admin_note: Optional[str] = None) -> Order:
        """Admin payment confirmation, shown as paid before the backend answers"""
        self._guard(order_id, Transition.MARK_PAID, Actor.ADMIN)
        return self._optimistic(
            order_id,
            Transition.MARK_PAID,
            lambda: self.service.mark_as_paid(order_id, admin_note),
        )

    def refund_order(self, order_id: str) -> Order:
        """Admin refund of a cancelled paid order, shown as refunded before the backend answers"""
        self._guard(order_id, Transition.REFUND, Actor.ADMIN)
        return self._optimistic(
            order_id,
            Transition.REFUND,
            lambda: self.service.refund_order(order_id),
        )

    def delete_order(self, order_id: str) -> None:
        self._guard(order_id, Transition.DELETE, Actor.ADMIN)
        self.service.delete_order(order_id)
        self.my_orders = [o for o in self.my_orders if o.id != order_id]
        self.all_orders = [o for o in self.all_orders if o.id != order_id]
        if self.current_order is not None and self.current_order.id == order_id:
            self.current_order = None
        logger.info(f"Order deleted: {order_id}")

    # Internals

    def _guard(self, order_id: str, transition: Transition, actor: Actor) -> None:
        if transition in ADMIN_ONLY and not self.session.is_admin:
            raise TransitionNotAllowedError(
                order_id, transition.value, "only an administrator can do this"
            )
        order = self.cached(order_id)
        if order is not None:
            ensure_allowed(order, transition, actor, self.clock(), self.user_id)

    def _optimistic(
        self,
        order_id: str,
        transition: Transition,
        request: Callable[[], Order],
    ) -> Order:
        now = self.clock()
        generation = self._generation
        update: OptimisticUpdate[OrderCache] = OptimisticUpdate(self._snapshot, self._restore)
        self.last_update = update
        update.begin(lambda: self._map(order_id, lambda o: apply_transition(o, transition, now)))

        try:
            order = request()
        except Exception as e:
            if self._generation == generation:
                update.rollback(e)
            else:
                # Reset during the request (session expired): keep the cleared cache
                update.discard(e)
            raise

        update.commit(lambda: self._replace(order))
        return order

    def _snapshot(self) -> OrderCache:
        return list(self.my_orders), list(self.all_orders), self.current_order

    def _restore(self, saved: OrderCache) -> None:
        self.my_orders, self.all_orders, self.current_order = list(saved[0]), list(saved[1]), saved[2]

    def _map(self, order_id: str, change: Callable[[Order], Order]) -> None:
        self.my_orders = [change(o) if o.id == order_id else o for o in self.my_orders]
        self.all_orders = [change(o) if o.id == order_id else o for o in self.all_orders]
        if self.current_order is not None and self.current_order.id == order_id:
            self.current_order = change(self.current_order)

    def _replace(self, order: Order) -> None:
        self._map(order.id, lambda _: order)
