"""
Order lifecycle: status flags, transition guards and local effects.

An order's status is a set of independent flags (paid, shipped, delivered,
cancelled, refunded). The backend owns the authoritative state and enforces
the same rules; the checks here keep the client from issuing requests that
are known to fail and decide which actions the UI offers.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Set

from storefront.config import Config
from storefront.exceptions import TransitionNotAllowedError
from storefront.models import Order


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Actor(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class Transition(str, Enum):
    PAY = "pay"
    MARK_PAID = "mark-paid"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"
    REFUND = "refund"
    DELETE = "delete"


ADMIN_ONLY = {Transition.MARK_PAID, Transition.SHIP, Transition.REFUND, Transition.DELETE}
CUSTOMER_ONLY = {Transition.PAY}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Naive timestamps from the backend are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def status_of(order: Order) -> OrderStatus:
    """Single display status for an order's flag combination"""
    if order.is_refunded:
        return OrderStatus.REFUNDED
    if order.is_cancelled:
        return OrderStatus.CANCELLED
    if order.is_delivered:
        return OrderStatus.DELIVERED
    if order.is_shipped:
        return OrderStatus.SHIPPED
    if order.is_paid:
        return OrderStatus.PAID
    return OrderStatus.PENDING


def is_consistent(order: Order) -> bool:
    """True when the flag combination is one the lifecycle can produce"""
    if order.is_shipped and (not order.is_paid or order.is_cancelled):
        return False
    if order.is_delivered and not order.is_shipped:
        return False
    if order.is_refunded and not (order.is_cancelled and order.is_paid):
        return False
    return True


def within_cancel_window(order: Order, now: datetime) -> bool:
    if order.created_at is None:
        return False
    window = timedelta(hours=Config.CANCEL_WINDOW_HOURS)
    return _aware(now) - _aware(order.created_at) <= window


def check_transition(
    order: Order,
    transition: Transition,
    actor: Actor,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> Optional[str]:
    """
    Evaluate the guard for a transition.

    Returns None when the transition is allowed, otherwise the reason it
    is refused. ``user_id`` identifies the acting customer; customers may
    only act on their own orders.
    """
    now = now or utcnow()

    if actor is not Actor.ADMIN and transition in ADMIN_ONLY:
        return "only an administrator can do this"
    if actor is not Actor.CUSTOMER and transition in CUSTOMER_ONLY:
        return "only the customer can pay for an order"
    if actor is Actor.CUSTOMER and order.owner_id is not None and user_id != order.owner_id:
        return "this order belongs to another customer"

    if transition in (Transition.PAY, Transition.MARK_PAID):
        if order.is_cancelled:
            return "the order is cancelled"
        if order.is_paid:
            return "the order is already paid"
        return None

    if transition is Transition.SHIP:
        if order.is_cancelled:
            return "the order is cancelled"
        if not order.is_paid:
            return "cannot ship an unpaid order"
        if order.is_shipped:
            return "the order is already shipped"
        return None

    if transition is Transition.DELIVER:
        if order.is_cancelled:
            return "the order is cancelled"
        if not order.is_shipped:
            return "the order has not shipped yet"
        if order.is_delivered:
            return "the order is already delivered"
        return None

    if transition is Transition.CANCEL:
        if order.is_cancelled:
            return "the order is already cancelled"
        if order.is_delivered:
            return "delivered orders cannot be cancelled"
        if order.is_shipped:
            return "shipped orders cannot be cancelled"
        if actor is Actor.CUSTOMER and order.is_paid and not within_cancel_window(order, now):
            return (
                f"paid orders can only be cancelled within "
                f"{Config.CANCEL_WINDOW_HOURS} hours of placement"
            )
        return None

    if transition is Transition.REFUND:
        if order.is_refunded:
            return "the order is already refunded"
        if not order.is_cancelled:
            return "only cancelled orders can be refunded"
        if not order.is_paid:
            return "the order was never paid"
        return None

    if transition is Transition.DELETE:
        if order.is_shipped or order.is_delivered:
            return "shipped orders cannot be deleted"
        if order.is_refunded:
            return "refunded orders cannot be deleted"
        return None

    return f"unknown transition {transition!r}"


def can(
    order: Order,
    transition: Transition,
    actor: Actor,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> bool:
    return check_transition(order, transition, actor, now, user_id) is None


def ensure_allowed(
    order: Order,
    transition: Transition,
    actor: Actor,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> None:
    reason = check_transition(order, transition, actor, now, user_id)
    if reason is not None:
        raise TransitionNotAllowedError(order.id, transition.value, reason)


def available_actions(
    order: Order,
    actor: Actor,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> Set[Transition]:
    """Transitions the UI should offer for this order"""
    now = now or utcnow()
    return {t for t in Transition if can(order, t, actor, now, user_id)}


def apply_transition(
    order: Order,
    transition: Transition,
    now: Optional[datetime] = None,
    refund_amount: Optional[Decimal] = None,
) -> Order:
    """
    Speculative local effect of a transition.

    Returns a new Order; the input is not modified. Guards are not
    checked here. DELETE has no local effect on the order itself.
    """
    now = now or utcnow()

    if transition in (Transition.PAY, Transition.MARK_PAID):
        update = {"is_paid": True, "paid_at": now}
    elif transition is Transition.SHIP:
        update = {"is_shipped": True, "shipped_at": now}
    elif transition is Transition.DELIVER:
        update = {"is_delivered": True, "delivered_at": now}
    elif transition is Transition.CANCEL:
        update = {"is_cancelled": True, "cancelled_at": now}
    elif transition is Transition.REFUND:
        amount = order.total_price if refund_amount is None else refund_amount
        update = {"is_refunded": True, "refunded_at": now, "refund_amount": amount}
    else:
        update = {}

    update["updated_at"] = now
    return order.model_copy(update=update)
