"""
Cart service: one active cart per identity, persisted write-through.
"""
import hashlib
import json
import logging
import uuid
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from storefront.models import CartLineItem, CartRecord, Identity
from storefront.storage import KeyValueStorage

logger = logging.getLogger(__name__)

CART_KEY_PREFIX = "cart:"


def _hash_identity(identity: Identity) -> str:
    """Hash identity for logging (no PII)"""
    return hashlib.sha256(identity.storage_key.encode()).hexdigest()[:8]


def _new_line_id() -> str:
    return uuid.uuid4().hex


class CartService:
    """
    Persisted cart store.

    Holds exactly one active cart, the one belonging to the current
    identity. Total and item count are computed from the line items on
    every read and are never stored as state. Every mutation is written
    through to storage; invalid input (missing identifiers, unknown line
    ids) is a silent no-op.
    """

    def __init__(self, storage: KeyValueStorage, identity: Optional[Identity] = None):
        self.storage = storage
        self._identity = identity or Identity.guest()
        self._items: List[CartLineItem] = self._load(self._identity)

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def items(self) -> List[CartLineItem]:
        return list(self._items)

    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self._items), Decimal("0"))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def snapshot(self) -> CartRecord:
        return CartRecord(items=self.items, total=self.total, item_count=self.item_count)

    def set_active_identity(self, identity: Identity) -> None:
        """Persist the outgoing cart, then load (or start empty) the incoming one."""
        self._persist()
        self._identity = identity
        self._items = self._load(identity)
        logger.info(
            f"Active cart switched to {_hash_identity(identity)}",
            extra={"items": len(self._items), "guest": identity.is_guest}
        )

    def save(self) -> None:
        """Write the active cart to storage."""
        self._persist()

    def refresh(self) -> None:
        """Reload the active cart from storage, dropping in-memory state."""
        self._items = self._load(self._identity)

    def add_item(self, product: Any, quantity: int = 1) -> Optional[CartLineItem]:
        """
        Add a product, merging with an existing line for the same product.

        Accepts a Product, a CartLineItem or a mapping of wire fields.
        Returns the resulting line, or None when the input was rejected.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            logger.debug(f"Ignoring add with invalid quantity {quantity!r}")
            return None

        fields = _product_fields(product)
        if fields is None:
            logger.debug("Ignoring add for product without identifier")
            return None

        for index, item in enumerate(self._items):
            if item.product_id == fields["_id"]:
                updated = item.model_copy(update={"quantity": item.quantity + quantity})
                self._items[index] = updated
                self._persist()
                return updated

        try:
            line = CartLineItem.model_validate(
                {**fields, "quantity": quantity, "cartItemId": _new_line_id()}
            )
        except PydanticValidationError as e:
            logger.warning(f"Ignoring add for invalid product {fields['_id']}: {e.error_count()} errors")
            return None

        self._items.append(line)
        self._persist()
        return line

    def remove_item(self, line_id: str) -> bool:
        """Remove a line; False when no such line"""
        remaining = [item for item in self._items if item.cart_item_id != line_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        self._persist()
        return True

    def increase_quantity(self, line_id: str) -> Optional[CartLineItem]:
        return self._adjust(line_id, 1)

    def decrease_quantity(self, line_id: str) -> Optional[CartLineItem]:
        """Decrease by one; the line is removed when it reaches zero"""
        return self._adjust(line_id, -1)

    def clear_cart(self) -> None:
        """Empty the active cart and delete its record; other identities are untouched."""
        self._items = []
        self.storage.delete(self._identity.storage_key)

    def force_clear_all_cart_data(self) -> int:
        """
        Delete every cart record in storage and empty the active cart.

        Recovery path for stale or malformed records. Returns the number of
        records removed.
        """
        keys = self.storage.keys(CART_KEY_PREFIX)
        for key in keys:
            self.storage.delete(key)
        self._items = []
        logger.warning(f"Force-cleared {len(keys)} cart records")
        return len(keys)

    def is_in_cart(self, product_id: str) -> bool:
        return any(item.product_id == product_id for item in self._items)

    def _adjust(self, line_id: str, delta: int) -> Optional[CartLineItem]:
        for index, item in enumerate(self._items):
            if item.cart_item_id != line_id:
                continue
            quantity = max(0, item.quantity + delta)
            if quantity == 0:
                del self._items[index]
                self._persist()
                return None
            updated = item.model_copy(update={"quantity": quantity})
            self._items[index] = updated
            self._persist()
            return updated
        return None

    def _persist(self) -> None:
        self.storage.set(
            self._identity.storage_key,
            self.snapshot().model_dump_json(by_alias=True)
        )

    def _load(self, identity: Identity) -> List[CartLineItem]:
        """Read an identity's record; malformed data yields an empty cart."""
        raw = self.storage.get(identity.storage_key)
        if raw is None:
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable cart {_hash_identity(identity)}: {e}")
            return []

        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            logger.warning(f"Discarding malformed cart {_hash_identity(identity)}")
            return []

        items: List[CartLineItem] = []
        for entry in data["items"]:
            try:
                items.append(CartLineItem.model_validate(entry))
            except PydanticValidationError as e:
                # Skip invalid items
                logger.warning(
                    f"Skipping invalid line in cart {_hash_identity(identity)}: "
                    f"{e.error_count()} errors"
                )
        return items


def _product_fields(product: Any) -> Optional[dict]:
    """Line-item fields from a product-like value, or None without an id"""
    if isinstance(product, BaseModel):
        data = product.model_dump(by_alias=True)
    elif isinstance(product, Mapping):
        data = dict(product)
    else:
        return None

    product_id = data.get("_id") or data.get("product_id") or data.get("id")
    if not isinstance(product_id, str) or not product_id.strip():
        return None

    fields = {
        "_id": product_id,
        "name": data.get("name") or "",
        "price": data.get("price") if data.get("price") is not None else Decimal("0"),
    }
    if data.get("image"):
        fields["image"] = data["image"]
    return fields
