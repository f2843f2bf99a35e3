"""
Pydantic models for cart state, catalog, sessions and orders.

Field names are snake_case in Python and camelCase on the wire, matching
the backend's JSON (``_id``, ``isPaid``, ``orderItems`` ...).
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Decimal in Python, JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

SortOption = Literal["newest", "price-low", "price-high", "name-asc", "name-desc"]

SORT_KEYS: Dict[str, str] = {
    "newest": "-createdAt",
    "price-low": "price",
    "price-high": "-price",
    "name-asc": "name",
    "name-desc": "-name",
}


class ApiModel(BaseModel):
    """Base model speaking the backend's camelCase JSON"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with wire aliases, dropping unset optionals"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Identity(BaseModel):
    """
    Who the active cart and session belong to.

    The guest identity and user identities live in disjoint key
    namespaces, so no user id can collide with the guest cart.
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None

    @classmethod
    def guest(cls) -> "Identity":
        return cls()

    @classmethod
    def user(cls, user_id: str) -> "Identity":
        if not user_id:
            raise ValueError("user identity requires a non-empty user id")
        return cls(user_id=user_id)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def storage_key(self) -> str:
        if self.user_id is None:
            return "cart:guest"
        return f"cart:user:{self.user_id}"


# Cart


class CartLineItem(ApiModel):
    """One product entry in a cart"""
    product_id: str = Field(..., alias="_id", min_length=1, description="Product identifier")
    name: str = Field("", description="Display name")
    price: Money = Field(Decimal("0"), ge=0, description="Unit price")
    image: Optional[str] = Field(None, description="Image reference")
    quantity: int = Field(1, ge=1, description="Item quantity")
    cart_item_id: str = Field(..., min_length=1, description="Cart-scoped line identifier")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class CartRecord(ApiModel):
    """Persisted cart shape: {items, total, itemCount}"""
    items: List[CartLineItem] = Field(default_factory=list)
    total: Money = Decimal("0")
    item_count: int = 0


# Catalog


class Review(ApiModel):
    id: Optional[str] = Field(None, alias="_id")
    user: Optional[Union[str, Dict[str, Any]]] = None
    name: str = ""
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: Optional[datetime] = None


class ReviewDraft(ApiModel):
    """Request body for review submission"""
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Comment cannot be blank")
        return v.strip()


class ProductDraft(ApiModel):
    """Fields an admin may set when creating or updating a product"""
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Money = Field(..., ge=0)
    count_in_stock: int = Field(0, ge=0)
    category: str = ""
    brand: Optional[str] = None
    image: str = ""
    featured: bool = False


class Product(ApiModel):
    id: str = Field(..., alias="_id")
    name: str
    description: str = ""
    price: Money = Field(..., ge=0)
    count_in_stock: int = Field(0, ge=0)
    category: str = ""
    brand: Optional[str] = None
    image: str = ""
    rating: float = 0
    num_reviews: int = 0
    reviews: List[Review] = Field(default_factory=list)
    featured: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductPage(ApiModel):
    products: List[Product] = Field(default_factory=list)
    page: int = 1
    pages: int = 1
    total: int = 0

    @model_validator(mode="before")
    @classmethod
    def fill_total(cls, data: Any) -> Any:
        if isinstance(data, dict) and "total" not in data and "count" in data:
            data = {**data, "total": data["count"]}
        return data


class ProductQuery(BaseModel):
    """Catalog filters as chosen in the UI"""
    keyword: str = ""
    category: str = ""
    sort: SortOption = "newest"
    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1)

    def to_params(self) -> Dict[str, Any]:
        """Translate to backend query parameters"""
        params: Dict[str, Any] = {
            "sort": SORT_KEYS[self.sort],
            "page": self.page,
            "limit": self.limit,
        }
        if self.keyword.strip():
            params["keyword"] = self.keyword.strip()
        if self.category:
            params["category"] = self.category
        return params


# Users and sessions


class User(ApiModel):
    id: str = Field(..., alias="_id")
    name: str = ""
    email: str = ""
    is_admin: bool = False


class AuthResponse(ApiModel):
    """
    Login/register response.

    The backend answers either ``{token, user: {...}}`` or a flat
    ``{token, _id, name, email, isAdmin}``; both end up in ``user``.
    """
    token: str = ""
    user: Optional[User] = None

    @model_validator(mode="before")
    @classmethod
    def nest_flat_user(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("user") and data.get("_id"):
            data = {
                "token": data.get("token", ""),
                "user": {
                    "_id": data["_id"],
                    "name": data.get("name", ""),
                    "email": data.get("email", ""),
                    "isAdmin": data.get("isAdmin", False),
                },
            }
        return data


class ProfileUpdate(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class Registration(ApiModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Enter a valid email address")
        return v.strip().lower()


# Orders


class UserRef(ApiModel):
    id: str = Field(..., alias="_id")
    name: Optional[str] = None


class OrderItem(ApiModel):
    """Order line snapshot, decoupled from the live cart and product"""
    id: Optional[str] = Field(None, alias="_id")
    name: str
    image: str = ""
    price: Money = Field(..., ge=0)
    product: str = Field(..., min_length=1)
    qty: int = Field(..., ge=1)


class ShippingAddress(ApiModel):
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""

    def missing_fields(self) -> List[str]:
        """Wire names of blank fields"""
        fields = type(self).model_fields
        return [
            fields[name].alias or name
            for name in ("address", "city", "postal_code", "country")
            if not getattr(self, name).strip()
        ]


class PaymentResult(ApiModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = Field(None, alias="update_time")
    email_address: Optional[str] = Field(None, alias="email_address")


class PriceBreakdown(ApiModel):
    items_price: Money = Field(..., ge=0)
    tax_price: Money = Field(..., ge=0)
    shipping_price: Money = Field(..., ge=0)
    total_price: Money = Field(..., ge=0)


class OrderPayload(PriceBreakdown):
    """Request body for placing an order"""
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str


class Order(ApiModel):
    id: str = Field(..., alias="_id")
    user: Optional[Union[str, UserRef]] = None
    order_items: List[OrderItem] = Field(default_factory=list)
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    payment_method: str = ""
    payment_result: Optional[PaymentResult] = None

    items_price: Money = Field(Decimal("0"), ge=0)
    tax_price: Money = Field(Decimal("0"), ge=0)
    shipping_price: Money = Field(Decimal("0"), ge=0)
    total_price: Money = Field(Decimal("0"), ge=0)

    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_shipped: bool = False
    shipped_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    is_cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    is_refunded: bool = False
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[Money] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def owner_id(self) -> Optional[str]:
        if isinstance(self.user, UserRef):
            return self.user.id
        return self.user
