"""
FastAPI facade over the storefront client state.

Each request names its client session in the X-Session-ID header; the
session's StorefrontContext holds that client's cart, credentials and
cached orders, as one browser tab would.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.config import Config
from storefront.context import ContextRegistry, StorefrontContext
from storefront.exceptions import (
    ApiError,
    NetworkError,
    SessionExpiredError,
    StorageConnectionError,
    TransitionNotAllowedError,
    ValidationError,
)
from storefront.middleware import SESSION_HEADER, RequestLoggingMiddleware
from storefront.models import (
    ApiModel,
    Order,
    PaymentResult,
    ProductDraft,
    ProductQuery,
    ProfileUpdate,
    Registration,
    ReviewDraft,
    ShippingAddress,
    SortOption,
)
from storefront.order_lifecycle import Transition, status_of, utcnow
from storefront.storage import KeyValueStorage, build_storage

logger = logging.getLogger(__name__)

FORBIDDEN = "You don't have permission to perform this action."


# Request schemas


class AddItemRequest(BaseModel):
    """Request model for adding a product to the cart"""
    product_id: str = Field("", description="Product identifier")
    name: str = Field("", description="Display name")
    price: float = Field(0, description="Unit price")
    image: Optional[str] = Field(None, description="Image reference")
    quantity: int = Field(1, description="Quantity to add")


class LoginRequest(BaseModel):
    email: str
    password: str


class CheckoutRequest(ApiModel):
    shipping_address: ShippingAddress
    payment_method: str


class TransitionRequest(ApiModel):
    payment_result: Optional[PaymentResult] = None
    admin_note: Optional[str] = None


# Views


def cart_view(ctx: StorefrontContext) -> dict:
    view = ctx.cart.snapshot().to_wire()
    view["guest"] = ctx.cart.identity.is_guest
    return view


def order_view(ctx: StorefrontContext, order: Order) -> dict:
    view = order.to_wire()
    view["status"] = status_of(order).value
    view["availableActions"] = sorted(t.value for t in ctx.actions_for(order))
    return view


def session_view(ctx: StorefrontContext) -> dict:
    user = ctx.user
    return {
        "authenticated": ctx.session.is_authenticated,
        "user": user.to_wire() if user else None,
        "notice": ctx.pop_expired_message(),
    }


def create_app(
    storage: Optional[KeyValueStorage] = None,
    transport: Optional[httpx.BaseTransport] = None,
    base_url: Optional[str] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Build the facade.

    ``storage`` defaults to the backend chosen by Config.STORAGE_BACKEND,
    created on first use; ``transport`` replaces the network transport of
    every backend client (tests pass an httpx.MockTransport).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.contexts.close_all()
        if app.state.storage is not None:
            app.state.storage.close()

    app = FastAPI(
        title="Storefront API",
        description="Cart, session and order state for storefront clients",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.storage = storage
    app.state.contexts = ContextRegistry(
        lambda client_id: StorefrontContext(
            client_id,
            get_storage(),
            base_url=base_url,
            transport=transport,
            clock=clock,
        )
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    def get_storage() -> KeyValueStorage:
        if app.state.storage is None:
            app.state.storage = build_storage()
        return app.state.storage

    def get_context(
        request: Request,
        session_id: str = Header(..., alias=SESSION_HEADER, description="Client session identifier"),
    ):
        """The session's context, held exclusively for this request"""
        session_id = session_id.strip()
        if not session_id:
            raise HTTPException(status_code=400, detail="Session ID is required")

        ctx = app.state.contexts.acquire(session_id)
        request.state.session_role = ctx.role
        try:
            yield ctx
        finally:
            request.state.session_role = ctx.role
            app.state.contexts.release(ctx)

    def require_admin(ctx: StorefrontContext = Depends(get_context)) -> StorefrontContext:
        if not ctx.session.is_admin:
            raise HTTPException(status_code=403, detail=FORBIDDEN)
        return ctx

    # Health check

    @app.get("/health")
    def health_check():
        """Always 200 while the app runs; reports storage reachability."""
        storage_status = "healthy"
        latency_ms = None
        try:
            ping_start = time.time()
            if not get_storage().ping():
                storage_status = "unhealthy"
            latency_ms = round((time.time() - ping_start) * 1000, 2)
        except StorageConnectionError:
            storage_status = "unhealthy"

        return {
            "status": "healthy",
            "service": "storefront",
            "storage": {"status": storage_status, "latency_ms": latency_ms},
            "timestamp": time.time(),
        }

    # Session

    @app.get("/session")
    def get_session(ctx: StorefrontContext = Depends(get_context)):
        return session_view(ctx)

    @app.post("/auth/login")
    def login(request: LoginRequest, ctx: StorefrontContext = Depends(get_context)):
        ctx.login(request.email, request.password)
        return {**session_view(ctx), "cart": cart_view(ctx)}

    @app.post("/auth/register")
    def register(request: Registration, ctx: StorefrontContext = Depends(get_context)):
        ctx.register(request)
        return {**session_view(ctx), "cart": cart_view(ctx)}

    @app.post("/auth/logout")
    def logout(ctx: StorefrontContext = Depends(get_context)):
        ctx.logout()
        return {**session_view(ctx), "cart": cart_view(ctx)}

    @app.get("/auth/profile")
    def get_profile(ctx: StorefrontContext = Depends(get_context)):
        return ctx.fetch_profile().to_wire()

    @app.put("/auth/profile")
    def update_profile(request: ProfileUpdate, ctx: StorefrontContext = Depends(get_context)):
        return ctx.update_profile(request).to_wire()

    # Cart

    @app.get("/cart")
    def get_cart(ctx: StorefrontContext = Depends(get_context)):
        return cart_view(ctx)

    @app.post("/cart/items")
    def add_cart_item(request: AddItemRequest, ctx: StorefrontContext = Depends(get_context)):
        line = ctx.cart.add_item(
            {
                "_id": request.product_id,
                "name": request.name,
                "price": request.price,
                "image": request.image,
            },
            request.quantity,
        )
        return {**cart_view(ctx), "added": line is not None}

    @app.delete("/cart/items/{line_id}")
    def remove_cart_item(line_id: str, ctx: StorefrontContext = Depends(get_context)):
        removed = ctx.cart.remove_item(line_id)
        return {**cart_view(ctx), "removed": removed}

    @app.post("/cart/items/{line_id}/increase")
    def increase_cart_item(line_id: str, ctx: StorefrontContext = Depends(get_context)):
        ctx.cart.increase_quantity(line_id)
        return cart_view(ctx)

    @app.post("/cart/items/{line_id}/decrease")
    def decrease_cart_item(line_id: str, ctx: StorefrontContext = Depends(get_context)):
        ctx.cart.decrease_quantity(line_id)
        return cart_view(ctx)

    @app.delete("/cart")
    def clear_cart(ctx: StorefrontContext = Depends(get_context)):
        ctx.cart.clear_cart()
        return cart_view(ctx)

    @app.delete("/cart/all")
    def force_clear_cart_data(ctx: StorefrontContext = Depends(get_context)):
        removed = ctx.cart.force_clear_all_cart_data()
        return {**cart_view(ctx), "removed_records": removed}

    # Catalog

    @app.get("/products")
    def list_products(
        keyword: str = Query(""),
        category: str = Query(""),
        sort: SortOption = Query("newest"),
        page: int = Query(1, ge=1),
        limit: int = Query(Config.PRODUCT_PAGE_LIMIT, ge=1, le=100),
        ctx: StorefrontContext = Depends(get_context),
    ):
        query = ProductQuery(keyword=keyword, category=category, sort=sort, page=page, limit=limit)
        return ctx.products.list_products(query).to_wire()

    @app.get("/products/featured")
    def featured_products(ctx: StorefrontContext = Depends(get_context)):
        return [p.to_wire() for p in ctx.products.get_featured()]

    @app.get("/categories")
    def categories(ctx: StorefrontContext = Depends(get_context)):
        return ctx.products.get_categories()

    @app.get("/products/{product_id}/related")
    def related_products(
        product_id: str,
        category: str = Query(""),
        ctx: StorefrontContext = Depends(get_context),
    ):
        return [p.to_wire() for p in ctx.products.get_related(product_id, category)]

    @app.get("/products/{product_id}")
    def get_product(product_id: str, ctx: StorefrontContext = Depends(get_context)):
        product = ctx.products.get_product(product_id)
        can_review = ctx.session.is_authenticated and ctx.products.check_purchase(product_id)
        return {
            **product.to_wire(),
            "inCart": ctx.cart.is_in_cart(product_id),
            "canReview": can_review,
        }

    @app.post("/products/{product_id}/reviews")
    def create_review(
        product_id: str,
        request: ReviewDraft,
        ctx: StorefrontContext = Depends(get_context),
    ):
        message = ctx.products.create_review(product_id, request)
        return {"message": message, "product": ctx.products.get_product(product_id).to_wire()}

    # Checkout

    @app.get("/checkout/quote")
    def checkout_quote(ctx: StorefrontContext = Depends(get_context)):
        return ctx.checkout.quote().to_wire()

    @app.post("/checkout")
    def checkout(request: CheckoutRequest, ctx: StorefrontContext = Depends(get_context)):
        order = ctx.checkout.place_order(request.shipping_address, request.payment_method)
        return {"order": order_view(ctx, order), "cart": cart_view(ctx)}

    # Orders

    @app.get("/orders/mine")
    def my_orders(ctx: StorefrontContext = Depends(get_context)):
        return [order_view(ctx, o) for o in ctx.orders.fetch_my_orders()]

    @app.get("/orders/{order_id}")
    def get_order(order_id: str, ctx: StorefrontContext = Depends(get_context)):
        return order_view(ctx, ctx.orders.fetch_order(order_id))

    @app.post("/orders/{order_id}/{action}")
    def transition_order(
        order_id: str,
        action: Transition,
        request: Optional[TransitionRequest] = None,
        ctx: StorefrontContext = Depends(get_context),
    ):
        request = request or TransitionRequest()
        orders = ctx.orders

        if action is Transition.PAY:
            order = orders.pay_order(order_id, request.payment_result or PaymentResult())
        elif action is Transition.MARK_PAID:
            order = orders.mark_as_paid(order_id, request.admin_note)
        elif action is Transition.SHIP:
            order = orders.ship_order(order_id)
        elif action is Transition.DELIVER:
            order = orders.mark_delivered(order_id)
        elif action is Transition.CANCEL:
            order = orders.cancel_order(order_id)
        elif action is Transition.REFUND:
            order = orders.refund_order(order_id)
        else:
            raise HTTPException(status_code=405, detail="Use DELETE /admin/orders/{order_id}")

        return order_view(ctx, order)

    # Admin

    @app.get("/admin/orders")
    def all_orders(ctx: StorefrontContext = Depends(require_admin)):
        return [order_view(ctx, o) for o in ctx.orders.fetch_all_orders()]

    @app.delete("/admin/orders/{order_id}")
    def delete_order(order_id: str, ctx: StorefrontContext = Depends(require_admin)):
        ctx.orders.delete_order(order_id)
        return {"success": True, "order_id": order_id}

    @app.post("/admin/products", status_code=201)
    def create_product(request: ProductDraft, ctx: StorefrontContext = Depends(require_admin)):
        return ctx.products.create_product(request).to_wire()

    @app.put("/admin/products/{product_id}")
    def update_product(
        product_id: str,
        request: ProductDraft,
        ctx: StorefrontContext = Depends(require_admin),
    ):
        return ctx.products.update_product(product_id, request).to_wire()

    @app.delete("/admin/products/{product_id}")
    def delete_product(product_id: str, ctx: StorefrontContext = Depends(require_admin)):
        ctx.products.delete_product(product_id)
        return {"success": True, "product_id": product_id}

    @app.get("/admin/users")
    def list_users(ctx: StorefrontContext = Depends(require_admin)):
        return [
            {**u.to_wire(), "canPromote": ctx.can_promote(u)}
            for u in ctx.list_users()
        ]

    @app.get("/admin/users/{user_id}")
    def get_user(user_id: str, ctx: StorefrontContext = Depends(require_admin)):
        user = ctx.users.get_user(user_id)
        return {**user.to_wire(), "canPromote": ctx.can_promote(user)}

    @app.post("/admin/users/{user_id}/promote")
    def promote_user(user_id: str, ctx: StorefrontContext = Depends(require_admin)):
        user = ctx.promote_user(user_id)
        return {**user.to_wire(), "canPromote": ctx.can_promote(user)}

    @app.delete("/admin/users/{user_id}")
    def delete_user(user_id: str, ctx: StorefrontContext = Depends(require_admin)):
        ctx.delete_user(user_id)
        return {"success": True, "user_id": user_id}

    # Error handlers

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc: ValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation error",
                "message": exc.message,
                "field_errors": exc.field_errors,
            }
        )

    @app.exception_handler(TransitionNotAllowedError)
    async def transition_error_handler(request, exc: TransitionNotAllowedError):
        return JSONResponse(
            status_code=409,
            content={
                "error": "Transition not allowed",
                "message": f"Cannot {exc.transition} this order: {exc.reason}.",
                "transition": exc.transition,
            }
        )

    @app.exception_handler(SessionExpiredError)
    async def session_expired_handler(request, exc: SessionExpiredError):
        return JSONResponse(
            status_code=401,
            content={"error": "Session expired", "message": exc.message, "redirect": "/login"}
        )

    @app.exception_handler(NetworkError)
    async def network_error_handler(request, exc: NetworkError):
        return JSONResponse(
            status_code=503,
            content={"error": "Service unavailable", "message": exc.message, "retryable": True}
        )

    @app.exception_handler(ApiError)
    async def api_error_handler(request, exc: ApiError):
        status = exc.status_code if exc.status_code and 400 <= exc.status_code < 600 else 502
        return JSONResponse(
            status_code=status,
            content={
                "error": "Request failed",
                "message": exc.message,
                "field_errors": exc.field_errors,
                "retryable": status >= 500,
            }
        )

    @app.exception_handler(StorageConnectionError)
    async def storage_error_handler(request, exc):
        return JSONResponse(
            status_code=503,
            content={"error": "Service unavailable", "message": "Storage connection failed"}
        )

    # Generic exception handler for unhandled errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc):
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "Something went wrong on our side. Please try again.",
                "type": type(exc).__name__
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
