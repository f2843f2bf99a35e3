"""
Storefront context: the state of one client session.

A context owns the session credentials, the persisted cart, the order
cache and the backend client for a single client (one browser tab).
Contexts are built explicitly, initialized once, and torn
down when the client goes away; nothing here is a module-level singleton.
"""
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

import httpx

from storefront.api_client import ApiClient
from storefront.auth_service import AuthService
from storefront.cart_service import CartService
from storefront.checkout_service import CheckoutService
from storefront.config import Config
from storefront.exceptions import ApiError, StorageConnectionError
from storefront.models import Identity, Order, ProfileUpdate, Registration, User
from storefront.order_lifecycle import Transition, available_actions, utcnow
from storefront.order_service import OrderService
from storefront.order_store import OrderStore
from storefront.product_service import ProductService
from storefront.session import SessionStore
from storefront.storage import KeyValueStorage
from storefront.user_service import UserService

logger = logging.getLogger(__name__)


def client_namespace(client_id: str) -> str:
    """Storage namespace of a client: a fixed-length digest, so no id can prefix another's keys"""
    return "client:" + hashlib.sha256(client_id.encode()).hexdigest()


class StorefrontContext:
    """Application-scoped state container for one client session"""

    def __init__(
        self,
        client_id: str,
        storage: KeyValueStorage,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client_id = client_id
        self.storage = storage.namespaced(client_namespace(client_id))
        self.clock = clock

        self.session = SessionStore(self.storage)
        self.api = ApiClient(self.session, base_url=base_url, transport=transport)
        self.auth = AuthService(self.api)
        self.products = ProductService(self.api)
        self.users = UserService(self.api)
        self.cart = CartService(self.storage)
        self.orders = OrderStore(OrderService(self.api), self.session, clock=clock)
        self.checkout = CheckoutService(self.cart, self.orders)

        self.user_list: List[User] = []
        self.expired_message: Optional[str] = None
        self.initialized = False
        # Held for the duration of each request against this context
        self.lock = threading.Lock()

    @property
    def user(self) -> Optional[User]:
        return self.session.user

    @property
    def role(self) -> str:
        """guest, customer or admin"""
        if not self.session.is_authenticated:
            return "guest"
        return "admin" if self.session.is_admin else "customer"

    def initialize(self) -> "StorefrontContext":
        """Restore the stored session and activate the matching cart."""
        if self.initialized:
            return self
        self.session.subscribe(self._on_session_expired)
        self.session.initialize()
        self.cart.set_active_identity(self.session.identity)
        self.initialized = True
        return self

    def teardown(self) -> None:
        """Persist the active cart and release the backend client."""
        self.cart.save()
        self.api.close()
        self.initialized = False

    # Authentication flows

    def login(self, email: str, password: str) -> User:
        try:
            token, user = self.auth.login(email, password)
        except ApiError:
            self._sign_out()
            raise
        return self._sign_in(token, user)

    def register(self, registration: Registration) -> User:
        try:
            token, user = self.auth.register(registration)
        except ApiError:
            self._sign_out()
            raise
        return self._sign_in(token, user)

    def logout(self) -> None:
        if self.session.is_authenticated:
            self.auth.logout()
        self._sign_out()

    def fetch_profile(self) -> User:
        user = self.auth.get_profile()
        self.session.update_user(user)
        self.cart.set_active_identity(Identity.user(user.id))
        return user

    def update_profile(self, update: ProfileUpdate) -> User:
        user, token = self.auth.update_profile(update)
        self.session.update_user(user, token or None)
        self.cart.set_active_identity(Identity.user(user.id))
        return user

    def pop_expired_message(self) -> Optional[str]:
        """The pending session-expired notice, consumed once"""
        message, self.expired_message = self.expired_message, None
        return message

    # Orders

    def actions_for(self, order: Order) -> Set[Transition]:
        user_id = self.user.id if self.user else None
        return available_actions(order, self.orders.actor, self.clock(), user_id)

    # Admin user management

    @staticmethod
    def can_promote(user: User) -> bool:
        return not user.is_admin

    def list_users(self) -> List[User]:
        self.user_list = self.users.list_users()
        return self.user_list

    def delete_user(self, user_id: str) -> None:
        self.users.delete_user(user_id)
        self.user_list = [u for u in self.user_list if u.id != user_id]

    def promote_user(self, user_id: str) -> User:
        promoted = self.users.promote_to_admin(user_id)
        if promoted is None:
            known = next((u for u in self.user_list if u.id == user_id), None)
            promoted = known or User(id=user_id)
        if not promoted.is_admin:
            promoted = promoted.model_copy(update={"is_admin": True})
        self.user_list = [promoted if u.id == user_id else u for u in self.user_list]
        return promoted

    # Internals

    def _sign_in(self, token: str, user: User) -> User:
        self.session.start(token, user)
        self.orders.reset()
        self.cart.set_active_identity(Identity.user(user.id))
        logger.info("Signed in", extra={"admin": user.is_admin})
        return user

    def _sign_out(self) -> None:
        self.session.clear()
        self.orders.reset()
        self.user_list = []
        self.cart.set_active_identity(Identity.guest())

    def _on_session_expired(self, message: str) -> None:
        self.expired_message = message
        self.orders.reset()
        self.user_list = []
        self.cart.set_active_identity(Identity.guest())


class ContextRegistry:
    """
    Live contexts by client id.

    At most ``max_contexts`` are kept; the least recently used ones, and
    any idle for longer than ``idle_seconds``, are torn down. A torn-down
    client keeps its session and cart in storage and is rebuilt on its
    next request. Each acquired context stays locked until released, so
    requests for one client run one at a time.
    """

    def __init__(
        self,
        factory: Callable[[str], StorefrontContext],
        max_contexts: int = Config.MAX_CONTEXTS,
        idle_seconds: float = Config.CONTEXT_IDLE_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.max_contexts = max_contexts
        self.idle_seconds = idle_seconds
        self.monotonic = monotonic
        self._contexts: "OrderedDict[str, StorefrontContext]" = OrderedDict()
        self._last_used: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._contexts

    def acquire(self, client_id: str) -> StorefrontContext:
        """The client's context, created on first use, with its lock held"""
        while True:
            with self._lock:
                ctx = self._contexts.get(client_id)
                if ctx is None:
                    ctx = self.factory(client_id).initialize()
                    self._contexts[client_id] = ctx
                self._touch(client_id)
                self._evict(keep=client_id)

            ctx.lock.acquire()
            if ctx.initialized:
                return ctx
            # Evicted between lookup and lock; build a fresh one
            ctx.lock.release()

    def release(self, ctx: StorefrontContext) -> None:
        with self._lock:
            if self._contexts.get(ctx.client_id) is ctx:
                self._touch(ctx.client_id)
        ctx.lock.release()

    def close_all(self) -> None:
        with self._lock:
            for client_id in list(self._contexts):
                self._teardown(client_id)

    def _touch(self, client_id: str) -> None:
        self._contexts.move_to_end(client_id)
        self._last_used[client_id] = self.monotonic()

    def _evict(self, keep: str) -> None:
        now = self.monotonic()
        for client_id in list(self._contexts):
            if client_id == keep:
                continue
            over_limit = len(self._contexts) > self.max_contexts
            idle = bool(self.idle_seconds) and now - self._last_used[client_id] > self.idle_seconds
            if not (over_limit or idle):
                break
            ctx = self._contexts[client_id]
            if not ctx.lock.acquire(blocking=False):
                continue
            try:
                self._teardown(client_id)
            finally:
                ctx.lock.release()

    def _teardown(self, client_id: str) -> None:
        ctx = self._contexts.pop(client_id)
        self._last_used.pop(client_id, None)
        try:
            ctx.teardown()
        except StorageConnectionError as e:
            logger.warning(f"Could not persist evicted context: {e}")
            ctx.initialized = False
        logger.info(f"Context released; {len(self._contexts)} live")
