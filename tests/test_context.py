"""Tests for StorefrontContext session flows."""

import pytest

from conftest import BASE_URL, NOW, make_order
from storefront.context import StorefrontContext, client_namespace
from storefront.exceptions import ApiError, SessionExpiredError
from storefront.models import Identity, ProfileUpdate, Registration, User
from storefront.order_lifecycle import Transition


def login_response(user_id="u1", is_admin=False, token="tok-u1"):
    return {
        "token": token,
        "_id": user_id,
        "name": "Casey",
        "email": "casey@example.com",
        "isAdmin": is_admin,
    }


@pytest.fixture
def ctx(storage, backend):
    context = StorefrontContext(
        "tab-1", storage, base_url=BASE_URL, transport=backend.transport, clock=lambda: NOW
    )
    return context.initialize()


class TestInitialize:
    def test_fresh_context_is_guest(self, ctx):
        assert ctx.user is None
        assert ctx.cart.identity.is_guest

    def test_state_is_namespaced_per_client(self, ctx, storage, backend, product):
        ctx.cart.add_item(product)

        other = StorefrontContext("tab-2", storage, base_url=BASE_URL, transport=backend.transport)
        other.initialize()

        assert other.cart.items == []
        assert client_namespace("tab-1") + ":cart:guest" in storage.data

    def test_restores_stored_session(self, ctx, storage, backend, product):
        backend.on("POST", "/auth/login", json=login_response())
        ctx.login("casey@example.com", "secret")
        ctx.cart.add_item(product, 2)
        ctx.teardown()

        reopened = StorefrontContext("tab-1", storage, base_url=BASE_URL, transport=backend.transport)
        reopened.initialize()

        assert reopened.user.id == "u1"
        assert reopened.cart.identity == Identity.user("u1")
        assert reopened.cart.item_count == 2

    def test_corrupt_session_starts_as_guest(self, storage, backend):
        namespace = client_namespace("tab-1")
        storage.set(namespace + ":session:token", "tok")
        storage.set(namespace + ":session:user", "not json")

        ctx = StorefrontContext("tab-1", storage, base_url=BASE_URL, transport=backend.transport)
        ctx.initialize()

        assert ctx.user is None
        assert ctx.cart.identity.is_guest

    def test_client_ids_sharing_a_prefix_stay_isolated(self, storage, backend, product):
        shopper = StorefrontContext("x:cart", storage, base_url=BASE_URL, transport=backend.transport)
        shopper.initialize()
        shopper.cart.add_item(product, 2)
        other = StorefrontContext("x", storage, base_url=BASE_URL, transport=backend.transport)
        other.initialize()

        assert other.cart.force_clear_all_cart_data() == 0

        reopened = StorefrontContext("x:cart", storage, base_url=BASE_URL, transport=backend.transport)
        reopened.initialize()
        assert reopened.cart.item_count == 2

    def test_namespace_is_fixed_length(self):
        assert len(client_namespace("x")) == len(client_namespace("x:cart:guest"))
        assert client_namespace("x") != client_namespace("X")


class TestAuthFlows:
    def test_login_switches_to_user_cart(self, ctx, backend, product):
        ctx.cart.add_item(product)
        backend.on("POST", "/auth/login", json=login_response())

        user = ctx.login("casey@example.com", "secret")

        assert user.id == "u1"
        assert ctx.session.token == "tok-u1"
        assert ctx.cart.identity == Identity.user("u1")
        assert ctx.cart.items == []

    def test_logout_returns_to_guest_cart(self, ctx, backend, product):
        ctx.cart.add_item(product)
        backend.on("POST", "/auth/login", json=login_response())
        backend.on("POST", "/auth/logout", json={"message": "ok"})
        ctx.login("casey@example.com", "secret")
        ctx.cart.add_item({"_id": "p2", "price": 5})

        ctx.logout()

        assert ctx.user is None
        assert ctx.cart.identity.is_guest
        assert [i.product_id for i in ctx.cart.items] == ["p1"]

    def test_logout_survives_backend_failure(self, ctx, backend):
        backend.on("POST", "/auth/login", json=login_response())
        backend.on("POST", "/auth/logout", status=500, json={})
        ctx.login("casey@example.com", "secret")

        ctx.logout()

        assert ctx.user is None

    def test_failed_login_leaves_guest_state(self, ctx, backend):
        backend.on("POST", "/auth/login", status=401, json={"message": "Invalid password"})

        with pytest.raises(ApiError) as exc:
            ctx.login("casey@example.com", "wrong")

        assert exc.value.field_errors == {"password": "Incorrect password"}
        assert ctx.user is None
        assert ctx.cart.identity.is_guest

    def test_login_without_token_is_rejected(self, ctx, backend):
        backend.on("POST", "/auth/login", json={"message": "ok"})

        with pytest.raises(ApiError) as exc:
            ctx.login("casey@example.com", "secret")

        assert exc.value.message == "Invalid login response"
        assert ctx.user is None

    def test_register_signs_in(self, ctx, backend):
        backend.on("POST", "/auth/register", status=201, json={
            "token": "tok-new",
            "user": {"_id": "u5", "name": "New", "email": "new@example.com"},
        })

        user = ctx.register(Registration(name="New", email="New@Example.com", password="secret1"))

        assert user.id == "u5"
        assert backend.body(backend.requests[0])["email"] == "new@example.com"
        assert ctx.cart.identity == Identity.user("u5")

    def test_update_profile_stores_reissued_token(self, ctx, backend):
        backend.on("POST", "/auth/login", json=login_response())
        backend.on("PUT", "/users/profile", json={
            "_id": "u1", "name": "Casey Jones", "email": "casey@example.com", "token": "tok-2",
        })
        ctx.login("casey@example.com", "secret")

        user = ctx.update_profile(ProfileUpdate(name="Casey Jones"))

        assert user.name == "Casey Jones"
        assert ctx.session.token == "tok-2"
        assert backend.body(backend.calls("PUT", "/users/profile")[0]) == {"name": "Casey Jones"}


class TestSessionExpiry:
    def test_expiry_switches_cart_and_leaves_notice(self, ctx, backend, product):
        backend.on("POST", "/auth/login", json=login_response())
        backend.on("GET", "/orders/myorders", status=401, json={"message": "jwt expired"})
        ctx.login("casey@example.com", "secret")
        ctx.cart.add_item(product)

        with pytest.raises(SessionExpiredError):
            ctx.orders.fetch_my_orders()

        assert ctx.user is None
        assert ctx.cart.identity.is_guest
        assert ctx.pop_expired_message() == "Please log in to continue."
        assert ctx.pop_expired_message() is None

    def test_expiry_during_optimistic_update_drops_admin_cache(self, ctx, backend):
        backend.on("POST", "/auth/login", json=login_response("a1", is_admin=True, token="tok-a1"))
        backend.on("PUT", "/orders/o1/mark-paid", status=401, json={"message": "jwt expired"})
        ctx.login("avery@example.com", "secret")
        ctx.orders.all_orders = [make_order(), make_order(_id="o2")]
        ctx.orders.current_order = ctx.orders.all_orders[0]

        with pytest.raises(SessionExpiredError):
            ctx.orders.mark_as_paid("o1")

        assert not ctx.session.is_authenticated
        assert ctx.orders.all_orders == []
        assert ctx.orders.current_order is None

    def test_user_cart_survives_expiry(self, ctx, backend, product):
        backend.on("POST", "/auth/login", json=login_response())
        backend.on("GET", "/auth/profile", status=401, json={})
        ctx.login("casey@example.com", "secret")
        ctx.cart.add_item(product, 4)

        with pytest.raises(SessionExpiredError):
            ctx.fetch_profile()
        ctx.login("casey@example.com", "secret")

        assert ctx.cart.item_count == 4


class TestAdmin:
    @pytest.fixture
    def admin_ctx(self, ctx, backend):
        backend.on("POST", "/auth/login", json=login_response("a1", is_admin=True, token="tok-a1"))
        ctx.login("avery@example.com", "secret")
        return ctx

    def test_actions_follow_actor(self, admin_ctx):
        assert admin_ctx.actions_for(make_order(isPaid=True)) == {
            Transition.SHIP, Transition.CANCEL, Transition.DELETE,
        }

    def test_promote_updates_list_and_can_promote(self, admin_ctx, backend):
        backend.on("GET", "/users", json=[
            {"_id": "u1", "name": "Casey", "isAdmin": False},
            {"_id": "a1", "name": "Avery", "isAdmin": True},
        ])
        backend.on("PUT", "/users/promote-to-admin", json={"message": "User promoted"})

        users = admin_ctx.list_users()
        assert [StorefrontContext.can_promote(u) for u in users] == [True, False]

        promoted = admin_ctx.promote_user("u1")

        assert promoted.is_admin
        assert promoted.name == "Casey"
        assert backend.body(backend.calls("PUT", "/users/promote-to-admin")[0]) == {"id": "u1"}
        assert not StorefrontContext.can_promote(admin_ctx.user_list[0])

    def test_delete_user_drops_from_list(self, admin_ctx, backend):
        admin_ctx.user_list = [User(id="u1"), User(id="u2")]
        backend.on("DELETE", "/users/u1", json={"message": "User removed"})

        admin_ctx.delete_user("u1")

        assert [u.id for u in admin_ctx.user_list] == ["u2"]
