"""Tests for creating orders from carts and moving them through statuses."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from storefront import crud, events, models, orders
from storefront.clients import cart
from storefront.errors import EmptyCartError, NotFoundError, PersistenceError


def count(db, model):
    return db.query(model).count()


def raise_storage_error(*args, **kwargs):
    raise SQLAlchemyError("disk full")


class TestCreateFromCart:
    def test_total_is_items_plus_shipping(self, db, filled_cart, shipping):
        order = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert order.total_amount == Decimal("260.00")
        assert order.shipping_price == Decimal("10.00")
        assert order.status == models.OrderStatus.PENDING
        assert order.is_paid is False
        assert order.paid_at is None
        assert order.payment_method == "bank_transfer"
        assert order.shipping_city == "Jakarta"

    def test_cart_is_empty_afterwards(self, db, filled_cart, shipping):
        orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert cart.get_user_cart_items(db, filled_cart.id) == []

    def test_items_snapshot_cart_prices(self, db, filled_cart, shipping):
        order = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")
        loaded = orders.get_order_with_items(db, order.id)

        lines = [(i.product_id, i.quantity, i.unit_price, i.total_price) for i in loaded.items]
        assert lines == [
            (1, 2, Decimal("100.00"), Decimal("200.00")),
            (2, 1, Decimal("50.00"), Decimal("50.00")),
        ]
        assert sum(i.total_price for i in loaded.items) + loaded.shipping_price == loaded.total_amount
        assert loaded.user.email == "alice@example.com"

    def test_order_numbers_are_unique(self, db, filled_cart, shipping):
        first = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")
        cart.add_to_cart(db, filled_cart.id, 3, 1, Decimal("5.00"))
        second = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert first.order_number.startswith("ORD-")
        assert second.order_number.startswith("ORD-")
        assert first.order_number != second.order_number

    def test_empty_cart_raises(self, db, user, shipping):
        with pytest.raises(EmptyCartError):
            orders.create_from_cart(db, user.id, shipping, "bank_transfer")

        assert count(db, models.Order) == 0
        assert count(db, models.OrderItem) == 0

    def test_failure_leaves_nothing_behind(self, db, filled_cart, shipping, monkeypatch):
        monkeypatch.setattr(crud, "log_order_event", raise_storage_error)

        with pytest.raises(PersistenceError):
            orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert count(db, models.Order) == 0
        assert count(db, models.OrderItem) == 0
        assert len(cart.get_user_cart_items(db, filled_cart.id)) == 2

    def test_line_added_during_checkout_stays_in_cart(self, db, filled_cart, shipping):
        def add_line_then_charge(lines):
            db.add(models.CartItem(user_id=filled_cart.id, product_id=99, quantity=1, price=Decimal("9.00")))
            db.flush()
            return Decimal("10.00")

        order = orders.create_from_cart(
            db, filled_cart.id, shipping, "bank_transfer", shipping_policy=add_line_then_charge
        )

        loaded = orders.get_order_with_items(db, order.id)
        assert [i.product_id for i in loaded.items] == [1, 2]
        assert order.total_amount == Decimal("260.00")
        assert [line.product_id for line in cart.get_user_cart_items(db, filled_cart.id)] == [99]

    def test_shipping_policy_is_pluggable(self, db, filled_cart, shipping):
        order = orders.create_from_cart(
            db, filled_cart.id, shipping, "bank_transfer",
            shipping_policy=lambda lines: Decimal("0.00"),
        )

        assert order.total_amount == Decimal("250.00")
        assert order.shipping_price == Decimal("0.00")

    def test_created_event_published_after_commit(self, db, filled_cart, shipping):
        received = []
        events.subscribe(events.ORDER_CREATED, lambda event_type, payload: received.append(payload))

        order = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert received == [{
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": filled_cart.id,
            "status": "pending",
        }]

    def test_no_event_when_rolled_back(self, db, filled_cart, shipping, monkeypatch):
        received = []
        events.subscribe(events.ORDER_CREATED, lambda event_type, payload: received.append(payload))
        monkeypatch.setattr(crud, "log_order_event", raise_storage_error)

        with pytest.raises(PersistenceError):
            orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        assert received == []

    def test_timeline_records_creation(self, db, filled_cart, shipping):
        order = orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")

        timeline = crud.get_order_events(db, order.id)
        assert [e.event_type for e in timeline] == ["created"]
        assert timeline[0].new_value == "pending"


@pytest.fixture
def order(db, filled_cart, shipping):
    return orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")


class TestUpdateStatus:
    def test_sets_status(self, db, order):
        updated = orders.update_status(db, order.id, "shipped")

        assert updated.status == "shipped"
        assert updated.is_delivered is False
        assert updated.delivered_at is None

    def test_delivered_marks_delivery(self, db, order):
        updated = orders.update_status(db, order.id, "delivered")

        assert updated.status == "delivered"
        assert updated.is_delivered is True
        assert updated.delivered_at is not None

    def test_redelivery_keeps_delivered_at(self, db, order):
        first = orders.update_status(db, order.id, "delivered").delivered_at
        second = orders.update_status(db, order.id, "delivered").delivered_at

        assert second == first

    def test_leaving_delivered_clears_delivery(self, db, order):
        orders.update_status(db, order.id, "delivered")
        updated = orders.update_status(db, order.id, "cancelled")

        assert updated.is_delivered is False
        assert updated.delivered_at is None

    def test_missing_order(self, db, user):
        with pytest.raises(NotFoundError):
            orders.update_status(db, 999, "shipped")

    def test_unknown_status(self, db, order):
        with pytest.raises(ValueError):
            orders.update_status(db, order.id, "lost")

    def test_status_change_logged_and_published(self, db, order):
        received = []
        events.subscribe(events.ORDER_STATUS_CHANGED, lambda event_type, payload: received.append(payload))

        orders.update_status(db, order.id, "shipped")

        timeline = crud.get_order_events(db, order.id)
        assert timeline[-1].event_type == "status_changed"
        assert (timeline[-1].old_value, timeline[-1].new_value) == ("pending", "shipped")
        assert received[0]["old_status"] == "pending"
        assert received[0]["new_status"] == "shipped"


class TestReadAndDelete:
    def test_get_missing_order(self, db):
        with pytest.raises(NotFoundError):
            orders.get_order_with_items(db, 42)

    def test_soft_delete_hides_order(self, db, order):
        orders.soft_delete_order(db, order.id)

        assert crud.get_order(db, order.id) is None
        assert crud.get_user_orders(db, order.user_id) == []
        assert db.get(models.Order, order.id).deleted_at is not None

    def test_soft_delete_twice(self, db, order):
        orders.soft_delete_order(db, order.id)

        with pytest.raises(NotFoundError):
            orders.soft_delete_order(db, order.id)

    def test_user_orders_newest_first(self, db, order, shipping):
        cart.add_to_cart(db, order.user_id, 9, 1, Decimal("1.00"))
        newer = orders.create_from_cart(db, order.user_id, shipping, "cash")

        assert [o.id for o in crud.get_user_orders(db, order.user_id)] == [newer.id, order.id]


class TestCartClient:
    def test_update_quantity_replaces(self, db, filled_cart):
        line = cart.get_user_cart_items(db, filled_cart.id)[0]

        updated = cart.update_quantity(db, line.id, 7)

        assert updated.quantity == 7
        assert cart.get_user_cart_items(db, filled_cart.id)[0].quantity == 7

    def test_remove_cart_item(self, db, filled_cart):
        first, second = cart.get_user_cart_items(db, filled_cart.id)

        cart.remove_cart_item(db, first.id)

        assert cart.get_user_cart_items(db, filled_cart.id) == [second]

    def test_missing_line(self, db, user):
        with pytest.raises(NotFoundError):
            cart.update_quantity(db, 4242, 1)
        with pytest.raises(NotFoundError):
            cart.remove_cart_item(db, 4242)

    def test_clear_only_given_lines(self, db, filled_cart):
        first, second = cart.get_user_cart_items(db, filled_cart.id)

        cart.clear_user_cart(db, filled_cart.id, [first.id])
        db.commit()

        assert [line.id for line in cart.get_user_cart_items(db, filled_cart.id)] == [second.id]
