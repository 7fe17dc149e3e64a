"""Tests for settling payments, points accrual and the double-payment guards."""

import threading
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from storefront import crud, events, models, orders, payments, schemas
from storefront.clients import cart, points
from storefront.database import Base
from storefront.errors import AlreadyPaidError, NotFoundError, PaymentDeclinedError


@pytest.fixture
def order(db, filled_cart, shipping):
    return orders.create_from_cart(db, filled_cart.id, shipping, "bank_transfer")


def payment_transactions(db, order_id):
    return db.query(models.Transaction).filter(
        models.Transaction.order_id == order_id,
        models.Transaction.type == "payment",
    ).all()


def decline(order, payment_details):
    return False, "insufficient funds"


class TestProcessPayment:
    def test_marks_order_paid(self, db, order):
        paid = payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert paid.is_paid is True
        assert paid.paid_at is not None
        assert paid.status == "processing"

    def test_records_payment_transaction(self, db, order, user):
        payments.process_payment(db, order.id, schemas.PaymentDetails(reference="GW-123"))

        [transaction] = payment_transactions(db, order.id)
        assert transaction.transaction_number.startswith("TRX-")
        assert transaction.amount == Decimal("260.00")
        assert transaction.status == "success"
        assert transaction.currency == "IDR"
        assert transaction.points_earned == 26
        assert transaction.payment_method == "bank_transfer"
        assert transaction.external_reference == "GW-123"
        assert transaction.user_id == user.id
        assert transaction.notes == f"Payment for order {order.order_number}"

    def test_credits_points(self, db, order, user):
        payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert points.get_user_points(db, user.id) == 26
        assert points.get_user_points_earned(db, user.id) == 26

    def test_stores_gateway_details(self, db, order):
        details = {"gateway": "midtrans", "va_number": "8808123"}
        payments.process_payment(db, order.id, schemas.PaymentDetails(details=details))

        [transaction] = payment_transactions(db, order.id)
        assert {d.key: d.value for d in transaction.details} == details

    def test_second_payment_rejected(self, db, order, user):
        payments.process_payment(db, order.id, schemas.PaymentDetails())

        with pytest.raises(AlreadyPaidError):
            payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert len(payment_transactions(db, order.id)) == 1
        assert points.get_user_points(db, user.id) == 26

    def test_missing_order(self, db, user):
        with pytest.raises(NotFoundError):
            payments.process_payment(db, 404, schemas.PaymentDetails())

    def test_declined_payment_changes_nothing(self, db, order, user):
        with pytest.raises(PaymentDeclinedError) as exc_info:
            payments.process_payment(db, order.id, schemas.PaymentDetails(), gateway=decline)

        assert exc_info.value.reason == "insufficient funds"
        reloaded = crud.get_order(db, order.id)
        assert reloaded.is_paid is False
        assert reloaded.paid_at is None
        assert reloaded.status == "pending"
        assert payment_transactions(db, order.id) == []
        assert points.get_user_points(db, user.id) == 0

    def test_lost_claim_raises_already_paid(self, db, order, user):
        def concurrent_payer(db_order, payment_details):
            # another request marks the order paid between our check and our claim
            db.execute(
                update(models.Order)
                .where(models.Order.id == db_order.id)
                .values(is_paid=True, paid_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            return True, None

        with pytest.raises(AlreadyPaidError):
            payments.process_payment(db, order.id, schemas.PaymentDetails(), gateway=concurrent_payer)

        assert payment_transactions(db, order.id) == []
        assert points.get_user_points(db, user.id) == 0

    def test_store_rejects_second_successful_payment(self, db, order, user):
        db.add(models.Transaction(
            transaction_number="TRX-legacy",
            user_id=user.id,
            order_id=order.id,
            type="payment",
            amount=Decimal("260.00"),
            payment_method="bank_transfer",
            status="success",
            currency="IDR",
            points_earned=0,
        ))
        db.commit()

        with pytest.raises(AlreadyPaidError):
            payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert len(payment_transactions(db, order.id)) == 1
        assert crud.get_order(db, order.id).is_paid is False
        assert points.get_user_points(db, user.id) == 0

    def test_points_accumulate_across_orders(self, db, order, user, shipping):
        db.add(models.CartItem(user_id=user.id, product_id=5, quantity=3, price=Decimal("33.33")))
        db.commit()
        second = orders.create_from_cart(db, user.id, shipping, "credit_card")

        payments.process_payment(db, order.id, schemas.PaymentDetails())
        payments.process_payment(db, second.id, schemas.PaymentDetails())

        # 260.00 -> 26, 109.99 -> 10
        assert points.get_user_points(db, user.id) == 36

    def test_paid_event(self, db, order):
        received = []
        events.subscribe(events.ORDER_PAID, lambda event_type, payload: received.append(payload))

        payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert len(received) == 1
        assert received[0]["order_id"] == order.id
        assert received[0]["amount"] == "260.00"
        assert received[0]["points_earned"] == 26

    def test_paid_logged_on_timeline(self, db, order):
        payments.process_payment(db, order.id, schemas.PaymentDetails())

        assert [e.event_type for e in crud.get_order_events(db, order.id)] == ["created", "paid"]


class TestCalculatePoints:
    @pytest.mark.parametrize("amount,expected", [
        (Decimal("260.00"), 26),
        (Decimal("259.99"), 25),
        (Decimal("9.99"), 0),
        (Decimal("0.00"), 0),
    ])
    def test_ten_percent_rounded_down(self, amount, expected):
        assert payments.calculate_points(amount) == expected


class TestPointLedger:
    def test_add_points_to_missing_user(self, db):
        with pytest.raises(NotFoundError):
            points.add_points(db, 12345, 10)

    def test_add_points_increments(self, db, user):
        points.add_points(db, user.id, 5)
        refreshed = points.add_points(db, user.id, 7)
        db.commit()

        assert refreshed.points == 12
        assert points.get_user_points(db, user.id) == 12


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file database, so each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def run_concurrently(session_factory, order_ids):
    """Pay each order from its own thread and session; returns the raised errors."""
    barrier = threading.Barrier(len(order_ids))
    raised = []

    def pay(order_id):
        session = session_factory()
        try:
            barrier.wait()
            payments.process_payment(session, order_id, schemas.PaymentDetails())
        except Exception as e:
            raised.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=pay, args=(order_id,)) for order_id in order_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return raised


class TestConcurrentPayments:
    @pytest.fixture
    def two_orders(self, file_sessions, shipping):
        session = file_sessions()
        buyer = models.User(name="Alice", email="alice@example.com", role="customer", points=0)
        session.add(buyer)
        session.commit()

        cart.add_to_cart(session, buyer.id, 1, 2, Decimal("100.00"))
        cart.add_to_cart(session, buyer.id, 2, 1, Decimal("50.00"))
        first = orders.create_from_cart(session, buyer.id, shipping, "bank_transfer")
        cart.add_to_cart(session, buyer.id, 3, 1, Decimal("90.00"))
        second = orders.create_from_cart(session, buyer.id, shipping, "bank_transfer")

        ids = (buyer.id, first.id, second.id)
        session.close()
        return ids

    def test_parallel_payments_credit_all_points(self, file_sessions, two_orders):
        buyer_id, first_id, second_id = two_orders

        raised = run_concurrently(file_sessions, [first_id, second_id])

        assert raised == []
        check = file_sessions()
        assert points.get_user_points(check, buyer_id) == 36
        assert points.get_user_points_earned(check, buyer_id) == 36
        check.close()

    def test_parallel_payments_of_one_order(self, file_sessions, two_orders):
        buyer_id, first_id, _ = two_orders

        raised = run_concurrently(file_sessions, [first_id, first_id])

        assert len(raised) == 1
        assert isinstance(raised[0], AlreadyPaidError)
        check = file_sessions()
        assert len(payment_transactions(check, first_id)) == 1
        assert points.get_user_points(check, buyer_id) == 26
        check.close()
