"""Pytest fixtures for storefront tests."""

import os
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront import events, models, schemas
from storefront.database import Base


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session for one test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clean_subscribers():
    """Start and end every test with no event subscribers."""
    events.clear_subscribers()
    yield
    events.clear_subscribers()


def make_user(db, name="Alice", email="alice@example.com", role="customer", points=0):
    user = models.User(name=name, email=email, role=role, points=points)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db, name="Bob", email="bob@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, name="Root", email="admin@example.com", role="admin")


@pytest.fixture
def filled_cart(db, user):
    """Cart with product A x2 at 100.00 and product B x1 at 50.00."""
    db.add_all([
        models.CartItem(user_id=user.id, product_id=1, quantity=2, price=Decimal("100.00")),
        models.CartItem(user_id=user.id, product_id=2, quantity=1, price=Decimal("50.00")),
    ])
    db.commit()
    return user


@pytest.fixture
def shipping():
    return schemas.ShippingDetails(
        address="Jl. Sudirman 1",
        city="Jakarta",
        state="DKI Jakarta",
        zip="10220",
        country="ID",
    )
