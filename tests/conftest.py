"""
Shared fixtures: a testing app on in-memory SQLite, seeded restaurants and
users, and bearer-token headers.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from fooddash import create_app, db
from fooddash.models import MenuItem, PromoCode, Restaurant, User
from fooddash.services.cart import CartRegistry
from fooddash.services.pricing import PricingPolicy
from fooddash.utils.auth import generate_tokens
from fooddash.utils.rate_limiter import rate_limit_store

# Service fee and tax off so totals are easy to reason about
FLAT_PRICING = PricingPolicy(
    service_fee_rate=Decimal("0"),
    tax_rate=Decimal("0"),
    default_delivery_fee=Decimal("2.49"),
)

# Public PayFast sandbox credentials
PAYFAST_TEST_CONFIG = {
    "PAYFAST_MERCHANT_ID": "10000100",
    "PAYFAST_MERCHANT_KEY": "46f0cd694581a",
    "PAYFAST_PASSPHRASE": "jt7NOE43FZPn",
    "PAYFAST_VALIDATE_ITN": False,
}


@pytest.fixture
def app():
    app = create_app("testing")
    app.config.update(PAYFAST_TEST_CONFIG)
    app.extensions["cart_registry"] = CartRegistry(pricing=FLAT_PRICING)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit_store.clear()
    yield
    rate_limit_store.clear()


def make_user(role, email, name):
    user = User(name=name, email=email, role=role, is_active=True)
    user.set_password("password123")
    db.session.add(user)
    return user


@pytest.fixture
def seed(app):
    """Ids of the seeded rows; ORM objects don't outlive the app context."""
    with app.app_context():
        customer = make_user("customer", "customer@example.com", "Thandi Customer")
        owner = make_user("restaurant", "owner@example.com", "Sipho Owner")
        rider = make_user("delivery_partner", "rider@example.com", "Lerato Rider")
        admin = make_user("admin", "admin@example.com", "Admin User")
        db.session.flush()

        burger_place = Restaurant(
            owner_id=owner.id,
            name="Burger Place",
            cuisine="Burgers",
            minimum_order=Decimal("0"),
            is_active=True,
        )
        curry_house = Restaurant(
            owner_id=owner.id,
            name="Curry House",
            cuisine="Indian",
            delivery_fee=Decimal("25.00"),
            minimum_order=Decimal("250.00"),
            is_active=True,
        )
        db.session.add_all([burger_place, curry_house])
        db.session.flush()

        burger = MenuItem(restaurant_id=burger_place.id, name="Classic Burger", price=Decimal("100.00"))
        fries = MenuItem(restaurant_id=burger_place.id, name="Fries", price=Decimal("35.00"))
        curry = MenuItem(restaurant_id=curry_house.id, name="Butter Chicken", price=Decimal("145.00"))

        now = datetime.utcnow()
        save10 = PromoCode(
            code="SAVE10",
            description="10% off",
            discount_type="percentage",
            discount_value=Decimal("10"),
            min_order_amount=Decimal("50"),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
        )
        big_spender = PromoCode(
            code="BIG500",
            discount_type="percentage",
            discount_value=Decimal("10"),
            min_order_amount=Decimal("500"),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
        )
        db.session.add_all([burger, fries, curry, save10, big_spender])
        db.session.commit()

        return {
            "customer_id": customer.id,
            "owner_id": owner.id,
            "rider_id": rider.id,
            "admin_id": admin.id,
            "restaurant_id": burger_place.id,
            "other_restaurant_id": curry_house.id,
            "burger_id": burger.id,
            "fries_id": fries.id,
            "curry_id": curry.id,
            "save10_id": save10.id,
        }


@pytest.fixture
def auth_headers(app):
    def _headers(user_id):
        with app.app_context():
            user = db.session.get(User, user_id)
            access_token, _ = generate_tokens(user)
        return {"Authorization": f"Bearer {access_token}"}

    return _headers
