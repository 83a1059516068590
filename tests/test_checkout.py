"""
Tests for cart quoting and the checkout orchestrator.
"""

from decimal import Decimal

import pytest

from fooddash import db
from fooddash.models import Order, OrderItem, Restaurant, User
from fooddash.services.cart import Cart, CartItem, CartRegistry
from fooddash.services.checkout import (
    CheckoutOrchestrator,
    CheckoutPersistenceError,
    EmptyCartError,
    MinimumOrderError,
    PaymentConfigurationError,
    PromoRejectedError,
    RestaurantUnavailableError,
    quote_cart,
)
from fooddash.services.payfast import verify_signature
from fooddash.services.recovery import get_payment_backup, get_pending_orders
from fooddash.services.storage import MemoryDocumentStorage

from tests.conftest import FLAT_PRICING


def burger_cart(seed, quantity=2):
    cart = Cart(pricing=FLAT_PRICING)
    cart.add_item(CartItem(
        menu_item_id=seed["burger_id"],
        name="Classic Burger",
        unit_price="100.00",
        restaurant_id=seed["restaurant_id"],
        restaurant_name="Burger Place",
        quantity=quantity,
    ))
    return cart


class TestQuoteCart:
    def test_save10_scenario(self, app, seed):
        with app.app_context():
            cart = burger_cart(seed)
            cart.apply_promo("SAVE10")

            quote = quote_cart(cart, FLAT_PRICING, user_id=seed["customer_id"])

            assert quote.subtotal == Decimal("200.00")
            assert quote.discount == Decimal("20.00")
            assert quote.delivery_fee == Decimal("2.49")
            assert quote.total == Decimal("182.49")
            assert quote.promo_error is None

    def test_below_promo_minimum_scenario(self, app, seed):
        with app.app_context():
            cart = burger_cart(seed)
            cart.apply_promo("BIG500")

            quote = quote_cart(cart, FLAT_PRICING, user_id=seed["customer_id"])

            assert quote.discount == Decimal("0.00")
            assert quote.total == Decimal("202.49")
            assert quote.promo_error == "Minimum order of R500.00 required"

    def test_empty_cart_scenario(self, app):
        with app.app_context():
            cart = Cart(pricing=FLAT_PRICING)
            quote = quote_cart(cart, FLAT_PRICING)

            assert cart.get_cart_total() == Decimal("0.00")
            assert cart.get_total_items() == 0
            assert quote.total == Decimal("0.00")

    def test_pickup_has_no_delivery_fee(self, app, seed):
        with app.app_context():
            quote = quote_cart(burger_cart(seed), FLAT_PRICING, fulfillment_type="pickup")
            assert quote.delivery_fee == Decimal("0.00")
            assert quote.total == Decimal("200.00")

    def test_restaurant_delivery_fee_wins(self, app, seed):
        with app.app_context():
            cart = Cart(pricing=FLAT_PRICING)
            cart.add_item(CartItem(
                menu_item_id=seed["curry_id"],
                name="Butter Chicken",
                unit_price="145.00",
                restaurant_id=seed["other_restaurant_id"],
                restaurant_name="Curry House",
                quantity=2,
            ))
            assert quote_cart(cart, FLAT_PRICING).delivery_fee == Decimal("25.00")


class TestCheckoutOrchestrator:
    def test_successful_checkout(self, app, seed):
        with app.app_context():
            cart = burger_cart(seed)
            cart.apply_promo("SAVE10")
            storage = MemoryDocumentStorage()
            user = db.session.get(User, seed["customer_id"])

            result = CheckoutOrchestrator(cart, app.config, storage).checkout(user)

            order = result.order
            assert order.status == "pending"
            assert order.payment_status == "pending"
            assert order.total == Decimal("182.49")
            assert order.discount == Decimal("20.00")
            assert order.promo_code_id == seed["save10_id"]
            assert order.order_number.startswith("ORD")
            assert len(order.items) == 1
            assert order.items[0].quantity == 2
            assert order.items[0].subtotal == Decimal("200.00")

            assert cart.is_empty
            assert cart.applied_promo_code is None

            assert str(order.id) in get_pending_orders(storage)
            assert get_payment_backup(storage, order.id)["total"] == "182.49"

    def test_redirect_payload(self, app, seed):
        with app.app_context():
            user = db.session.get(User, seed["customer_id"])
            result = CheckoutOrchestrator(burger_cart(seed), app.config, MemoryDocumentStorage()).checkout(user)
            fields = result.redirect.fields

            assert result.redirect.action_url == "https://sandbox.payfast.co.za/eng/process"
            assert list(fields)[:5] == ["merchant_id", "merchant_key", "return_url", "cancel_url", "notify_url"]
            assert fields["amount"] == "202.49"
            assert fields["m_payment_id"] == str(result.order.id)
            assert fields["name_first"] == "Thandi"
            assert fields["item_name"] == "Order from Burger Place"
            assert fields["item_description"] == "1 item(s)"
            assert fields["notify_url"].endswith("/api/payments/payfast/notify")
            assert verify_signature(fields, app.config["PAYFAST_PASSPHRASE"])

    def test_pickup_order_gets_code(self, app, seed):
        with app.app_context():
            user = db.session.get(User, seed["customer_id"])
            result = CheckoutOrchestrator(burger_cart(seed), app.config, MemoryDocumentStorage()).checkout(
                user, fulfillment_type="pickup"
            )
            assert result.order.fulfillment_type == "pickup"
            assert len(result.order.pickup_code) == 4
            assert result.order.total == Decimal("200.00")

    def test_empty_cart_refused(self, app, seed):
        with app.app_context():
            user = db.session.get(User, seed["customer_id"])
            with pytest.raises(EmptyCartError):
                CheckoutOrchestrator(Cart(pricing=FLAT_PRICING), app.config, MemoryDocumentStorage()).checkout(user)
            assert Order.query.count() == 0

    def test_rejected_promo_blocks_checkout(self, app, seed):
        with app.app_context():
            cart = burger_cart(seed)
            cart.apply_promo("BIG500")
            user = db.session.get(User, seed["customer_id"])

            with pytest.raises(PromoRejectedError):
                CheckoutOrchestrator(cart, app.config, MemoryDocumentStorage()).checkout(user)

            assert cart.get_total_items() == 2
            assert Order.query.count() == 0

    def test_restaurant_minimum(self, app, seed):
        with app.app_context():
            cart = Cart(pricing=FLAT_PRICING)
            cart.add_item(CartItem(
                menu_item_id=seed["curry_id"],
                name="Butter Chicken",
                unit_price="145.00",
                restaurant_id=seed["other_restaurant_id"],
                restaurant_name="Curry House",
            ))
            user = db.session.get(User, seed["customer_id"])

            with pytest.raises(MinimumOrderError) as excinfo:
                CheckoutOrchestrator(cart, app.config, MemoryDocumentStorage()).checkout(user)
            assert "R250.00" in str(excinfo.value)

    def test_inactive_restaurant(self, app, seed):
        with app.app_context():
            db.session.get(Restaurant, seed["restaurant_id"]).is_active = False
            db.session.commit()
            user = db.session.get(User, seed["customer_id"])

            with pytest.raises(RestaurantUnavailableError):
                CheckoutOrchestrator(burger_cart(seed), app.config, MemoryDocumentStorage()).checkout(user)

    def test_missing_payment_credentials(self, app, seed):
        with app.app_context():
            config = dict(app.config, PAYFAST_MERCHANT_ID="")
            user = db.session.get(User, seed["customer_id"])

            with pytest.raises(PaymentConfigurationError) as excinfo:
                CheckoutOrchestrator(burger_cart(seed), config, MemoryDocumentStorage()).checkout(user)
            assert excinfo.value.status_code == 503

    def test_failed_write_keeps_cart_and_rolls_back(self, app, seed):
        with app.app_context():
            cart = burger_cart(seed)
            # A line that cannot be written as an order item
            cart.add_item(CartItem(
                menu_item_id="not-a-number",
                name="Mystery",
                unit_price="1.00",
                restaurant_id=seed["restaurant_id"],
                restaurant_name="Burger Place",
            ))
            storage = MemoryDocumentStorage()
            user = db.session.get(User, seed["customer_id"])

            with pytest.raises(CheckoutPersistenceError) as excinfo:
                CheckoutOrchestrator(cart, app.config, storage).checkout(user)

            assert excinfo.value.retryable
            assert cart.get_total_items() == 3
            assert Order.query.count() == 0
            assert OrderItem.query.count() == 0
            assert get_pending_orders(storage) == {}

    def test_checkout_on_one_worker_empties_cart_on_others(self, app, seed):
        with app.app_context():
            shared = MemoryDocumentStorage()
            worker_a = CartRegistry(pricing=FLAT_PRICING, storage_factory=lambda uid: shared)
            worker_b = CartRegistry(pricing=FLAT_PRICING, storage_factory=lambda uid: shared)
            user = db.session.get(User, seed["customer_id"])

            worker_a.get(user.id).add_item(CartItem(
                menu_item_id=seed["burger_id"],
                name="Classic Burger",
                unit_price="100.00",
                restaurant_id=seed["restaurant_id"],
                restaurant_name="Burger Place",
            ))
            assert worker_b.get(user.id).get_total_items() == 1

            CheckoutOrchestrator(worker_a.get(user.id), app.config, shared).checkout(user)

            assert worker_b.get(user.id).is_empty
            with pytest.raises(EmptyCartError):
                CheckoutOrchestrator(worker_b.get(user.id), app.config, shared).checkout(user)
            assert Order.query.count() == 1
