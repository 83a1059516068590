"""
Tests for PayFast signatures, the redirect form and ITN handling.
"""

from collections import OrderedDict
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from fooddash import db
from fooddash.models import Order, PromoCode, PromoCodeUsage, User
from fooddash.services.cart import Cart, CartItem
from fooddash.services.checkout import CheckoutOrchestrator
from fooddash.services.order_status import order_topic
from fooddash.services.payfast import (
    InvalidNotificationError,
    PaymentRedirect,
    generate_signature,
    handle_itn,
    render_redirect_form,
    validate_with_server,
    verify_signature,
)
from fooddash.services.storage import MemoryDocumentStorage

from tests.conftest import FLAT_PRICING


def place_order(app, seed, promo=None):
    """Check out two burgers and return the new order id."""
    cart = Cart(pricing=FLAT_PRICING)
    cart.add_item(CartItem(
        menu_item_id=seed["burger_id"],
        name="Classic Burger",
        unit_price="100.00",
        restaurant_id=seed["restaurant_id"],
        restaurant_name="Burger Place",
        quantity=2,
    ))
    if promo:
        cart.apply_promo(promo)
    user = db.session.get(User, seed["customer_id"])
    result = CheckoutOrchestrator(cart, app.config, MemoryDocumentStorage()).checkout(user)
    return result.order.id


def itn_form(app, order_id, payment_status="COMPLETE", amount="182.49", **overrides):
    form = OrderedDict()
    form["m_payment_id"] = str(order_id)
    form["pf_payment_id"] = "1089250"
    form["payment_status"] = payment_status
    form["item_name"] = "Order from Burger Place"
    form["amount_gross"] = amount
    form["amount_fee"] = "-4.20"
    form["amount_net"] = "178.29"
    form["name_first"] = "Thandi"
    form["email_address"] = "customer@example.com"
    form["merchant_id"] = app.config["PAYFAST_MERCHANT_ID"]
    form.update(overrides)
    form["signature"] = generate_signature(form, app.config["PAYFAST_PASSPHRASE"])
    return form


class TestSignature:
    def test_verify_generated_signature(self):
        data = OrderedDict([("merchant_id", "10000100"), ("amount", "10.00"), ("item_name", "Order #1")])
        data["signature"] = generate_signature(data, "secret")
        assert verify_signature(data, "secret")

    def test_tampering_is_detected(self):
        data = OrderedDict([("merchant_id", "10000100"), ("amount", "10.00")])
        data["signature"] = generate_signature(data, "secret")
        data["amount"] = "1.00"
        assert not verify_signature(data, "secret")

    def test_passphrase_changes_signature(self):
        data = {"merchant_id": "10000100", "amount": "10.00"}
        assert generate_signature(data, "one") != generate_signature(data, "two")
        assert generate_signature(data) != generate_signature(data, "one")

    def test_blank_fields_skipped(self):
        with_blank = OrderedDict([("a", "1"), ("b", ""), ("c", "3")])
        without_blank = OrderedDict([("a", "1"), ("c", "3")])
        assert generate_signature(with_blank) == generate_signature(without_blank)

    def test_sorted_variant_accepted(self):
        data = OrderedDict([("b", "2"), ("a", "1")])
        data["signature"] = generate_signature(data, "secret", sort_keys=True)
        assert verify_signature(data, "secret")

    def test_missing_signature(self):
        assert not verify_signature({"a": "1"}, "secret")


class TestRedirectForm:
    def test_form_escapes_values(self):
        redirect = PaymentRedirect(
            action_url="https://sandbox.payfast.co.za/eng/process",
            fields=OrderedDict([("item_name", 'Order from "Joe\'s" <Grill>')]),
        )
        html = render_redirect_form(redirect)
        assert 'action="https://sandbox.payfast.co.za/eng/process"' in html
        assert "&lt;Grill&gt;" in html
        assert "<Grill>" not in html


class TestValidateWithServer:
    def test_valid_response(self):
        response = MagicMock(status_code=200, text="VALID")
        with patch("fooddash.services.payfast.requests.post", return_value=response) as post:
            assert validate_with_server({"a": "1", "signature": "x"}, sandbox=True)
        url = post.call_args[0][0]
        assert url == "https://sandbox.payfast.co.za/eng/query/validate"
        assert "signature" not in post.call_args[1]["data"]

    def test_network_error(self):
        with patch("fooddash.services.payfast.requests.post", side_effect=requests.ConnectionError()):
            assert not validate_with_server({"a": "1"}, sandbox=False)


class TestHandleItn:
    def test_complete_confirms_order(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed, promo="SAVE10")
            received = []
            app.extensions["change_feed"].subscribe(order_topic(order_id), received.append)

            order = handle_itn(itn_form(app, order_id), app.config)

            assert order.status == "confirmed"
            assert order.payment_status == "paid"
            assert order.payment_reference == "1089250"
            assert received[-1]["status"] == "confirmed"

            promo = db.session.get(PromoCode, seed["save10_id"])
            assert promo.usage_count == 1
            usage = PromoCodeUsage.query.filter_by(order_id=order_id).one()
            assert usage.discount_applied == Decimal("20.00")

    def test_duplicate_complete_is_ignored(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed, promo="SAVE10")
            handle_itn(itn_form(app, order_id), app.config)
            handle_itn(itn_form(app, order_id), app.config)

            assert PromoCodeUsage.query.filter_by(order_id=order_id).count() == 1
            assert db.session.get(PromoCode, seed["save10_id"]).usage_count == 1

    def test_cancelled_payment(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            order = handle_itn(itn_form(app, order_id, payment_status="CANCELLED", amount="202.49"), app.config)

            assert order.status == "cancelled"
            assert order.payment_status == "failed"

    def test_confirmation_emails_customer_and_restaurant(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            with app.extensions["mail"].record_messages() as outbox:
                handle_itn(itn_form(app, order_id, amount="202.49"), app.config)

            subjects = sorted(msg.subject for msg in outbox)
            order = db.session.get(Order, order_id)
            assert subjects == [
                f"New Order Received - {order.order_number}",
                f"Order Confirmed - {order.order_number}",
            ]
            assert "R202.49" in outbox[0].html

    def test_cancellation_email(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            with app.extensions["mail"].record_messages() as outbox:
                handle_itn(itn_form(app, order_id, payment_status="FAILED", amount="202.49"), app.config)

            assert len(outbox) == 1
            assert outbox[0].subject.startswith("Order Cancelled")

    def test_pending_status_needs_no_action(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            assert handle_itn(itn_form(app, order_id, payment_status="PENDING", amount="202.49"), app.config) is None
            assert db.session.get(Order, order_id).status == "pending"

    def test_wrong_merchant(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            with pytest.raises(InvalidNotificationError, match="merchant"):
                handle_itn(itn_form(app, order_id, amount="202.49", merchant_id="999"), app.config)

    def test_bad_signature(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            form = itn_form(app, order_id, amount="202.49")
            form["signature"] = "0" * 32
            with pytest.raises(InvalidNotificationError, match="signature"):
                handle_itn(form, app.config)

    def test_amount_mismatch(self, app, seed):
        with app.app_context():
            order_id = place_order(app, seed)
            with pytest.raises(InvalidNotificationError, match="Amount"):
                handle_itn(itn_form(app, order_id, amount="1.00"), app.config)
            assert db.session.get(Order, order_id).payment_status == "pending"

    def test_unknown_order(self, app, seed):
        with app.app_context():
            with pytest.raises(InvalidNotificationError, match="Unknown order"):
                handle_itn(itn_form(app, 9999), app.config)
