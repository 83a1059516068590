"""
PayFast hosted payment page integration.

Outbound: the checkout builds a form that the browser POSTs to PayFast.
Inbound: PayFast calls the ITN (Instant Transaction Notification) endpoint
with the payment outcome, which moves the order to confirmed or cancelled.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional
from urllib.parse import quote_plus

import requests
from markupsafe import escape
from sqlalchemy.exc import SQLAlchemyError

from fooddash import db
from fooddash.models.order import Order
from fooddash.services.order_status import publish_order_change
from fooddash.services.promo import record_usage
from fooddash.utils.email_service import (
    send_new_order_notification_to_restaurant,
    send_order_cancelled_email,
    send_order_confirmation_email,
)
from fooddash.utils.money import format_amount, to_money

logger = logging.getLogger(__name__)

LIVE_PROCESS_URL = "https://www.payfast.co.za/eng/process"
SANDBOX_PROCESS_URL = "https://sandbox.payfast.co.za/eng/process"
LIVE_VALIDATE_URL = "https://www.payfast.co.za/eng/query/validate"
SANDBOX_VALIDATE_URL = "https://sandbox.payfast.co.za/eng/query/validate"

ITN_PATH = "/api/payments/payfast/notify"
VALIDATE_TIMEOUT = 10


class InvalidNotificationError(Exception):
    """Raised when an ITN fails a merchant, signature or amount check."""


@dataclass
class PaymentRedirect:
    action_url: str
    fields: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    method: str = "POST"

    def to_dict(self) -> dict:
        return {"action_url": self.action_url, "method": self.method, "fields": dict(self.fields)}


def _encode(value) -> str:
    return quote_plus(str(value).strip())


def generate_signature(
    data: Mapping[str, object],
    passphrase: Optional[str] = None,
    include_blank: bool = False,
    sort_keys: bool = False,
) -> str:
    keys = sorted(data) if sort_keys else list(data)
    parts = []
    for key in keys:
        if key == "signature":
            continue
        value = data[key]
        if value is None or (str(value).strip() == "" and not include_blank):
            continue
        parts.append(f"{key}={_encode(value)}")
    param_string = "&".join(parts)
    if passphrase:
        param_string = f"{param_string}&passphrase={_encode(passphrase)}"
    return hashlib.md5(param_string.encode("utf-8")).hexdigest()


def verify_signature(data: Mapping[str, object], passphrase: Optional[str] = None) -> bool:
    received = str(data.get("signature") or "").strip().lower()
    if not received:
        return False
    candidates = (
        generate_signature(data, passphrase, include_blank=True),
        generate_signature(data, passphrase, include_blank=False),
        generate_signature(data, passphrase, include_blank=False, sort_keys=True),
    )
    return received in candidates


def process_url(sandbox: bool) -> str:
    return SANDBOX_PROCESS_URL if sandbox else LIVE_PROCESS_URL


def build_payment_redirect(order, user, restaurant_name: str, item_count: int, config) -> PaymentRedirect:
    public_base = config.get("PUBLIC_BASE_URL", "").rstrip("/")
    api_base = config.get("API_BASE_URL", "").rstrip("/")

    fields = OrderedDict()
    fields["merchant_id"] = config["PAYFAST_MERCHANT_ID"]
    fields["merchant_key"] = config["PAYFAST_MERCHANT_KEY"]
    fields["return_url"] = f"{public_base}/orders/{order.id}"
    fields["cancel_url"] = f"{public_base}/checkout"
    fields["notify_url"] = f"{api_base}{ITN_PATH}"
    fields["name_first"] = user.first_name
    fields["email_address"] = user.email or ""
    fields["m_payment_id"] = str(order.id)
    fields["amount"] = format_amount(order.total)
    fields["item_name"] = f"Order from {restaurant_name}"
    fields["item_description"] = f"{item_count} item(s)"

    passphrase = config.get("PAYFAST_PASSPHRASE")
    if passphrase:
        fields["signature"] = generate_signature(fields, passphrase)

    return PaymentRedirect(action_url=process_url(config.get("PAYFAST_SANDBOX", True)), fields=fields)


def render_redirect_form(redirect: PaymentRedirect) -> str:
    inputs = "\n".join(
        f'    <input type="hidden" name="{escape(name)}" value="{escape(value)}">'
        for name, value in redirect.fields.items()
    )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head><title>Redirecting to payment</title></head>\n"
        '<body onload="document.forms[0].submit()">\n'
        f'  <form method="{escape(redirect.method)}" action="{escape(redirect.action_url)}">\n'
        f"{inputs}\n"
        '    <noscript><button type="submit">Continue to payment</button></noscript>\n'
        "  </form>\n"
        "</body>\n"
        "</html>\n"
    )


def validate_with_server(data: Mapping[str, object], sandbox: bool) -> bool:
    """Ask PayFast to confirm the ITN payload is genuine."""
    url = SANDBOX_VALIDATE_URL if sandbox else LIVE_VALIDATE_URL
    body = "&".join(f"{k}={_encode(v)}" for k, v in data.items() if k != "signature")
    try:
        response = requests.post(
            url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=VALIDATE_TIMEOUT,
        )
    except requests.RequestException:
        logger.exception("PayFast ITN validation request failed")
        return False
    return response.status_code == 200 and response.text.strip() == "VALID"


def handle_itn(form: Mapping[str, object], config) -> Optional[Order]:
    """
    Apply a PayFast notification to its order.

    Returns the updated order, or None for statuses that need no action.
    """
    data = OrderedDict((key, form[key]) for key in form)

    if str(data.get("merchant_id", "")) != str(config.get("PAYFAST_MERCHANT_ID", "")):
        raise InvalidNotificationError("Invalid merchant ID")

    if not verify_signature(data, config.get("PAYFAST_PASSPHRASE")):
        raise InvalidNotificationError("Invalid signature")

    if config.get("PAYFAST_VALIDATE_ITN") and not validate_with_server(data, config.get("PAYFAST_SANDBOX", True)):
        raise InvalidNotificationError("Notification could not be validated")

    try:
        order_id = int(data.get("m_payment_id", ""))
    except (TypeError, ValueError) as exc:
        raise InvalidNotificationError("Invalid payment reference") from exc

    order = db.session.get(Order, order_id)
    if order is None:
        raise InvalidNotificationError("Unknown order")

    payment_status = str(data.get("payment_status", "")).upper()
    logger.info("Processing PayFast notification for order %s: %s", order.id, payment_status)

    if payment_status == "COMPLETE":
        if order.payment_status == "paid":
            logger.info("Order %s already marked paid; ignoring duplicate notification", order.id)
            return order
        gross = data.get("amount_gross")
        if gross not in (None, "") and abs(to_money(gross) - to_money(order.total)) > Decimal("0.01"):
            raise InvalidNotificationError("Amount mismatch")
        order.status = "confirmed"
        order.payment_status = "paid"
        order.payment_reference = data.get("pf_payment_id")
        if order.promo_code_id and to_money(order.discount) > 0:
            record_usage(order.promo_code_id, order.customer_id, order.id, order.discount)
    elif payment_status in ("FAILED", "CANCELLED"):
        order.status = "cancelled"
        order.payment_status = "failed"
    else:
        logger.info("Unhandled PayFast payment status: %s", payment_status)
        return None

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Error updating order %s from PayFast notification", order.id)
        raise

    publish_order_change(order)

    if order.status == "confirmed":
        if order.customer:
            send_order_confirmation_email(order.customer, order)
        send_new_order_notification_to_restaurant(order.restaurant, order)
    elif order.customer:
        send_order_cancelled_email(order.customer, order)

    return order
