"""
CHECKOUT ORCHESTRATOR (APPLICATION SERVICE)

Purpose:
- Turn the customer's cart into one Order plus one OrderItem per line.
- Hand the browser a PayFast form to complete payment off-site.

Hard rules:
- Totals come from the single pricing formula; the client never sends totals.
- An applied promo is re-validated against the current subtotal here.
- Order and lines are written in one transaction: either both land or
  neither does, and the cart is left intact for a retry.
- The cart is cleared only after the order is committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fooddash import db
from fooddash.models.order import Order, OrderItem
from fooddash.models.restaurant import Restaurant
from fooddash.services.cart import Cart
from fooddash.services.payfast import PaymentRedirect, build_payment_redirect
from fooddash.services.pricing import PricingPolicy
from fooddash.services.promo import PromoCodeRecord, PromoCodeValidator
from fooddash.services.recovery import create_payment_backup, save_pending_order
from fooddash.services.storage import DocumentStorage
from fooddash.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

FULFILLMENT_TYPES = ("delivery", "pickup")


class CheckoutError(Exception):
    """Base checkout exception"""

    status_code = 400
    retryable = False


class CheckoutPreconditionError(CheckoutError):
    pass


class EmptyCartError(CheckoutPreconditionError):
    pass


class RestaurantUnavailableError(CheckoutPreconditionError):
    pass


class MinimumOrderError(CheckoutPreconditionError):
    pass


class PromoRejectedError(CheckoutPreconditionError):
    pass


class PaymentConfigurationError(CheckoutPreconditionError):
    status_code = 503


class CheckoutPersistenceError(CheckoutError):
    status_code = 500
    retryable = True


@dataclass
class CartQuote:
    subtotal: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    restaurant: Optional[Restaurant] = None
    promo: Optional[PromoCodeRecord] = None
    promo_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "delivery_fee": str(self.delivery_fee),
            "service_fee": str(self.service_fee),
            "tax": str(self.tax),
            "discount": str(self.discount),
            "total": str(self.total),
            "promo": self.promo.to_dict() if self.promo else None,
            "promo_error": self.promo_error,
        }


@dataclass
class CheckoutResult:
    order: Order
    redirect: PaymentRedirect

    def to_dict(self) -> dict:
        return {"order": self.order.to_dict(), "payment": self.redirect.to_dict()}


def _load_restaurant(restaurant_id) -> Optional[Restaurant]:
    if restaurant_id is None:
        return None
    try:
        return db.session.get(Restaurant, int(restaurant_id))
    except (TypeError, ValueError):
        return None


def quote_cart(
    cart: Cart,
    pricing: PricingPolicy,
    validator: Optional[PromoCodeValidator] = None,
    user_id=None,
    fulfillment_type: str = "delivery",
) -> CartQuote:
    """Price the cart as it stands now, re-deriving any promo discount."""
    subtotal = cart.subtotal()
    restaurant = _load_restaurant(cart.restaurant_id)
    delivery_fee = ZERO
    if not cart.is_empty:
        delivery_fee = pricing.delivery_fee(
            restaurant.delivery_fee if restaurant is not None else None, fulfillment_type
        )

    discount = ZERO
    promo = None
    promo_error = None
    if cart.applied_promo_code and not cart.is_empty:
        validator = validator or PromoCodeValidator()
        result = validator.validate(
            cart.applied_promo_code,
            subtotal,
            restaurant_id=cart.restaurant_id,
            service_type="food",
            user_id=user_id,
        )
        if result.valid:
            promo = result.promo_code
            discount = result.discount_amount
        else:
            promo_error = result.error_message

    discount = pricing.cap_discount(subtotal, discount)
    return CartQuote(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        service_fee=pricing.service_fee(subtotal),
        tax=pricing.tax(subtotal),
        discount=discount,
        total=pricing.total(subtotal, delivery_fee, discount),
        restaurant=restaurant,
        promo=promo,
        promo_error=promo_error,
    )


class CheckoutOrchestrator:
    def __init__(
        self,
        cart: Cart,
        config,
        storage: DocumentStorage,
        pricing: Optional[PricingPolicy] = None,
        validator: Optional[PromoCodeValidator] = None,
    ):
        self.cart = cart
        self.config = config
        self.storage = storage
        self.pricing = pricing or cart.pricing
        self.validator = validator or PromoCodeValidator()

    def _check_preconditions(self, user, fulfillment_type) -> CartQuote:
        if user is None:
            raise CheckoutPreconditionError("Please log in to continue")
        if self.cart.is_empty:
            raise EmptyCartError("Please add items to your cart")
        if fulfillment_type not in FULFILLMENT_TYPES:
            raise CheckoutPreconditionError(
                f"Invalid fulfillment type. Must be one of: {', '.join(FULFILLMENT_TYPES)}"
            )

        quote = quote_cart(self.cart, self.pricing, self.validator, user.id, fulfillment_type)

        restaurant = quote.restaurant
        if restaurant is None or not restaurant.is_active:
            raise RestaurantUnavailableError("This restaurant is not accepting orders right now")

        minimum = to_money(restaurant.minimum_order)
        if minimum > ZERO and quote.subtotal < minimum:
            raise MinimumOrderError(f"Minimum order for {restaurant.name} is R{minimum:.2f}")

        if quote.promo_error:
            raise PromoRejectedError(quote.promo_error)

        if quote.total <= ZERO:
            raise CheckoutPreconditionError("Order total must be greater than zero")

        if not self.config.get("PAYFAST_MERCHANT_ID") or not self.config.get("PAYFAST_MERCHANT_KEY"):
            logger.error("PayFast credentials not configured")
            raise PaymentConfigurationError(
                "Payment system is not properly configured. Please contact support."
            )
        return quote

    def _persist_order(self, user, quote: CartQuote, fulfillment_type) -> Order:
        order = Order(
            order_number=Order.generate_order_number(),
            customer_id=user.id,
            restaurant_id=quote.restaurant.id,
            status="pending",
            payment_status="pending",
            fulfillment_type=fulfillment_type,
            pickup_code=Order.generate_pickup_code() if fulfillment_type == "pickup" else None,
            subtotal=quote.subtotal,
            delivery_fee=quote.delivery_fee,
            service_fee=quote.service_fee,
            tax=quote.tax,
            discount=quote.discount,
            total=quote.total,
            promo_code_id=quote.promo.id if quote.promo else None,
        )
        try:
            db.session.add(order)
            db.session.flush()  # Get order ID

            for line in self.cart.items:
                order_item = OrderItem(
                    order_id=order.id,
                    menu_item_id=int(line.menu_item_id),
                    name=line.name,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    special_instructions=line.special_instructions,
                )
                order_item.calculate_subtotal()
                db.session.add(order_item)

            db.session.commit()
        except (SQLAlchemyError, ValueError) as exc:
            db.session.rollback()
            logger.exception("Checkout failed while writing order for user %s", user.id)
            raise CheckoutPersistenceError(
                "We couldn't place your order. Your cart has been kept, please try again."
            ) from exc
        return order

    def checkout(self, user, fulfillment_type: str = "delivery") -> CheckoutResult:
        quote = self._check_preconditions(user, fulfillment_type)
        restaurant_name = self.cart.restaurant_name or quote.restaurant.name
        line_count = len(self.cart.items)

        order = self._persist_order(user, quote, fulfillment_type)
        logger.info(
            "Order %s created for user %s (total %s)", order.order_number, user.id, quote.total
        )

        create_payment_backup(self.storage, order.to_dict(include_items=False))
        save_pending_order(self.storage, order.id)

        self.cart.clear()

        redirect = build_payment_redirect(order, user, restaurant_name, line_count, self.config)
        return CheckoutResult(order=order, redirect=redirect)
