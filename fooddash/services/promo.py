"""
Promo code validation and discount computation.

Validation is read-only: it never touches usage counters. Usage is recorded
by the payment confirmation handler once an order is actually paid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import or_

from fooddash import db
from fooddash.models.promo_code import PromoCode, PromoCodeUsage
from fooddash.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def compute_discount(discount_type: str, discount_value, subtotal, max_discount=None) -> Decimal:
    """
    percentage -> subtotal * value / 100, capped by max_discount
    fixed      -> value
    Either way the result lies in [0, subtotal].
    """
    subtotal = to_money(subtotal)
    value = to_money(discount_value)
    if discount_type == DISCOUNT_PERCENTAGE:
        discount = to_money(subtotal * value / Decimal("100"))
    else:
        discount = value
    if max_discount is not None and discount > to_money(max_discount):
        discount = to_money(max_discount)
    if discount > subtotal:
        discount = subtotal
    return max(discount, ZERO)


@dataclass(frozen=True)
class PromoCodeRecord:
    id: Optional[int]
    code: str
    discount_type: str
    discount_value: Decimal
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    description: Optional[str] = None
    max_discount_amount: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    per_user_limit: Optional[int] = None
    restaurant_ids: tuple = field(default_factory=tuple)
    applicable_to: Optional[str] = None

    @classmethod
    def from_model(cls, promo: PromoCode) -> "PromoCodeRecord":
        return cls(
            id=promo.id,
            code=normalize_code(promo.code),
            discount_type=promo.discount_type,
            discount_value=to_money(promo.discount_value),
            start_date=promo.start_date,
            end_date=promo.end_date,
            is_active=bool(promo.is_active),
            description=promo.description,
            max_discount_amount=(
                to_money(promo.max_discount_amount) if promo.max_discount_amount is not None else None
            ),
            min_order_amount=(
                to_money(promo.min_order_amount) if promo.min_order_amount is not None else None
            ),
            usage_limit=promo.usage_limit,
            usage_count=promo.usage_count or 0,
            per_user_limit=promo.per_user_limit,
            restaurant_ids=tuple(promo.get_restaurant_ids()),
            applicable_to=promo.applicable_to,
        )

    def compute_discount(self, subtotal) -> Decimal:
        return compute_discount(self.discount_type, self.discount_value, subtotal, self.max_discount_amount)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value),
            "max_discount_amount": str(self.max_discount_amount) if self.max_discount_amount is not None else None,
            "min_order_amount": str(self.min_order_amount) if self.min_order_amount is not None else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


@dataclass
class PromoValidationResult:
    valid: bool
    promo_code: Optional[PromoCodeRecord] = None
    discount_amount: Decimal = ZERO
    error_message: Optional[str] = None

    @classmethod
    def reject(cls, message: str) -> "PromoValidationResult":
        return cls(valid=False, promo_code=None, discount_amount=ZERO, error_message=message)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "promo_code": self.promo_code.to_dict() if self.promo_code else None,
            "discount_amount": str(self.discount_amount),
            "error_message": self.error_message,
        }


def _lookup_promo(code: str) -> Optional[PromoCodeRecord]:
    promo = PromoCode.query.filter_by(code=code).first()
    return PromoCodeRecord.from_model(promo) if promo else None


def _user_usage_count(promo_id, user_id) -> int:
    return PromoCodeUsage.query.filter_by(promo_code_id=promo_id, user_id=user_id).count()


class PromoCodeValidator:
    def __init__(
        self,
        lookup: Optional[Callable[[str], Optional[PromoCodeRecord]]] = None,
        user_usage_count: Optional[Callable[[object, object], int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._lookup = lookup or _lookup_promo
        self._user_usage_count = user_usage_count or _user_usage_count
        self._clock = clock or datetime.utcnow

    def validate(
        self,
        code,
        order_total,
        restaurant_id=None,
        service_type: str = "food",
        user_id=None,
    ) -> PromoValidationResult:
        normalized = normalize_code(code)
        if not normalized:
            return PromoValidationResult.reject("Please enter a promo code")

        promo = self._lookup(normalized)
        if promo is None:
            return PromoValidationResult.reject("Invalid promo code")

        if not promo.is_active:
            return PromoValidationResult.reject("This promo code is no longer active")

        now = self._clock()
        if promo.start_date and now < promo.start_date:
            return PromoValidationResult.reject("This promo code is not yet active")
        if promo.end_date and now > promo.end_date:
            return PromoValidationResult.reject("This promo code has expired")

        order_total = to_money(order_total)
        if promo.min_order_amount and order_total < promo.min_order_amount:
            return PromoValidationResult.reject(
                f"Minimum order of R{promo.min_order_amount:.2f} required"
            )

        if promo.usage_limit and promo.usage_count >= promo.usage_limit:
            return PromoValidationResult.reject("This promo code has reached its usage limit")

        if user_id is not None and promo.per_user_limit:
            if self._user_usage_count(promo.id, user_id) >= promo.per_user_limit:
                return PromoValidationResult.reject(
                    f"You've already used this promo code {promo.per_user_limit} time(s)"
                )

        if promo.restaurant_ids:
            if restaurant_id is None or str(restaurant_id) not in promo.restaurant_ids:
                return PromoValidationResult.reject("This promo code is not valid for this restaurant")

        if promo.applicable_to and promo.applicable_to != "all":
            applicable = [t.strip() for t in promo.applicable_to.split(",") if t.strip()]
            if service_type not in applicable:
                return PromoValidationResult.reject(
                    f"This promo code is not valid for {service_type} orders"
                )

        return PromoValidationResult(
            valid=True,
            promo_code=promo,
            discount_amount=promo.compute_discount(order_total),
        )


def validate_promo_code(code, order_total, restaurant_id=None, service_type="food", user_id=None):
    return PromoCodeValidator().validate(
        code, order_total, restaurant_id=restaurant_id, service_type=service_type, user_id=user_id
    )


def record_usage(promo_code_id, user_id, order_id, discount) -> PromoCodeUsage:
    """Add a usage row and bump the counter. The caller commits."""
    usage = PromoCodeUsage(
        promo_code_id=promo_code_id,
        user_id=user_id,
        order_id=order_id,
        discount_applied=to_money(discount),
    )
    db.session.add(usage)
    PromoCode.query.filter_by(id=promo_code_id).update(
        {PromoCode.usage_count: db.func.coalesce(PromoCode.usage_count, 0) + 1},
        synchronize_session=False,
    )
    logger.info("Recorded promo usage", extra={"promo_code_id": promo_code_id, "order_id": order_id})
    return usage


def available_promo_codes(restaurant_id=None, now: Optional[datetime] = None) -> List[PromoCode]:
    now = now or datetime.utcnow()
    query = PromoCode.query.filter(
        PromoCode.is_active.is_(True),
        PromoCode.start_date <= now,
        PromoCode.end_date >= now,
        or_(PromoCode.usage_limit.is_(None), PromoCode.usage_count < PromoCode.usage_limit),
    ).order_by(PromoCode.end_date.asc())
    codes = query.all()
    if restaurant_id is None:
        return [p for p in codes if not p.get_restaurant_ids()]
    rid = str(restaurant_id)
    return [p for p in codes if not p.get_restaurant_ids() or rid in p.get_restaurant_ids()]


def usage_history(user_id, limit: int = 20) -> List[PromoCodeUsage]:
    """The user's most recent promo redemptions, newest first."""
    return (
        PromoCodeUsage.query.filter_by(user_id=user_id)
        .order_by(PromoCodeUsage.created_at.desc(), PromoCodeUsage.id.desc())
        .limit(limit)
        .all()
    )
