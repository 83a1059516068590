"""
Platform pricing policy.

One formula is used everywhere a total is shown or charged:

    total = subtotal + delivery_fee + service_fee + tax - discount

where the discount is capped at the subtotal and the total never drops
below zero. Fees are percentages of the subtotal, rounded half-up to cents.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from fooddash.utils.money import ZERO, to_money, to_rate


@dataclass(frozen=True)
class PricingPolicy:
    service_fee_rate: Decimal = Decimal("0.045")
    tax_rate: Decimal = Decimal("0")
    default_delivery_fee: Decimal = Decimal("2.49")

    @classmethod
    def from_config(cls, config) -> "PricingPolicy":
        return cls(
            service_fee_rate=to_rate(config.get("SERVICE_FEE_RATE", "0.045")),
            tax_rate=to_rate(config.get("TAX_RATE", "0")),
            default_delivery_fee=to_money(config.get("DEFAULT_DELIVERY_FEE", "2.49")),
        )

    def service_fee(self, subtotal) -> Decimal:
        return to_money(to_money(subtotal) * self.service_fee_rate)

    def tax(self, subtotal) -> Decimal:
        return to_money(to_money(subtotal) * self.tax_rate)

    def delivery_fee(self, restaurant_fee=None, fulfillment_type: str = "delivery") -> Decimal:
        if fulfillment_type == "pickup":
            return ZERO
        if restaurant_fee is None:
            return to_money(self.default_delivery_fee)
        return to_money(restaurant_fee)

    def cap_discount(self, subtotal, discount) -> Decimal:
        subtotal = to_money(subtotal)
        discount = to_money(discount)
        if discount < ZERO:
            return ZERO
        return min(discount, subtotal)

    def total(self, subtotal, delivery_fee=ZERO, discount=ZERO) -> Decimal:
        subtotal = to_money(subtotal)
        gross = subtotal + to_money(delivery_fee) + self.service_fee(subtotal) + self.tax(subtotal)
        net = gross - self.cap_discount(subtotal, discount)
        return max(net, ZERO)
