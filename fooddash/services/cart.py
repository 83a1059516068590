"""
CART AGGREGATOR

Purpose:
- Hold the pre-checkout line items of one customer, for one restaurant.
- Derive subtotal, fees and totals on read (nothing derived is stored).
- Mirror every mutation to document storage so a restart keeps the cart.

Hard rules:
- All lines share one restaurant. Adding from another restaurant clears the
  cart first (replace=True) or raises RestaurantConflictError (replace=False).
- A line never holds quantity < 1; reaching 0 removes it.
- Money is Decimal, never float.
- Stored state is authoritative: every request rebuilds the cart from
  storage, so all workers see the same cart. A failed write is logged and
  the cart keeps working for the rest of that request.
- The applied promo code is session state only and is never persisted.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace as copy_line
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from fooddash.services.pricing import PricingPolicy
from fooddash.services.storage import (
    DocumentStorage,
    MemoryDocumentStorage,
    SQLDocumentStorage,
    StorageError,
    namespace_for_user,
)
from fooddash.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "cart-storage"
DEFAULT_TTL = timedelta(minutes=30)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CartError(Exception):
    """Base cart exception"""


class RestaurantConflictError(CartError):
    pass


@dataclass
class CartItem:
    menu_item_id: str
    name: str
    unit_price: Decimal
    restaurant_id: str
    restaurant_name: str
    quantity: int = 1
    image_url: Optional[str] = None
    special_instructions: Optional[str] = None

    def __post_init__(self):
        self.menu_item_id = str(self.menu_item_id)
        self.restaurant_id = str(self.restaurant_id)
        self.unit_price = to_money(self.unit_price)
        self.quantity = int(self.quantity)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(
            menu_item_id=data["menu_item_id"],
            name=data["name"],
            unit_price=data["unit_price"],
            restaurant_id=data["restaurant_id"],
            restaurant_name=data.get("restaurant_name") or "",
            quantity=data.get("quantity", 1),
            image_url=data.get("image_url"),
            special_instructions=data.get("special_instructions"),
        )

    def to_dict(self) -> dict:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "restaurant_id": self.restaurant_id,
            "restaurant_name": self.restaurant_name,
            "image_url": self.image_url,
            "special_instructions": self.special_instructions,
            "line_total": str(to_money(self.line_total)),
        }


class Cart:
    def __init__(
        self,
        storage: Optional[DocumentStorage] = None,
        pricing: Optional[PricingPolicy] = None,
        ttl: timedelta = DEFAULT_TTL,
        clock: Optional[Callable[[], int]] = None,
        promo_code: Optional[str] = None,
        on_promo_change: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.storage = storage if storage is not None else MemoryDocumentStorage()
        self.pricing = pricing or PricingPolicy()
        self.ttl = ttl
        self._clock = clock or _now_ms
        self._items: List[CartItem] = []
        self.last_modified: Optional[int] = None
        self._applied_promo_code: Optional[str] = promo_code
        self._on_promo_change = on_promo_change

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, storage: DocumentStorage, **kwargs) -> "Cart":
        try:
            document = storage.get(CART_STORAGE_KEY)
        except StorageError:
            logger.warning("Could not read stored cart; starting empty", exc_info=True)
            document = None
        return cls.from_document(document, storage=storage, **kwargs)

    @classmethod
    def from_document(cls, document, **kwargs) -> "Cart":
        cart = cls(**kwargs)
        if not document:
            return cart
        try:
            items = [CartItem.from_dict(raw) for raw in document.get("items", [])]
            last_modified = document.get("lastModified")
            cart.last_modified = int(last_modified) if last_modified is not None else None
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Discarding malformed stored cart", exc_info=True)
            return cart
        # Never resurrect a mixed-restaurant or zero-quantity document
        if items and any(i.restaurant_id != items[0].restaurant_id for i in items):
            logger.warning("Stored cart spans several restaurants; discarding it")
            return cart
        cart._items = [i for i in items if i.quantity > 0]
        return cart

    def to_document(self) -> dict:
        return {
            "items": [
                {k: v for k, v in item.to_dict().items() if k != "line_total"}
                for item in self._items
            ],
            "lastModified": self.last_modified,
        }

    def _persist(self) -> None:
        try:
            if self._items:
                self.storage.set(CART_STORAGE_KEY, self.to_document())
            else:
                self.storage.remove(CART_STORAGE_KEY)
        except StorageError:
            logger.exception("Failed to persist cart; continuing in memory")

    def _touch(self) -> None:
        self.last_modified = self._clock()
        self._persist()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def restaurant_id(self) -> Optional[str]:
        return self._items[0].restaurant_id if self._items else None

    @property
    def restaurant_name(self) -> Optional[str]:
        return self._items[0].restaurant_name if self._items else None

    def _find(self, menu_item_id) -> Optional[CartItem]:
        menu_item_id = str(menu_item_id)
        for item in self._items:
            if item.menu_item_id == menu_item_id:
                return item
        return None

    def get_item_quantity(self, menu_item_id) -> int:
        item = self._find(menu_item_id)
        return item.quantity if item else 0

    def total_items(self) -> int:
        return sum(item.quantity for item in self._items)

    get_total_items = total_items

    def subtotal(self) -> Decimal:
        return to_money(sum((item.line_total for item in self._items), ZERO))

    get_cart_total = subtotal
    get_subtotal = subtotal

    def service_fee(self) -> Decimal:
        return self.pricing.service_fee(self.subtotal())

    def tax(self) -> Decimal:
        return self.pricing.tax(self.subtotal())

    def total(self, delivery_fee=ZERO, discount=ZERO) -> Decimal:
        return self.pricing.total(self.subtotal(), delivery_fee, discount)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_item(self, item: CartItem, replace: bool = True) -> CartItem:
        item = copy_line(item, quantity=max(item.quantity, 1))
        current = self.restaurant_id
        if current is not None and current != item.restaurant_id:
            if not replace:
                raise RestaurantConflictError(
                    "Your cart has items from another restaurant. Clear it to add this item."
                )
            logger.info(
                "Replacing cart from restaurant %s with restaurant %s", current, item.restaurant_id
            )
            self._items = []
            self.applied_promo_code = None

        existing = self._find(item.menu_item_id)
        if existing:
            existing.quantity += item.quantity
            if item.special_instructions:
                existing.special_instructions = item.special_instructions
            line = existing
        else:
            self._items.append(item)
            line = item
        self._touch()
        return line

    def remove_item(self, menu_item_id) -> None:
        existing = self._find(menu_item_id)
        if existing is None:
            return
        if existing.quantity <= 1:
            self._items.remove(existing)
        else:
            existing.quantity -= 1
        self._after_line_change()

    def update_quantity(self, menu_item_id, quantity: int) -> None:
        existing = self._find(menu_item_id)
        if existing is None:
            return
        quantity = int(quantity)
        if quantity <= 0:
            self._items.remove(existing)
        else:
            existing.quantity = quantity
        self._after_line_change()

    def update_instructions(self, menu_item_id, instructions: Optional[str]) -> None:
        existing = self._find(menu_item_id)
        if existing is None:
            return
        existing.special_instructions = (instructions or "").strip() or None
        self._touch()

    def _after_line_change(self) -> None:
        if not self._items:
            self.clear()
            return
        self._touch()

    def clear(self) -> None:
        self._items = []
        self.last_modified = None
        self.applied_promo_code = None
        try:
            self.storage.remove(CART_STORAGE_KEY)
        except StorageError:
            logger.exception("Failed to remove stored cart")

    def check_expiry(self, now: Optional[int] = None) -> bool:
        """Clear the cart if it has been idle for longer than the TTL."""
        if self.last_modified is None:
            return False
        now = self._clock() if now is None else now
        ttl_ms = int(self.ttl.total_seconds() * 1000)
        if now - self.last_modified > ttl_ms:
            logger.info("Cart idle for more than %s; clearing", self.ttl)
            self.clear()
            return True
        return False

    # ------------------------------------------------------------------
    # Promo session state
    # ------------------------------------------------------------------
    @property
    def applied_promo_code(self) -> Optional[str]:
        return self._applied_promo_code

    @applied_promo_code.setter
    def applied_promo_code(self, code: Optional[str]) -> None:
        if code == self._applied_promo_code:
            return
        self._applied_promo_code = code
        if self._on_promo_change is not None:
            self._on_promo_change(code)

    def apply_promo(self, code: str) -> None:
        self.applied_promo_code = (code or "").strip().upper() or None

    def remove_promo(self) -> None:
        self.applied_promo_code = None

    def summary(self, delivery_fee=ZERO, discount=ZERO) -> dict:
        subtotal = self.subtotal()
        delivery_fee = to_money(delivery_fee)
        discount = self.pricing.cap_discount(subtotal, discount)
        return {
            "items": [item.to_dict() for item in self._items],
            "restaurant_id": self.restaurant_id,
            "restaurant_name": self.restaurant_name,
            "total_items": self.total_items(),
            "subtotal": str(subtotal),
            "delivery_fee": str(delivery_fee),
            "service_fee": str(self.service_fee()),
            "tax": str(self.tax()),
            "discount": str(discount),
            "total": str(self.total(delivery_fee, discount)),
            "promo_code": self.applied_promo_code,
            "last_modified": self.last_modified,
        }


@dataclass
class CartRegistry:
    """
    Hands out a user's cart, rebuilt from storage on every call.

    Only the applied promo code lives in process memory, keyed by user, and
    only while a promo is applied.
    """

    pricing: PricingPolicy = field(default_factory=PricingPolicy)
    ttl: timedelta = DEFAULT_TTL
    storage_factory: Optional[Callable[[object], DocumentStorage]] = None

    def __post_init__(self):
        self._promos: Dict[str, str] = {}
        self._lock = threading.Lock()
        if self.storage_factory is None:
            self.storage_factory = lambda user_id: SQLDocumentStorage(namespace_for_user(user_id))

    def _remember_promo(self, key: str, code: Optional[str]) -> None:
        with self._lock:
            if code:
                self._promos[key] = code
            else:
                self._promos.pop(key, None)

    def get(self, user_id) -> Cart:
        key = str(user_id)
        with self._lock:
            promo_code = self._promos.get(key)
        cart = Cart.load(
            self.storage_factory(user_id),
            pricing=self.pricing,
            ttl=self.ttl,
            promo_code=promo_code,
            on_promo_change=lambda code: self._remember_promo(key, code),
        )
        cart.check_expiry()
        if cart.is_empty:
            # Checked out, cleared or expired elsewhere
            cart.applied_promo_code = None
        return cart
