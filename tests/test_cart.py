"""
Tests for the cart aggregator and its persisted document.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from fooddash.services.cart import (
    CART_STORAGE_KEY,
    Cart,
    CartItem,
    CartRegistry,
    RestaurantConflictError,
)
from fooddash.services.pricing import PricingPolicy
from fooddash.services.storage import MemoryDocumentStorage, StorageError


def make_item(menu_item_id="1", price="100.00", restaurant_id="r1", quantity=1, **kwargs):
    return CartItem(
        menu_item_id=menu_item_id,
        name=kwargs.pop("name", f"Item {menu_item_id}"),
        unit_price=price,
        restaurant_id=restaurant_id,
        restaurant_name=kwargs.pop("restaurant_name", f"Restaurant {restaurant_id}"),
        quantity=quantity,
        **kwargs,
    )


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


class BrokenStorage(MemoryDocumentStorage):
    def set(self, key, value):
        raise StorageError("disk full")

    def remove(self, key):
        raise StorageError("disk full")


@pytest.fixture
def storage():
    return MemoryDocumentStorage()


@pytest.fixture
def cart(storage):
    return Cart(storage=storage, pricing=PricingPolicy(service_fee_rate=Decimal("0")))


class TestCartContents:
    def test_empty_cart(self, cart):
        assert cart.is_empty
        assert cart.get_cart_total() == Decimal("0.00")
        assert cart.get_total_items() == 0
        assert cart.restaurant_id is None

    def test_add_same_item_merges_lines(self, cart):
        cart.add_item(make_item("1", quantity=1))
        line = cart.add_item(make_item("1", quantity=2))

        assert len(cart.items) == 1
        assert line.quantity == 3
        assert cart.get_item_quantity("1") == 3
        assert cart.subtotal() == Decimal("300.00")

    def test_ids_are_compared_as_strings(self, cart):
        cart.add_item(make_item(7))
        cart.add_item(make_item("7"))
        assert cart.get_item_quantity(7) == 2

    def test_subtotal_is_exact(self, cart):
        cart.add_item(make_item("1", price="0.10", quantity=3))
        assert cart.subtotal() == Decimal("0.30")

    def test_non_positive_quantity_becomes_one(self, cart):
        cart.add_item(make_item("1", quantity=0))
        assert cart.get_item_quantity("1") == 1

    def test_remove_item_decrements_then_drops(self, cart):
        cart.add_item(make_item("1", quantity=2))
        cart.add_item(make_item("2"))

        cart.remove_item("1")
        assert cart.get_item_quantity("1") == 1
        cart.remove_item("1")
        assert cart.get_item_quantity("1") == 0
        assert cart.get_total_items() == 1

    def test_remove_unknown_item_is_noop(self, cart):
        cart.add_item(make_item("1"))
        cart.remove_item("missing")
        assert cart.get_total_items() == 1

    def test_update_quantity_zero_removes(self, cart):
        cart.add_item(make_item("1"))
        cart.add_item(make_item("2"))
        cart.update_quantity("1", 5)
        assert cart.get_item_quantity("1") == 5
        cart.update_quantity("1", 0)
        assert cart.get_item_quantity("1") == 0
        assert len(cart.items) == 1

    def test_removing_last_line_clears_storage(self, cart, storage):
        cart.add_item(make_item("1"))
        assert storage.get(CART_STORAGE_KEY) is not None
        cart.update_quantity("1", 0)
        assert cart.is_empty
        assert storage.get(CART_STORAGE_KEY) is None

    def test_update_instructions(self, cart):
        cart.add_item(make_item("1"))
        cart.update_instructions("1", "  no onions ")
        assert cart.items[0].special_instructions == "no onions"
        cart.update_instructions("1", "   ")
        assert cart.items[0].special_instructions is None

    def test_added_line_is_a_copy(self, cart):
        item = make_item("1", quantity=2)
        line = cart.add_item(item)
        cart.add_item(make_item("1"))

        assert line is not item
        assert item.quantity == 2
        assert cart.get_item_quantity("1") == 3

    def test_non_positive_quantity_adds_one(self, cart):
        item = make_item("1", quantity=0)
        cart.add_item(item)
        assert cart.get_item_quantity("1") == 1
        assert item.quantity == 0


class TestSingleRestaurant:
    def test_other_restaurant_replaces_cart(self, cart):
        cart.add_item(make_item("1", restaurant_id="r1", quantity=2))
        cart.apply_promo("SAVE10")

        cart.add_item(make_item("9", restaurant_id="r2"))

        assert cart.restaurant_id == "r2"
        assert [i.menu_item_id for i in cart.items] == ["9"]
        assert cart.applied_promo_code is None

    def test_conflict_without_replace(self, cart):
        cart.add_item(make_item("1", restaurant_id="r1"))

        with pytest.raises(RestaurantConflictError):
            cart.add_item(make_item("9", restaurant_id="r2"), replace=False)

        assert cart.restaurant_id == "r1"
        assert cart.get_total_items() == 1


class TestTotals:
    def test_summary_uses_single_formula(self):
        cart = Cart(pricing=PricingPolicy(service_fee_rate=Decimal("0.045")))
        cart.add_item(make_item("1", price="100.00", quantity=2))

        summary = cart.summary(delivery_fee=Decimal("2.49"), discount=Decimal("20.00"))

        assert summary["subtotal"] == "200.00"
        assert summary["service_fee"] == "9.00"
        assert summary["total"] == "191.49"
        assert summary["total_items"] == 2

    def test_summary_caps_discount(self, cart):
        cart.add_item(make_item("1", price="10.00"))
        summary = cart.summary(delivery_fee=Decimal("0"), discount=Decimal("50"))
        assert summary["discount"] == "10.00"
        assert summary["total"] == "0.00"


class TestPersistence:
    def test_document_shape(self, storage):
        clock = FakeClock(5000)
        cart = Cart(storage=storage, clock=clock)
        cart.add_item(make_item("1", price="12.50", quantity=2))

        document = storage.get(CART_STORAGE_KEY)
        assert document["lastModified"] == 5000
        assert document["items"][0]["menu_item_id"] == "1"
        assert document["items"][0]["unit_price"] == "12.50"
        assert document["items"][0]["quantity"] == 2

    def test_promo_is_not_persisted(self, cart, storage):
        cart.add_item(make_item("1"))
        cart.apply_promo("save10")
        cart.add_item(make_item("2"))

        assert cart.applied_promo_code == "SAVE10"
        assert "SAVE10" not in str(storage.get(CART_STORAGE_KEY))
        assert Cart.load(storage).applied_promo_code is None

    def test_load_restores_items(self, cart, storage):
        cart.add_item(make_item("1", price="19.99", quantity=3))

        restored = Cart.load(storage)

        assert restored.get_item_quantity("1") == 3
        assert restored.subtotal() == Decimal("59.97")
        assert restored.last_modified == cart.last_modified

    def test_load_discards_mixed_restaurants(self, storage):
        storage.set(CART_STORAGE_KEY, {
            "items": [
                make_item("1", restaurant_id="r1").to_dict(),
                make_item("2", restaurant_id="r2").to_dict(),
            ],
            "lastModified": 1,
        })
        assert Cart.load(storage).is_empty

    def test_load_discards_malformed_document(self, storage):
        storage.set(CART_STORAGE_KEY, {"items": [{"name": "no id"}], "lastModified": 1})
        assert Cart.load(storage).is_empty

    def test_storage_failure_keeps_cart_working(self):
        cart = Cart(storage=BrokenStorage())
        cart.add_item(make_item("1", quantity=2))
        cart.update_quantity("1", 4)
        assert cart.get_item_quantity("1") == 4
        cart.clear()
        assert cart.is_empty


class TestExpiry:
    def test_stale_cart_is_cleared(self, storage):
        clock = FakeClock(0)
        cart = Cart(storage=storage, ttl=timedelta(minutes=30), clock=clock)
        cart.add_item(make_item("1"))

        clock.now = 30 * 60 * 1000 + 1
        assert cart.check_expiry() is True
        assert cart.is_empty
        assert storage.get(CART_STORAGE_KEY) is None

    def test_fresh_cart_is_untouched(self, storage):
        clock = FakeClock(0)
        cart = Cart(storage=storage, ttl=timedelta(minutes=30), clock=clock)
        cart.add_item(make_item("1"))

        clock.now = 30 * 60 * 1000
        assert cart.check_expiry() is False
        assert cart.get_total_items() == 1

    def test_empty_cart_never_expires(self, cart):
        assert cart.check_expiry(now=10 ** 12) is False


class TestCartRegistry:
    def test_carts_are_per_user(self):
        stores = {}
        registry = CartRegistry(storage_factory=lambda uid: stores.setdefault(uid, MemoryDocumentStorage()))

        registry.get(1).add_item(make_item("1", quantity=2))

        assert registry.get(1).get_item_quantity("1") == 2
        assert registry.get(2).is_empty

    def test_workers_share_stored_cart(self):
        shared = MemoryDocumentStorage()
        worker_a = CartRegistry(storage_factory=lambda uid: shared)
        worker_b = CartRegistry(storage_factory=lambda uid: shared)

        worker_a.get(1).add_item(make_item("1"))
        assert worker_b.get(1).get_item_quantity("1") == 1

        worker_b.get(1).update_quantity("1", 3)
        assert worker_a.get(1).get_item_quantity("1") == 3

        worker_a.get(1).clear()
        assert worker_b.get(1).is_empty

    def test_session_promo_survives_reload(self):
        shared = MemoryDocumentStorage()
        registry = CartRegistry(storage_factory=lambda uid: shared)

        cart = registry.get(1)
        cart.add_item(make_item("1"))
        cart.apply_promo("save10")

        assert registry.get(1).applied_promo_code == "SAVE10"
        registry.get(1).remove_promo()
        assert registry.get(1).applied_promo_code is None

    def test_promo_dropped_once_cart_is_gone(self):
        shared = MemoryDocumentStorage()
        worker_a = CartRegistry(storage_factory=lambda uid: shared)
        worker_b = CartRegistry(storage_factory=lambda uid: shared)

        cart = worker_a.get(1)
        cart.add_item(make_item("1"))
        cart.apply_promo("SAVE10")
        worker_b.get(1).clear()

        assert worker_a.get(1).applied_promo_code is None
        assert worker_a._promos == {}

    def test_empty_carts_are_not_kept_in_memory(self):
        registry = CartRegistry(storage_factory=lambda uid: MemoryDocumentStorage())
        for user_id in range(50):
            assert registry.get(user_id).is_empty
        assert registry._promos == {}
