import json
from datetime import datetime
from decimal import Decimal

import pytest

from storefront.cart_service import CartService
from storefront.config import Config
from storefront.exceptions import StorageConnectionError, ValidationError
from storefront.storage import MemoryStorage

from conftest import product


def stored_cart(storage):
    return json.loads(storage.get(Config.CART_STORAGE_KEY))


def test_add_same_product_twice_merges_quantity(cart):
    cart.add_to_cart(product("p1"), 2)
    cart.add_to_cart(product("p1"), 3)

    assert len(cart.cart) == 1
    assert cart.cart[0].quantity == 5


def test_add_stores_snapshot_of_display_fields(cart):
    cart.add_to_cart(product("p1", price=120, quantity=8))
    item = cart.get_cart_item("p1")

    assert item.product.name == "Product p1"
    assert item.product.price == Decimal("120")
    assert item.product.quantity == 8
    assert item.product.is_available is True
    assert item.snapshot_at is not None
    # Full-product fields are not part of the snapshot
    assert "description" not in item.product.model_dump()


def test_add_does_not_bound_quantity_by_stock(cart):
    cart.add_to_cart(product("p1", quantity=2), 10)
    assert cart.get_cart_item("p1").quantity == 10


def test_add_rejects_invalid_input(cart):
    with pytest.raises(ValidationError):
        cart.add_to_cart({"name": "no id"})
    with pytest.raises(ValidationError):
        cart.add_to_cart(product("p1"), 0)
    assert cart.cart == []


def test_persisted_cart_matches_memory_after_every_call(storage, cart):
    operations = [
        lambda: cart.add_to_cart(product("p1"), 2),
        lambda: cart.add_to_cart(product("p2", price=50), 1),
        lambda: cart.update_quantity("p2", 4),
        lambda: cart.add_to_cart(product("p1"), 1),
        lambda: cart.remove_from_cart("p1"),
        lambda: cart.update_quantity("missing", 3),
        lambda: cart.add_to_cart(product("p3", price="12.5"), 2),
    ]
    for operation in operations:
        operation()
        reloaded = CartService(storage)
        assert reloaded.cart == cart.cart


def test_update_quantity_zero_equals_remove(storage):
    first = CartService(MemoryStorage())
    second = CartService(MemoryStorage())
    for store in (first, second):
        store.add_to_cart(product("p1"), 2)
        store.add_to_cart(product("p2"), 1)

    first.update_quantity("p1", 0)
    second.remove_from_cart("p1")

    assert [i.product.id for i in first.cart] == [i.product.id for i in second.cart] == ["p2"]


def test_update_quantity_unknown_product_is_noop(cart):
    cart.add_to_cart(product("p1"), 2)
    cart.update_quantity("nope", 5)
    assert [(i.product.id, i.quantity) for i in cart.cart] == [("p1", 2)]


def test_remove_unknown_product_is_noop(cart):
    cart.add_to_cart(product("p1"))
    cart.remove_from_cart("nope")
    assert cart.get_unique_product_count() == 1


def test_clear_cart_persists_empty_list(storage, cart):
    cart.add_to_cart(product("p1"))
    cart.clear_cart()
    assert cart.cart == []
    assert stored_cart(storage) == []


def test_cart_total_is_pure(cart):
    cart.add_to_cart(product("a", price=100), 2)
    cart.add_to_cart(product("b", price=50), 3)

    assert cart.get_cart_total() == Decimal("350")
    assert cart.get_cart_total() == cart.get_cart_total()
    assert [i.quantity for i in cart.cart] == [2, 3]


def test_unique_count_differs_from_total_quantity(cart):
    cart.add_to_cart(product("a"), 2)
    cart.add_to_cart(product("b"), 3)
    assert cart.get_unique_product_count() == 2
    assert cart.get_cart_count() == 5


def test_summary_charges_delivery_under_threshold(cart):
    cart.add_to_cart(product("a", price=100), 2)
    summary = cart.get_cart_summary()

    assert summary.subtotal == Decimal("200")
    assert summary.delivery_charge == Decimal("50")
    assert summary.total == Decimal("250")
    assert summary.amount_to_free_delivery == Decimal("300")
    assert summary.is_free_delivery is False


def test_summary_free_delivery_above_threshold(cart):
    cart.add_to_cart(product("a", price=300), 2)
    summary = cart.get_cart_summary()

    assert summary.delivery_charge == 0
    assert summary.total == Decimal("600")
    assert summary.amount_to_free_delivery == 0
    assert summary.is_free_delivery is True


def test_summary_exactly_at_threshold_still_charged(cart):
    cart.add_to_cart(product("a", price=250), 2)
    assert cart.get_cart_summary().delivery_charge == Decimal("50")


@pytest.mark.parametrize("raw", ["not json", "{\"a\": 1}", "[{\"quantity\": 2}]", "42"])
def test_malformed_storage_loads_empty_cart(raw):
    storage = MemoryStorage({Config.CART_STORAGE_KEY: raw})
    assert CartService(storage).cart == []


def test_load_skips_invalid_entries_and_keeps_valid_ones(cart, storage):
    cart.add_to_cart(product("p1"), 2)
    entries = stored_cart(storage)
    entries.append({"product": {"_id": "p2", "price": 10}, "quantity": 0})
    storage.set(Config.CART_STORAGE_KEY, json.dumps(entries))

    reloaded = CartService(storage)
    assert [i.product.id for i in reloaded.cart] == ["p1"]


def test_prepare_for_checkout_is_independent_snapshot(cart):
    cart.add_to_cart(product("p1", price=80), 2)
    order_items = cart.prepare_for_checkout()
    cart.update_quantity("p1", 9)

    assert order_items[0].product_id == "p1"
    assert order_items[0].quantity == 2
    assert order_items[0].price == Decimal("80")
    assert order_items[0].image == "/uploads/p1.jpg"
    assert order_items[0].model_dump(by_alias=True)["product"] == "p1"


def test_merge_with_server_cart_keeps_higher_quantity(cart):
    cart.add_to_cart(product("p1"), 2)
    cart.add_to_cart(product("p2"), 5)
    server = [
        {"product": product("p1"), "quantity": 4},
        {"product": product("p2"), "quantity": 1},
        {"product": product("p3"), "quantity": 3},
    ]
    cart.merge_with_server_cart(server)

    assert [(i.product.id, i.quantity) for i in cart.cart] == [("p1", 4), ("p2", 5), ("p3", 3)]


def test_merge_with_invalid_server_cart_is_noop(cart):
    cart.add_to_cart(product("p1"), 2)
    cart.merge_with_server_cart(None)
    cart.merge_with_server_cart({"items": []})
    assert [(i.product.id, i.quantity) for i in cart.cart] == [("p1", 2)]


def test_estimated_delivery_date_cutoff(cart):
    morning = datetime(2026, 10, 19, 9, 30)
    afternoon = datetime(2026, 10, 19, 12, 0)
    assert cart.get_estimated_delivery_date(morning).isoformat() == "2026-10-19"
    assert cart.get_estimated_delivery_date(afternoon).isoformat() == "2026-10-20"


def test_wishlist_has_set_semantics(storage, cart):
    cart.add_to_wishlist(product("p1"))
    cart.add_to_wishlist(product("p1"))
    cart.add_to_wishlist(product("p2"))

    assert [p.id for p in cart.wishlist] == ["p1", "p2"]
    assert cart.is_in_wishlist("p1")
    cart.remove_from_wishlist("p1")
    assert not cart.is_in_wishlist("p1")
    assert [p.id for p in CartService(storage).wishlist] == ["p2"]


def test_wishlist_keeps_full_product(storage, cart):
    cart.add_to_wishlist(product("p1"))
    reloaded = CartService(storage)
    assert reloaded.wishlist[0].description == "Fresh from the farm"


def test_product_can_be_in_cart_and_wishlist(cart):
    cart.add_to_cart(product("p1"))
    cart.add_to_wishlist(product("p1"))
    assert cart.is_in_cart("p1") and cart.is_in_wishlist("p1")


def test_move_to_cart(storage, cart):
    cart.add_to_wishlist(product("p1", price=40))

    assert cart.move_to_cart("p1") is True
    assert cart.is_in_cart("p1")
    assert not cart.is_in_wishlist("p1")
    assert cart.get_cart_item("p1").product.price == Decimal("40")

    reloaded = CartService(storage)
    assert reloaded.is_in_cart("p1") and not reloaded.is_in_wishlist("p1")


def test_move_to_cart_increments_existing_entry(cart):
    cart.add_to_cart(product("p1"), 2)
    cart.add_to_wishlist(product("p1"))
    cart.move_to_cart("p1")
    assert cart.get_cart_item("p1").quantity == 3


def test_move_to_cart_without_wishlist_entry_is_noop(storage, cart):
    cart.add_to_cart(product("p2"))
    before = storage.get(Config.CART_STORAGE_KEY)

    assert cart.move_to_cart("p1") is False
    assert not cart.is_in_cart("p1")
    assert storage.get(Config.CART_STORAGE_KEY) == before


class FailingBatchStorage(MemoryStorage):
    def set_many(self, values):
        raise StorageConnectionError("disk full")


def test_move_to_cart_is_all_or_nothing():
    storage = FailingBatchStorage()
    store = CartService(storage)
    store.add_to_wishlist(product("p1"))

    with pytest.raises(StorageConnectionError):
        store.move_to_cart("p1")

    assert store.is_in_wishlist("p1")
    assert not store.is_in_cart("p1")
    reloaded = CartService(storage)
    assert reloaded.is_in_wishlist("p1") and not reloaded.is_in_cart("p1")


class FlakyReadStorage(MemoryStorage):
    def __init__(self, initial=None, failing_reads=1):
        super().__init__(initial)
        self.failing_reads = failing_reads

    def get(self, key):
        if self.failing_reads:
            self.failing_reads -= 1
            raise StorageConnectionError("connection reset")
        return super().get(key)


def test_unreadable_storage_does_not_load_empty_cart():
    seeded = CartService(MemoryStorage())
    seeded.add_to_cart(product("p1"), 3)
    storage = FlakyReadStorage({Config.CART_STORAGE_KEY: seeded.storage.get(Config.CART_STORAGE_KEY)})

    with pytest.raises(StorageConnectionError):
        CartService(storage)

    store = CartService(storage)
    store.add_to_cart(product("p2"))
    assert [i.product.id for i in CartService(storage).cart] == ["p1", "p2"]


def test_failed_reload_keeps_held_cart(storage):
    store = CartService(storage)
    store.add_to_cart(product("p1"), 3)
    flaky = FlakyReadStorage({Config.CART_STORAGE_KEY: storage.get(Config.CART_STORAGE_KEY)})
    store.storage = flaky

    with pytest.raises(StorageConnectionError):
        store.reload()

    assert [(i.product.id, i.quantity) for i in store.cart] == [("p1", 3)]
    store.add_to_cart(product("p2"))
    assert [i.product.id for i in CartService(flaky).cart] == ["p1", "p2"]


def test_remove_many(cart):
    for pid in ("a", "b", "c"):
        cart.add_to_cart(product(pid))
    cart.remove_many(["a", "c", "zzz"])
    assert [i.product.id for i in cart.cart] == ["b"]
