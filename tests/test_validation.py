from storefront.models import CartItem, ProductSnapshot
from storefront.validation import validate_cart

from conftest import product


def test_quantity_above_stock_is_one_error():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=5)), quantity=10)]
    result = validate_cart(cart)

    assert result.is_valid is False
    assert len(result.errors) == 1
    assert result.errors[0].product_id == "p1"
    assert result.errors[0].message == "Only 5 items available in stock"
    assert result.warnings == []


def test_low_stock_is_warning_only():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=3)), quantity=2)]
    result = validate_cart(cart)

    assert result.is_valid is True
    assert result.errors == []
    assert len(result.warnings) == 1
    assert result.warnings[0].message == "Low stock: Only 3 items left"
    assert result.has_warnings and not result.has_errors


def test_unavailable_product_is_error():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", available=False)), quantity=1)]
    result = validate_cart(cart)
    assert [e.message for e in result.errors] == ["Product is no longer available"]


def test_stock_at_threshold_has_no_finding():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=5)), quantity=5)]
    result = validate_cart(cart)
    assert result.is_valid and result.errors == [] and result.warnings == []
    assert result.message == "Cart is valid"


def test_findings_carry_row_context():
    cart = [
        CartItem(product=ProductSnapshot.model_validate(product("ok", quantity=50)), quantity=1),
        CartItem(product=ProductSnapshot.model_validate(product("bad", quantity=1, name="Ghee")), quantity=4),
    ]
    result = validate_cart(cart)
    finding = result.errors[0]

    assert finding.index == 1
    assert finding.product_name == "Ghee"
    assert finding.snapshot_at == cart[1].snapshot_at
    assert result.message == "Some items have issues"


def test_live_products_override_stale_snapshot():
    cart = [
        CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=50)), quantity=10),
        CartItem(product=ProductSnapshot.model_validate(product("p2", quantity=50)), quantity=1),
    ]
    live = {
        "p1": ProductSnapshot.model_validate(product("p1", quantity=4)),
        "p2": None,
    }
    result = validate_cart(cart, live)

    assert [(e.product_id, e.message) for e in result.errors] == [
        ("p1", "Only 4 items available in stock"),
        ("p2", "Product is no longer available"),
    ]


def test_validation_is_idempotent_and_side_effect_free():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=3)), quantity=9)]
    before = [c.model_copy(deep=True) for c in cart]

    first = validate_cart(cart)
    second = validate_cart(cart)

    assert first == second
    assert cart == before


def test_custom_threshold():
    cart = [CartItem(product=ProductSnapshot.model_validate(product("p1", quantity=8)), quantity=1)]
    assert len(validate_cart(cart, low_stock_threshold=10).warnings) == 1
