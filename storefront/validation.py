"""
Cart validation engine.

Classifies every cart row against product availability and stock. Used as the
gate right before checkout; it never mutates the cart it is given.
"""
from typing import Mapping, Optional, Sequence

from storefront.config import Config
from storefront.models import CartItem, CartValidationResult, ProductSnapshot, ValidationFinding

LOW_STOCK_THRESHOLD = Config.LOW_STOCK_THRESHOLD


def validate_cart(
    items: Sequence[CartItem],
    live_products: Optional[Mapping[str, Optional[ProductSnapshot]]] = None,
    low_stock_threshold: int = LOW_STOCK_THRESHOLD
) -> CartValidationResult:
    """
    Validate cart items.

    Args:
        items: Cart entries to check
        live_products: Current product state by id. When given, each row is
            checked against it instead of the snapshot held in the cart; a
            missing or None entry means the product no longer exists.
        low_stock_threshold: Stock level below which a warning is raised

    Returns:
        CartValidationResult; valid iff there are no errors
    """
    errors = []
    warnings = []

    for index, item in enumerate(items):
        snapshot = item.product
        if live_products is None:
            current = snapshot
        else:
            current = live_products.get(snapshot.id)

        def finding(message: str) -> ValidationFinding:
            return ValidationFinding(
                index=index,
                product_id=snapshot.id,
                product_name=(current.name if current is not None else None) or snapshot.name,
                message=message,
                snapshot_at=item.snapshot_at
            )

        if current is None or not current.is_available:
            errors.append(finding("Product is no longer available"))
        elif item.quantity > current.quantity:
            errors.append(finding(f"Only {current.quantity} items available in stock"))
        elif current.quantity < low_stock_threshold:
            warnings.append(finding(f"Low stock: Only {current.quantity} items left"))

    return CartValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        message="Cart is valid" if not errors else "Some items have issues"
    )
