"""
Cart and wishlist store with client-local persistence.

The store is the single owner of cart state. Every mutation rewrites the full
cart (or wishlist) document in storage; the last write wins.
"""
import json
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from storefront.config import Config
from storefront.exceptions import StorageConnectionError, ValidationError
from storefront.models import (
    CartItem,
    CartSummary,
    CartValidationResult,
    OrderItem,
    Product,
    ProductSnapshot
)
from storefront.storage import KeyValueStorage
from storefront.validation import validate_cart

logger = logging.getLogger(__name__)

ProductLike = Union[Product, ProductSnapshot, Mapping[str, Any]]


def _to_product(product: ProductLike) -> Product:
    if isinstance(product, Product):
        return product
    if isinstance(product, ProductSnapshot):
        return Product.model_validate(product.model_dump(by_alias=True))
    if not product or not product.get("_id", product.get("id")):
        raise ValidationError("Invalid product")
    try:
        return Product.model_validate(dict(product))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid product: {e}")


def _snapshot(product: Product) -> ProductSnapshot:
    return ProductSnapshot.model_validate(product.model_dump(by_alias=True))


class CartService:
    """Service for cart and wishlist operations"""

    def __init__(
        self,
        storage: KeyValueStorage,
        cart_key: str = Config.CART_STORAGE_KEY,
        wishlist_key: str = Config.WISHLIST_STORAGE_KEY
    ):
        self.storage = storage
        self.cart_key = cart_key
        self.wishlist_key = wishlist_key
        self._cart: List[CartItem] = self._load_cart()
        self._wishlist: List[Product] = self._load_wishlist()

    # Persistence

    def _read_list(self, key: str) -> List[Any]:
        """
        Stored list under ``key``; missing or malformed content reads as empty.

        Raises:
            StorageConnectionError: The backend could not be read. Nothing is
                loaded, so a later write cannot clobber the stored document.
        """
        try:
            raw = self.storage.get(key)
        except StorageConnectionError as e:
            logger.error(f"Error loading {key} from storage: {e.message}")
            raise
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed {key} in storage: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Discarding malformed {key} in storage: expected a list")
            return []
        return data

    def _load_cart(self) -> List[CartItem]:
        items: List[CartItem] = []
        seen = set()
        for entry in self._read_list(self.cart_key):
            try:
                item = CartItem.model_validate(entry)
            except PydanticValidationError as e:
                # Skip invalid items
                logger.warning(f"Skipping invalid cart entry: {e}")
                continue
            if item.product.id in seen:
                continue
            seen.add(item.product.id)
            items.append(item)
        return items

    def _load_wishlist(self) -> List[Product]:
        products: List[Product] = []
        seen = set()
        for entry in self._read_list(self.wishlist_key):
            try:
                product = Product.model_validate(entry)
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid wishlist entry: {e}")
                continue
            if product.id not in seen:
                seen.add(product.id)
                products.append(product)
        return products

    def _dump_cart(self, cart: Sequence[CartItem]) -> str:
        return json.dumps([item.model_dump(mode="json", by_alias=True) for item in cart])

    def _dump_wishlist(self, wishlist: Sequence[Product]) -> str:
        return json.dumps([product.model_dump(mode="json", by_alias=True) for product in wishlist])

    def _commit_cart(self, cart: List[CartItem]) -> List[CartItem]:
        self.storage.set(self.cart_key, self._dump_cart(cart))
        self._cart = cart
        return self.cart

    def _commit_wishlist(self, wishlist: List[Product]) -> List[Product]:
        self.storage.set(self.wishlist_key, self._dump_wishlist(wishlist))
        self._wishlist = wishlist
        return self.wishlist

    def reload(self) -> None:
        """Re-read cart and wishlist from storage; on failure the held state is kept"""
        cart = self._load_cart()
        wishlist = self._load_wishlist()
        self._cart = cart
        self._wishlist = wishlist

    # Cart

    @property
    def cart(self) -> List[CartItem]:
        return list(self._cart)

    def _find(self, product_id: str) -> Optional[CartItem]:
        return next((item for item in self._cart if item.product.id == product_id), None)

    def _added(self, cart: List[CartItem], product: Product, quantity: int) -> List[CartItem]:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        updated = []
        found = False
        for item in cart:
            if item.product.id == product.id:
                item = item.model_copy(update={"quantity": item.quantity + quantity})
                found = True
            updated.append(item)
        if not found:
            updated.append(CartItem(product=_snapshot(product), quantity=quantity))
        return updated

    def add_to_cart(self, product: ProductLike, quantity: int = 1) -> List[CartItem]:
        """
        Add a product to the cart.

        An existing entry has its quantity increased; otherwise a snapshot of
        the product's display fields is stored. Stock is not checked here.
        """
        product = _to_product(product)
        cart = self._added(self._cart, product, quantity)
        logger.debug(f"Cart add: product={product.id} quantity={quantity}")
        return self._commit_cart(cart)

    def update_quantity(self, product_id: str, quantity: int) -> List[CartItem]:
        """Set an entry's quantity; 0 or less removes it, unknown ids are ignored"""
        if quantity <= 0:
            return self.remove_from_cart(product_id)
        if self._find(product_id) is None:
            return self.cart
        cart = [
            item.model_copy(update={"quantity": quantity}) if item.product.id == product_id else item
            for item in self._cart
        ]
        return self._commit_cart(cart)

    def remove_from_cart(self, product_id: str) -> List[CartItem]:
        if self._find(product_id) is None:
            return self.cart
        return self._commit_cart([item for item in self._cart if item.product.id != product_id])

    def remove_many(self, product_ids: Sequence[str]) -> List[CartItem]:
        """Remove several entries in one write (used after an order completes)"""
        ids = set(product_ids)
        cart = [item for item in self._cart if item.product.id not in ids]
        if len(cart) == len(self._cart):
            return self.cart
        return self._commit_cart(cart)

    def clear_cart(self) -> List[CartItem]:
        return self._commit_cart([])

    def is_in_cart(self, product_id: str) -> bool:
        return self._find(product_id) is not None

    def get_cart_item(self, product_id: str) -> Optional[CartItem]:
        return self._find(product_id)

    # Derived values

    def get_cart_total(self) -> Decimal:
        """Sum of price * quantity"""
        return sum((item.line_total for item in self._cart), Decimal("0"))

    def get_cart_count(self) -> int:
        """Total quantity across entries"""
        return sum(item.quantity for item in self._cart)

    def get_unique_product_count(self) -> int:
        """Number of distinct entries (cart badge)"""
        return len(self._cart)

    def get_cart_summary(self) -> CartSummary:
        subtotal = self.get_cart_total()
        threshold = Config.FREE_DELIVERY_THRESHOLD
        delivery_charge = Decimal("0") if subtotal > threshold else Config.DELIVERY_CHARGE
        return CartSummary(
            items=self.get_unique_product_count(),
            item_count=self.get_cart_count(),
            subtotal=subtotal,
            delivery_charge=delivery_charge,
            total=subtotal + delivery_charge,
            free_delivery_threshold=threshold,
            amount_to_free_delivery=max(Decimal("0"), threshold - subtotal)
        )

    def get_estimated_delivery_date(self, now: Optional[datetime] = None) -> date:
        """Same day before the cutoff hour, next day after it"""
        now = now or datetime.now()
        if now.hour < Config.SAME_DAY_CUTOFF_HOUR:
            return now.date()
        return now.date() + timedelta(days=1)

    def validate_cart(
        self,
        live_products: Optional[Mapping[str, Optional[ProductSnapshot]]] = None
    ) -> CartValidationResult:
        return validate_cart(self.cart, live_products)

    def prepare_for_checkout(self) -> List[OrderItem]:
        """Checkout-time copy of the cart, independent of later mutation"""
        return [
            OrderItem(
                product_id=item.product.id,
                quantity=item.quantity,
                price=item.product.price,
                name=item.product.name,
                image=item.product.image_url
            )
            for item in self._cart
        ]

    def merge_with_server_cart(self, server_cart: Any) -> List[CartItem]:
        """
        Merge a server-held cart into the local one.

        Entries present in both keep the higher quantity; server-only entries
        are appended. Anything that is not a list leaves the cart untouched.
        """
        if not server_cart or not isinstance(server_cart, list):
            return self.cart

        server_items: Dict[str, CartItem] = {}
        for entry in server_cart:
            try:
                item = entry if isinstance(entry, CartItem) else CartItem.model_validate(entry)
            except PydanticValidationError:
                continue
            server_items.setdefault(item.product.id, item)

        merged = []
        for item in self._cart:
            server_item = server_items.pop(item.product.id, None)
            if server_item is not None:
                item = item.model_copy(update={"quantity": max(item.quantity, server_item.quantity)})
            merged.append(item)
        merged.extend(server_items.values())

        return self._commit_cart(merged)

    # Wishlist

    @property
    def wishlist(self) -> List[Product]:
        return list(self._wishlist)

    def is_in_wishlist(self, product_id: str) -> bool:
        return any(product.id == product_id for product in self._wishlist)

    def add_to_wishlist(self, product: ProductLike) -> List[Product]:
        product = _to_product(product)
        if self.is_in_wishlist(product.id):
            return self.wishlist
        return self._commit_wishlist(self._wishlist + [product])

    def remove_from_wishlist(self, product_id: str) -> List[Product]:
        if not self.is_in_wishlist(product_id):
            return self.wishlist
        return self._commit_wishlist([p for p in self._wishlist if p.id != product_id])

    def move_to_cart(self, product_id: str) -> bool:
        """
        Move a wishlisted product into the cart (quantity 1).

        Both documents are written in a single storage call, so the product
        never ends up in neither or both collections. Returns False, changing
        nothing, when the product is not in the wishlist.
        """
        product = next((p for p in self._wishlist if p.id == product_id), None)
        if product is None:
            return False

        cart = self._added(self._cart, product, 1)
        wishlist = [p for p in self._wishlist if p.id != product_id]
        self.storage.set_many({
            self.cart_key: self._dump_cart(cart),
            self.wishlist_key: self._dump_wishlist(wishlist),
        })
        self._cart = cart
        self._wishlist = wishlist
        return True
