"""
Pydantic models for cart state, checkout, payment and HTTP requests.

Field aliases follow the remote API's wire names (``_id``, ``isAvailable``,
``shelfLife``...) so payloads can be validated as they arrive.
"""
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from typing import Any, Dict, List, Optional
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductSnapshot(BaseModel):
    """Display fields of a product, copied at add-to-cart time"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., alias="_id", min_length=1, description="Product identifier")
    name: Optional[str] = Field(None, description="Product name")
    price: Decimal = Field(Decimal("0"), description="Unit price")
    images: List[Any] = Field(default_factory=list, description="Image records or URLs")
    brand: Optional[str] = None
    unit: Optional[str] = None
    quantity: int = Field(0, description="Available stock quantity")
    is_available: bool = Field(False, alias="isAvailable", description="Availability flag")
    shelf_life: Optional[int] = Field(None, alias="shelfLife", description="Shelf life in days")

    @property
    def image_url(self) -> str:
        """URL of the first image, or an empty string"""
        if not self.images:
            return ""
        first = self.images[0]
        if isinstance(first, dict):
            return first.get("url") or ""
        return str(first)


class Product(ProductSnapshot):
    """Full product record as returned by the API"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    description: Optional[str] = None
    category: Optional[str] = None


class CartItem(BaseModel):
    """Cart entry"""
    model_config = ConfigDict(populate_by_name=True)

    product: ProductSnapshot
    quantity: int = Field(..., ge=1, description="Item quantity")
    snapshot_at: datetime = Field(default_factory=utcnow, alias="snapshotAt",
                                  description="When the product snapshot was taken")

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity


class CartSummary(BaseModel):
    """Derived cart totals"""
    items: int = Field(0, description="Number of distinct products")
    item_count: int = Field(0, description="Total quantity across entries")
    subtotal: Decimal = Decimal("0")
    delivery_charge: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    free_delivery_threshold: Decimal = Decimal("0")
    amount_to_free_delivery: Decimal = Decimal("0")

    @computed_field
    @property
    def is_free_delivery(self) -> bool:
        return self.delivery_charge == 0


class ValidationFinding(BaseModel):
    """One error or warning raised against a cart row"""
    index: int
    product_id: str
    product_name: Optional[str] = None
    message: str
    snapshot_at: Optional[datetime] = None


class CartValidationResult(BaseModel):
    """Aggregate outcome of a cart validation run"""
    is_valid: bool
    errors: List[ValidationFinding] = Field(default_factory=list)
    warnings: List[ValidationFinding] = Field(default_factory=list)
    message: str

    @computed_field
    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @computed_field
    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0


class OrderItem(BaseModel):
    """Checkout-time copy of a cart entry"""
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="product")
    quantity: int = Field(..., ge=1)
    price: Decimal
    name: Optional[str] = None
    image: str = ""


class DeliveryAddress(BaseModel):
    """Delivery address; completeness is checked by the order validators"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Optional[str] = None
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = "Pakistan"


class PlacedOrder(BaseModel):
    """Order created on the remote API at checkout"""
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="_id")
    order_number: Optional[str] = Field(None, alias="orderNumber")
    total_amount: Optional[Decimal] = Field(None, alias="totalAmount")
    payment_method: str = "card"
    items: List[OrderItem] = Field(default_factory=list)


class CheckoutState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INTENT_PENDING = "intent_pending"
    INTENT_READY = "intent_ready"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_STATUS_BY_STATE = {
    CheckoutState.UNINITIALIZED: PaymentStatus.UNINITIALIZED,
    CheckoutState.INTENT_PENDING: PaymentStatus.PENDING,
    CheckoutState.INTENT_READY: PaymentStatus.PENDING,
    CheckoutState.SUBMITTING: PaymentStatus.PROCESSING,
    CheckoutState.SUCCEEDED: PaymentStatus.SUCCEEDED,
    CheckoutState.FAILED: PaymentStatus.FAILED,
}


class PaymentSession(BaseModel):
    """Per-attempt payment state; never persisted"""
    order_id: str
    client_secret: Optional[str] = None
    state: CheckoutState = CheckoutState.UNINITIALIZED
    error: Optional[str] = None
    payment_intent_status: Optional[str] = None

    @computed_field
    @property
    def status(self) -> PaymentStatus:
        return _STATUS_BY_STATE[self.state]


class AuthSession(BaseModel):
    token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None

    @computed_field
    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


# Payment capability results

class PaymentErrorInfo(BaseModel):
    message: str
    code: Optional[str] = None
    type: Optional[str] = None


class CollectResult(BaseModel):
    error: Optional[PaymentErrorInfo] = None
    payment_method_id: Optional[str] = None


class ConfirmResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    error: Optional[PaymentErrorInfo] = None
    payment_intent: Optional[Any] = None


class CardDetails(BaseModel):
    """Card input; either raw card fields or an existing PaymentMethod id"""
    number: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    cvc: Optional[str] = None
    payment_method_id: Optional[str] = None


# HTTP request models

class CartItemRequest(BaseModel):
    """Request model for adding cart items"""
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(1, ge=1, description="Quantity to add")

    @field_validator('product_id')
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Product id cannot be empty")
        return v.strip()


class QuantityUpdateRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; 0 or less removes the item")


class WishlistRequest(BaseModel):
    product_id: str = Field(..., description="Product identifier")


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str
    email: str
    phone: str
    password: str


class PlaceOrderRequest(BaseModel):
    """Request model for checkout"""
    address: DeliveryAddress
    delivery_date: date
    delivery_time: str = Field("morning", description="morning, afternoon or evening")
    payment_method: str = Field("card", description="card or cod")
    contact_number: Optional[str] = None
    notes: str = ""
