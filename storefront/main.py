"""
FastAPI application exposing the storefront core to a UI.

Run with: uvicorn storefront.main:create_app --factory

Routes that call the remote API are plain ``def`` so FastAPI runs them in its
threadpool; async routes hand blocking calls to ``asyncio.to_thread``.
"""
import time
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from storefront.checkout_service import order_product_ids
from storefront.config import Config
from storefront.container import Services, build_services
from storefront.exceptions import (
    ApiError,
    NetworkError,
    PaymentError,
    StaleStateError,
    StorageConnectionError,
    StorefrontException,
    ValidationError
)
from storefront.formatters import format_currency, format_order_number, format_order_status
from storefront.middleware import RequestLoggingMiddleware
from storefront.models import (
    CardDetails,
    CartItemRequest,
    CheckoutState,
    LoginRequest,
    PlaceOrderRequest,
    Product,
    QuantityUpdateRequest,
    RegisterRequest,
    WishlistRequest
)
from storefront.payment import PaymentCapability, StripePaymentCapability
from storefront.validators import validate_quantity

logger = logging.getLogger(__name__)

CapabilityFactory = Callable[[CardDetails], PaymentCapability]


def _response_data(response) -> dict:
    if isinstance(response, dict):
        return response.get("data") or {}
    return {}


def create_app(
    services: Optional[Services] = None,
    capability_factory: CapabilityFactory = StripePaymentCapability
) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Token validity is only known after a successful profile fetch
        await asyncio.to_thread(services.auth.restore)
        yield

    app = FastAPI(
        title="DairyDrop Storefront",
        description="Cart, wishlist, checkout and payment for the DairyDrop shop",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[Config.FRONTEND_BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    def fetch_product(product_id: str) -> Product:
        data = _response_data(services.api.get_product(product_id))
        return Product.model_validate(data.get("product") or data)

    def cart_payload() -> dict:
        return {
            "items": services.cart.cart,
            "unique_products": services.cart.get_unique_product_count(),
            "summary": services.cart.get_cart_summary(),
        }

    # Health check
    @app.get("/health")
    def health_check():
        """
        Health check. Always returns HTTP 200 while the process is running;
        reports whether the remote API answers.
        """
        api_status = "healthy"
        api_latency_ms = None
        try:
            ping_start = time.time()
            services.api.health_check()
            api_latency_ms = round((time.time() - ping_start) * 1000, 2)
        except StorefrontException:
            api_status = "unhealthy"

        return {
            "status": "healthy",
            "service": "storefront",
            "api": {"status": api_status, "latency_ms": api_latency_ms},
            "authenticated": services.auth.is_authenticated,
            "timestamp": time.time()
        }

    # Products
    @app.get("/products")
    def list_products(request: Request):
        return services.api.get_products(dict(request.query_params))

    @app.get("/products/{product_id}")
    def get_product(product_id: str):
        return services.api.get_product(product_id)

    # Cart endpoints
    @app.get("/cart")
    def get_cart():
        return cart_payload()

    @app.post("/cart/items")
    def add_cart_item(request: CartItemRequest):
        """Add a product to the cart after checking the requested quantity against stock"""
        product = fetch_product(request.product_id)
        existing = services.cart.get_cart_item(product.id)
        wanted = request.quantity + (existing.quantity if existing else 0)

        if not product.is_available:
            raise ValidationError("Product is not available")
        check = validate_quantity(wanted, product.quantity)
        if not check.is_valid:
            raise ValidationError(check.message, {"quantity": check.message})

        services.cart.add_to_cart(product, request.quantity)
        return {
            "success": True,
            "message": "Item added to cart",
            "product_id": product.id,
            "quantity": wanted,
            "unique_products": services.cart.get_unique_product_count()
        }

    @app.patch("/cart/items/{product_id}")
    def update_cart_item(product_id: str, request: QuantityUpdateRequest):
        if not services.cart.is_in_cart(product_id):
            raise HTTPException(status_code=404, detail="Product not found in cart")
        services.cart.update_quantity(product_id, request.quantity)
        return cart_payload()

    @app.delete("/cart/items/{product_id}")
    def remove_cart_item(product_id: str):
        if not services.cart.is_in_cart(product_id):
            raise HTTPException(status_code=404, detail="Product not found in cart")
        services.cart.remove_from_cart(product_id)
        return {"success": True, "message": "Item removed from cart", "product_id": product_id}

    @app.delete("/cart")
    def clear_cart():
        services.cart.clear_cart()
        return {"success": True, "message": "Cart cleared"}

    @app.get("/cart/summary")
    def get_cart_summary():
        summary = services.cart.get_cart_summary()
        hint = None
        if summary.amount_to_free_delivery > 0:
            hint = f"Add {format_currency(summary.amount_to_free_delivery)} more for free delivery"
        return {
            **summary.model_dump(),
            "display_total": format_currency(summary.total),
            "free_delivery_hint": hint,
            "estimated_delivery_date": services.cart.get_estimated_delivery_date().isoformat()
        }

    @app.get("/cart/validate")
    def validate_cart(live: bool = True):
        if live:
            return services.checkout.validate_against_live()
        return services.cart.validate_cart()

    # Wishlist endpoints
    @app.get("/wishlist")
    def get_wishlist():
        return {"items": services.cart.wishlist}

    @app.post("/wishlist")
    def add_to_wishlist(request: WishlistRequest):
        product = fetch_product(request.product_id)
        services.cart.add_to_wishlist(product)
        return {"success": True, "message": "Added to wishlist", "product_id": product.id}

    @app.delete("/wishlist/{product_id}")
    def remove_from_wishlist(product_id: str):
        if not services.cart.is_in_wishlist(product_id):
            raise HTTPException(status_code=404, detail="Product not found in wishlist")
        services.cart.remove_from_wishlist(product_id)
        return {"success": True, "message": "Removed from wishlist", "product_id": product_id}

    @app.post("/wishlist/{product_id}/move-to-cart")
    def move_to_cart(product_id: str):
        if not services.cart.move_to_cart(product_id):
            raise HTTPException(status_code=404, detail="Product not found in wishlist")
        return cart_payload()

    # Auth endpoints
    @app.post("/auth/login")
    def login(request: LoginRequest):
        user = services.auth.login(request.email, request.password)
        return {"success": True, "user": user}

    @app.post("/auth/register")
    def register(request: RegisterRequest):
        user = services.auth.register(request.name, request.email, request.phone, request.password)
        return {"success": True, "user": user}

    @app.post("/auth/logout")
    def logout():
        services.auth.logout()
        return {"success": True, "message": "Logged out successfully"}

    @app.get("/auth/me")
    def me():
        if not services.auth.is_authenticated:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return services.auth.session.model_dump(exclude={"token"})

    # Orders and checkout
    @app.get("/orders")
    def list_orders():
        data = _response_data(services.api.get_orders())
        orders = data.get("orders") or []
        return {
            "orders": [
                {
                    **order,
                    "status_label": format_order_status(order.get("orderStatus")),
                    "display_number": format_order_number(order.get("orderNumber"))
                }
                for order in orders
            ]
        }

    @app.post("/checkout/orders")
    def place_order(request: PlaceOrderRequest):
        placed = services.checkout.place_order(
            address=request.address,
            delivery_date=request.delivery_date,
            delivery_time=request.delivery_time,
            payment_method=request.payment_method,
            contact_number=request.contact_number,
            notes=request.notes
        )
        return {"success": True, "message": "Order created successfully", "order": placed}

    @app.post("/checkout/orders/{order_id}/pay")
    async def pay_order(order_id: str, card: CardDetails):
        """Create the payment intent for an order and confirm it with the given card"""
        order = _response_data(await asyncio.to_thread(services.api.get_order, order_id)).get("order") or {}
        if order.get("paymentStatus") == "paid":
            return {"success": True, "message": "Payment already processed", "session": None}

        orchestrator = services.checkout.create_payment_orchestrator(
            order_id,
            capability_factory(card),
            product_ids=order_product_ids(order),
            success_delay=0
        )
        session = await orchestrator.start()
        if orchestrator.state is CheckoutState.INTENT_READY:
            session = await orchestrator.submit()

        if orchestrator.error is not None and orchestrator.state in (CheckoutState.FAILED, CheckoutState.INTENT_READY):
            raise orchestrator.error
        return {"success": orchestrator.state is CheckoutState.SUCCEEDED, "session": session}

    @app.get("/checkout/orders/{order_id}/payment-status")
    def payment_status(order_id: str):
        return services.api.get_payment_status(order_id)

    # Error handlers
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation error", "message": exc.message, "errors": exc.errors}
        )

    @app.exception_handler(StaleStateError)
    async def stale_state_handler(request, exc):
        return JSONResponse(
            status_code=409,
            content={
                "error": "Cart needs attention",
                "message": exc.message,
                "validation": exc.result.model_dump(mode="json")
            }
        )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request, exc):
        return JSONResponse(
            status_code=402,
            content={"error": "Payment failed", "message": exc.message, "code": exc.code}
        )

    @app.exception_handler(ApiError)
    async def api_error_handler(request, exc):
        status_code = exc.status_code if 400 <= exc.status_code < 600 else 502
        return JSONResponse(status_code=status_code, content={"error": "API error", "message": exc.message})

    @app.exception_handler(NetworkError)
    async def network_error_handler(request, exc):
        return JSONResponse(status_code=503, content={"error": "Service unavailable", "message": exc.message})

    @app.exception_handler(StorageConnectionError)
    async def storage_error_handler(request, exc):
        return JSONResponse(
            status_code=503,
            content={"error": "Service unavailable", "message": "Storage backend failed"}
        )

    # Generic exception handler for unhandled errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc), "type": type(exc).__name__}
        )

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=Config.APP_PORT)
