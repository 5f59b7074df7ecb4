import json
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urlparse

import pytest
import requests

from storefront.api_client import ApiClient
from storefront.cart_service import CartService
from storefront.models import CollectResult, ConfirmResult, PaymentErrorInfo
from storefront.payment import PaymentCapability
from storefront.storage import MemoryStorage

API_BASE = "https://api.test"


def make_response(status: int = 200, payload: Any = None, text: Optional[str] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if text is None:
        response._content = json.dumps(payload if payload is not None else {}).encode()
        response.headers["Content-Type"] = "application/json; charset=utf-8"
    else:
        response._content = text.encode()
        response.headers["Content-Type"] = "text/html"
    response.encoding = "utf-8"
    return response


class Call(NamedTuple):
    method: str
    path: str
    kwargs: Dict[str, Any]

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs.get("headers") or {}

    @property
    def json(self) -> Any:
        data = self.kwargs.get("data")
        return json.loads(data) if data else None


class FakeSession:
    """Stands in for requests.Session; routes by (method, path)"""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Call] = []

    def add(self, method: str, path: str, payload: Any = None, status: int = 200) -> None:
        self.routes[(method, path)] = make_response(status, payload)

    def add_handler(self, method: str, path: str, handler: Callable[..., requests.Response]) -> None:
        self.routes[(method, path)] = handler

    def fail(self, method: str, path: str, error: Exception) -> None:
        self.routes[(method, path)] = error

    def calls_to(self, method: str, path: str) -> List[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def request(self, method, url, **kwargs):
        path = urlparse(url).path
        self.calls.append(Call(method, path, kwargs))
        route = self.routes.get((method, path))
        if route is None:
            return make_response(404, {"success": False, "message": f"Not found: {method} {path}"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(**kwargs)
        return route


class FakeCapability(PaymentCapability):
    """Payment capability with scripted results"""

    def __init__(self, collect_error: Optional[str] = None, status: Optional[str] = "succeeded",
                 confirm_error: Optional[str] = None, raises: Optional[Exception] = None):
        self.collect_error = collect_error
        self.status = status
        self.confirm_error = confirm_error
        self.raises = raises
        self.collect_calls = 0
        self.confirm_calls: List[Tuple[str, str]] = []
        self.intent = {"id": "pi_123", "status": status, "amount": 55000}

    def collect_details(self) -> CollectResult:
        self.collect_calls += 1
        if self.collect_error:
            return CollectResult(error=PaymentErrorInfo(message=self.collect_error))
        return CollectResult(payment_method_id="pm_test")

    def confirm(self, client_secret: str, return_url: str) -> ConfirmResult:
        self.confirm_calls.append((client_secret, return_url))
        if self.raises:
            raise self.raises
        if self.confirm_error:
            return ConfirmResult(error=PaymentErrorInfo(message=self.confirm_error, code="card_declined"))
        return ConfirmResult(payment_intent=self.intent)


def product(product_id: str = "p1", price: Any = 100, quantity: int = 20,
            available: bool = True, name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "_id": product_id,
        "name": name or f"Product {product_id}",
        "price": price,
        "images": [{"url": f"/uploads/{product_id}.jpg"}],
        "brand": "DairyDrop",
        "unit": "litre",
        "quantity": quantity,
        "isAvailable": available,
        "shelfLife": 7,
        "description": "Fresh from the farm",
        "category": "milk",
    }


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def api(storage, session):
    return ApiClient(storage, base_url=API_BASE, session=session)


@pytest.fixture
def cart(storage):
    return CartService(storage)
