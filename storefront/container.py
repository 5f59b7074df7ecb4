"""
Wiring of the storefront services. Built once at process start and passed to
whoever needs them.
"""
from dataclasses import dataclass
from typing import Optional

import requests

from storefront.api_client import ApiClient
from storefront.auth_service import AuthService
from storefront.cart_service import CartService
from storefront.checkout_service import CheckoutService
from storefront.config import Config
from storefront.storage import KeyValueStorage, create_storage


@dataclass
class Services:
    storage: KeyValueStorage
    api: ApiClient
    cart: CartService
    auth: AuthService
    checkout: CheckoutService


def build_services(
    storage: Optional[KeyValueStorage] = None,
    session: Optional[requests.Session] = None,
    base_url: Optional[str] = None
) -> Services:
    storage = storage or create_storage()
    api = ApiClient(storage, base_url=base_url or Config.API_BASE_URL, session=session)
    cart = CartService(storage)
    auth = AuthService(api, cart)
    checkout = CheckoutService(api, cart, auth)
    return Services(storage=storage, api=api, cart=cart, auth=auth, checkout=checkout)
