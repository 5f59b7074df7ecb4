"""
Configuration management for the storefront client.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    REGION: str = os.getenv("REGION", "ap-southeast-2")

    # Remote commerce API
    API_BASE_URL: str = os.getenv("API_BASE_URL", "https://dairydrop.onrender.com")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "30"))
    FRONTEND_BASE_URL: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Storage settings
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "file")  # file | memory | redis
    STORAGE_PATH: str = os.getenv("STORAGE_PATH", os.path.expanduser("~/.dairydrop/storage.json"))

    # Fixed storage keys (token and cart are cleared together on logout)
    TOKEN_STORAGE_KEY: str = "access_token"
    CART_STORAGE_KEY: str = "dairy_cart"
    WISHLIST_STORAGE_KEY: str = "dairy_wishlist"

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_USE_SSL: bool = _env_bool("REDIS_USE_SSL", "false")
    REDIS_KEY_PREFIX: str = os.getenv("REDIS_KEY_PREFIX", "storefront:")

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 10

    # Pricing and delivery
    FREE_DELIVERY_THRESHOLD: Decimal = Decimal(os.getenv("FREE_DELIVERY_THRESHOLD", "500"))
    DELIVERY_CHARGE: Decimal = Decimal(os.getenv("DELIVERY_CHARGE", "50"))
    SAME_DAY_CUTOFF_HOUR: int = int(os.getenv("SAME_DAY_CUTOFF_HOUR", "12"))
    LOW_STOCK_THRESHOLD: int = 5
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "₨")

    # Payment settings
    STRIPE_PUBLISHABLE_KEY: Optional[str] = os.getenv("STRIPE_PUBLISHABLE_KEY")
    PAYMENT_SUCCESS_DELAY_SECONDS: float = float(os.getenv("PAYMENT_SUCCESS_DELAY_SECONDS", "2"))

    @classmethod
    def load_secrets(cls) -> None:
        """Load the publishable key and Redis auth token from AWS Secrets Manager"""
        secret_name = os.getenv("STOREFRONT_SECRET_NAME")
        if not secret_name:
            return  # Nothing to load, environment values stand

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])
        except Exception as e:
            logger.warning(f"Could not load storefront secrets from Secrets Manager: {e}")
            return

        if not cls.STRIPE_PUBLISHABLE_KEY:
            cls.STRIPE_PUBLISHABLE_KEY = secret_data.get("stripe_publishable_key")
        if not cls.REDIS_AUTH_TOKEN:
            cls.REDIS_AUTH_TOKEN = secret_data.get("redis_auth_token")
        if "redis_endpoint" in secret_data:
            cls.REDIS_HOST = secret_data["redis_endpoint"]


# Load secrets at module import
Config.load_secrets()
