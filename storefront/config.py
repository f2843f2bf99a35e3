"""
Configuration management for the storefront client layer.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
from decimal import Decimal
from typing import Optional

import boto3

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "storefront")
    REGION: str = os.getenv("REGION", "ap-southeast-2")

    # Remote backend
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:5000/api")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "30"))

    # Durable storage: "redis" or "memory"
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "redis")

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "true").lower() == "true"

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Records never expire unless a TTL is set (0 = keep forever)
    STORAGE_TTL_SECONDS: int = int(os.getenv("STORAGE_TTL_SECONDS", "0"))

    # Checkout pricing
    TAX_RATE: Decimal = Decimal(os.getenv("TAX_RATE", "0.10"))
    SHIPPING_PRICE: Decimal = Decimal(os.getenv("SHIPPING_PRICE", "0"))
    PAYMENT_METHODS = ("Credit Card", "PayPal", "Stripe", "Cash on Delivery")

    # Order lifecycle
    CANCEL_WINDOW_HOURS: int = int(os.getenv("CANCEL_WINDOW_HOURS", "24"))

    # Catalog
    PRODUCT_PAGE_LIMIT: int = int(os.getenv("PRODUCT_PAGE_LIMIT", "12"))

    # Live client contexts in the facade
    MAX_CONTEXTS: int = int(os.getenv("MAX_CONTEXTS", "1000"))
    CONTEXT_IDLE_SECONDS: int = int(os.getenv("CONTEXT_IDLE_SECONDS", "1800"))

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            # Continue without auth token (may fail on connection)
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")


# Load secrets at module import
Config.load_redis_secrets()
