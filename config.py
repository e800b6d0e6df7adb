"""
Runtime configuration for the Plant Shop API.

Everything is read from environment variables so the same build runs
locally, in CI and in production. Pricing knobs (tax, shipping) live
here rather than on individual orders.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Dict, List


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "plant_shop"

    jwt_secret: str = "change-this-secret"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Fraction of the order subtotal, e.g. 0.18 for 18%.
    tax_rate: float = 0.0
    shipping_costs: Dict[str, float] = field(
        default_factory=lambda: {"standard": 0.0, "express": 0.0, "overnight": 0.0}
    )

    order_number_max_attempts: int = 5
    reviews_auto_approve: bool = True

    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "plant_shop"),
        jwt_secret=os.getenv("JWT_SECRET", "change-this-secret"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)),
        tax_rate=_env_float("TAX_RATE", 0.0),
        shipping_costs={
            "standard": _env_float("SHIPPING_COST_STANDARD", 0.0),
            "express": _env_float("SHIPPING_COST_EXPRESS", 0.0),
            "overnight": _env_float("SHIPPING_COST_OVERNIGHT", 0.0),
        },
        order_number_max_attempts=int(os.getenv("ORDER_NUMBER_MAX_ATTEMPTS", 5)),
        reviews_auto_approve=_env_bool("REVIEWS_AUTO_APPROVE", True),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", 8000)),
    )


settings = get_settings()


def override_settings(**changes) -> Settings:
    """Replace the active settings (used by tests and embedding code)."""
    global settings
    settings = replace(settings, **changes)
    return settings
