"""Reconciler configuration."""
from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_CONFLICT_MARKERS = ["test", "cod", "prepaid", "discount", "save", "off"]


class ReconcilerSettings(BaseSettings):
    """Discount reconciler configuration."""

    # Store connection
    shop_domain: str = ""
    access_token: str = ""
    api_version: str = "2024-10"
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    page_size: int = 50

    # Propagation settle. Placeholder values pending measurement against the
    # store's indexing latency under load.
    settle_interval_seconds: float = 1.0
    settle_max_attempts: int = 5

    # Conflict predicate
    conflict_markers: str = ",".join(DEFAULT_CONFLICT_MARKERS)
    clear_all_automatic: bool = True
    conflict_percentage: Decimal = Decimal("100")
    high_percentage_threshold: Decimal = Decimal("50")

    # Checkout arithmetic
    amount_tolerance: Decimal = Decimal("0.01")
    monitor_auto_wait_seconds: float = 3.0
    monitor_error_threshold: Decimal = Decimal("1.00")

    # Overall cleanup + create deadline
    pipeline_deadline_seconds: Optional[float] = 60.0

    log_level: str = "INFO"

    class Config:
        env_prefix = "DISCOUNT_RECONCILER_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("shop_domain")
    @classmethod
    def strip_scheme(cls, v: str) -> str:
        v = v.strip()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        return v.rstrip("/")

    @property
    def conflict_marker_list(self) -> List[str]:
        """Comma-separated markers as a lowercase list."""
        return [m.strip().lower() for m in self.conflict_markers.split(",") if m.strip()]


@lru_cache
def get_settings() -> ReconcilerSettings:
    """Get cached settings instance."""
    return ReconcilerSettings()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for command line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
