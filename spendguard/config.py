"""SpendGuard — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class SpendGuardSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "SPENDGUARD_",
        "extra": "ignore",
    }

    # ── Wallet ledger ──────────────────────────────────────────
    database_url: str = "sqlite://"

    # ── Simulated clock ────────────────────────────────────────
    tick_interval_ms: int = 100
    frame_interval_ms: int = 16
    default_speed: int = 1
    simulated_day_ms: int = 86_400_000

    # ── Event seeding ──────────────────────────────────────────
    product_stagger_ms: int = 5000
    product_priority: int = 5
    subscription_priority: int = 7
    market_priority: int = 8
    bill_priority: int = 10

    # ── Engine behaviour ───────────────────────────────────────
    reject_pending_on_stop: bool = False
    complete_when_drained: bool = True
    default_payment_method: str = "PayNow"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "console"


settings = SpendGuardSettings()
