from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Local persistence for the cashier's cart and the checkout audit trail
    DATABASE_URL: str = "sqlite:///./checkout_engine.db"

    # Storefront REST API (products, discounts, orders, invoices)
    STOREFRONT_API_URL: str = "http://localhost:3000/api"
    STOREFRONT_API_TOKEN: str = ""
    STOREFRONT_TIMEOUT_SECONDS: float = 30.0

    # Idle cashier sessions are dropped from memory after this long; the
    # persisted cart is reloaded on the next request
    SESSION_IDLE_SECONDS: int = 1800

    # CORS origins for the cashier UI
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Money & receipts
    MONEY_QUANTUM: Decimal = Decimal("0.01")
    STORE_NAME: str = "Koperasi Sekolah"
    CURRENCY_LABEL: str = "Rp"
    RECEIPT_WIDTH: int = 40

    LOG_LEVEL: str = "INFO"


settings = Settings()
