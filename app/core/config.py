from decimal import Decimal
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'tienda_user'
    POSTGRES_PASSWORD: str = 'tienda_pass'
    POSTGRES_DB: str = 'tienda_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Override completo (tests / SQLite local)

    # JWT settings (solo verificación de claims, la emisión es externa)
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Pasarela de pagos para pedidos en línea
    PAYMENT_MODE: str = 'mock'  # mock | disabled
    MOCK_GATEWAY_DECLINE_LAST4: str = '0002'  # Tarjeta de prueba que siempre se rechaza

    # Reglas de negocio
    DEFAULT_TAX_RATE: Decimal = Decimal('0.16')
    DEFAULT_CREDIT_DAYS: int = 30
    QUOTATION_VALID_DAYS: int = 15
    RESTOCK_ON_PARTIAL_CANCELLATION: bool = False

    # Cobranza
    AGING_TOP_DEBTORS: int = 10
    CREDIT_WARNING_PERCENT: Decimal = Decimal('90')
    DUE_SOON_DAYS: int = 7

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "RESTOCK_ON_PARTIAL_CANCELLATION", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

settings = Settings()
