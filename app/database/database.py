from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Opciones del engine según el driver (SQLite no admite pool_size)."""
    if url.startswith("sqlite"):
        return {
            "echo": settings.DEBUG,
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    options = {
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }
    if settings.ENVIRONMENT == "test":
        options["poolclass"] = NullPool
    else:
        options["pool_size"] = 10
        options["max_overflow"] = 20
    return options


# Async engine for application use
async_engine = create_async_engine(
    settings.async_database_url,
    **_engine_options(settings.async_database_url)
)

# Async session for application
AsyncSessionLocal = sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)

Base = declarative_base()


async def init_models(engine=async_engine):
    """Crear tablas (solo desarrollo / tests; en producción usar migraciones)."""
    # Registrar todos los modelos en Base.metadata
    import app.modules.products.models  # noqa: F401
    import app.modules.customers.models  # noqa: F401
    import app.modules.quotations.models  # noqa: F401
    import app.modules.online_orders.models  # noqa: F401
    import app.modules.sales.models  # noqa: F401
    import app.modules.payments.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Async dependency for application endpoints
async def get_async_db() -> AsyncSession:
    """Genera una sesión de base de datos asíncrona para endpoints."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()
