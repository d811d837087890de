"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session
- All operations within a request are atomic
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each request
"""

import logging
import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

connect_args = {}
db_url = str(settings.database_url)

# Managed Postgres providers sit behind pgbouncer and require SSL
if settings.environment == "production" or "pooler" in db_url:
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    connect_args["ssl"] = ssl_context
    # pgbouncer in transaction mode cannot keep prepared statements
    connect_args["prepared_statement_cache_size"] = 0
    connect_args["statement_cache_size"] = 0
    logger.info("Using SSL for database connection with pgbouncer compatibility")

engine = create_async_engine(
    settings.database_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
    pool_timeout=30,
    connect_args=connect_args,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Transaction Behavior:
    - Session starts in a transaction automatically
    - On successful completion: COMMIT
    - On any exception: ROLLBACK
    - Session is always closed properly

    Change feed events for maintenance requests are published only after
    the COMMIT succeeds.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions (for use outside FastAPI)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def set_tenant_context(
    session: AsyncSession,
    organization_id: UUID,
    user_id: UUID | None = None,
) -> None:
    """Set the row-level security context for the current transaction.

    The policies installed by ``init_db`` read ``app.current_organization_id``
    and ``app.current_user_id``. Only PostgreSQL understands these settings;
    other dialects (the SQLite test database) are left untouched.
    """
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return

    await session.execute(
        text("SELECT set_config('app.current_organization_id', :org_id, true)"),
        {"org_id": str(organization_id)},
    )
    if user_id:
        await set_user_context(session, user_id)


async def set_user_context(session: AsyncSession, user_id: UUID) -> None:
    """Identify the acting user before their organization is known.

    Enough for the policies that let a user read their own profile, role
    assignments and the organization directory.
    """
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return

    await session.execute(
        text("SELECT set_config('app.current_user_id', :user_id, true)"),
        {"user_id": str(user_id)},
    )


async def set_service_context(session: AsyncSession) -> None:
    """Mark the current transaction as a privileged gateway operation.

    Used by the organization functions (create organization, approve join
    request) that must write rows the caller cannot reach under RLS.
    """
    if session.bind is None or session.bind.dialect.name != "postgresql":
        return

    await session.execute(text("SELECT set_config('app.service_role', 'on', true)"))


async def init_db() -> None:
    """Initialize database (create tables, RLS policies and triggers)."""
    from ..models import Base
    from .policies import POSTGRES_POLICIES

    async with engine.begin() as conn:
        # In production, use migrations instead
        await conn.run_sync(Base.metadata.create_all)
        if conn.dialect.name == "postgresql":
            for statement in POSTGRES_POLICIES:
                await conn.exec_driver_sql(statement)
            logger.info(f"Applied {len(POSTGRES_POLICIES)} row-level security statements")


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
