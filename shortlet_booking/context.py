"""
Application context.

Everything with a lifecycle (database engine, gateway HTTP client, Redis
connection) is built once at startup by ``build_context`` and handed to
route handlers through the ``get_context`` dependency.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, Request
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .config import Settings
from .database import create_engine, create_session_factory
from .locks import BookingLockManager
from .notifications import Notifier
from .payment_adapters import PaymentGatewayAdapter, PaystackAdapter

logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    gateway: PaymentGatewayAdapter
    notifier: Notifier
    locks: BookingLockManager
    redis: Optional[aioredis.Redis] = None

    async def aclose(self) -> None:
        await self.gateway.close()
        if self.redis is not None:
            await self.redis.aclose()
        await self.engine.dispose()
        logger.info("Application context closed")


def build_context(
    settings: Settings,
    gateway: Optional[PaymentGatewayAdapter] = None,
    notifier: Optional[Notifier] = None,
) -> AppContext:
    engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    session_factory = create_session_factory(engine)

    redis = aioredis.from_url(settings.REDIS_URL) if settings.REDIS_URL else None

    if gateway is None:
        if not settings.PAYSTACK_SECRET_KEY:
            logger.warning("PAYSTACK_SECRET_KEY is not set; payment calls will be rejected")
        gateway = PaystackAdapter(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )

    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        notifier=notifier or Notifier(settings, session_factory),
        locks=BookingLockManager(
            redis=redis,
            timeout=settings.BOOKING_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=settings.BOOKING_LOCK_WAIT_SECONDS,
        ),
        redis=redis,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


async def get_session(ctx: AppContext = Depends(get_context)) -> AsyncIterator[AsyncSession]:
    async with ctx.session_factory() as session:
        yield session
