"""
Database Module
===============

Async database clients for the settlement service.

Clients:
- SQL (SQLAlchemy async; asyncpg for PostgreSQL, aiosqlite for tests)
- Redis (redis.asyncio) for distributed per-buyer locks

Usage:
    from shared.database import PostgresClient, session_scope

    async with session_scope(PostgresClient.get_session_factory()) as session:
        await session.execute(select(BuyerAccountRow))
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    build_engine,
    build_session_factory,
    session_scope,
)
from shared.database.redis import RedisClient, redis_lock


__all__ = [
    # SQL
    "Base",
    "PostgresClient",
    "build_engine",
    "build_session_factory",
    "session_scope",
    # Redis
    "RedisClient",
    "redis_lock",
]
