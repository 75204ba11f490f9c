#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the settlement schema in PostgreSQL, check Redis, and optionally
seed a development dealer.

Usage:
    python scripts/init_databases.py
    python scripts/init_databases.py --postgres-only
    python scripts/init_databases.py --seed-dealer "Coastal Sporting Goods" --credits 25

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_postgres() -> bool:
    """Create settlement tables."""
    # Registers the ORM tables on Base.metadata
    import services.settlement.storage.orm  # noqa: F401
    from shared.database.postgres import PostgresClient

    logger.info("postgres_init_started")

    try:
        await PostgresClient.create_all()
        health = await PostgresClient.health_check()
        if health["status"] != "healthy":
            logger.error("postgres_init_failed", error=health.get("error"))
            return False

        logger.info("postgres_init_completed", latency_ms=health["latency_ms"])
        return True

    except Exception as e:
        logger.error("postgres_init_failed", error=str(e))
        return False
    finally:
        await PostgresClient.close()


async def init_redis() -> bool:
    """Verify the Redis lock backend is reachable."""
    from shared.database.redis import RedisClient

    logger.info("redis_init_started")

    try:
        health = await RedisClient.health_check()
        if health["status"] != "healthy":
            logger.error("redis_init_failed", error=health.get("error"))
            return False

        logger.info("redis_init_completed", version=health["redis_version"])
        return True
    finally:
        await RedisClient.close()


async def seed_dealer(company_name: str, credits: int) -> bool:
    """Create a dealer and print its API key once."""
    from services.settlement.storage import SqlSettlementStore
    from shared.auth import generate_api_key, hash_api_key
    from shared.database.postgres import PostgresClient
    from shared.models import DealerAccount

    store = SqlSettlementStore(PostgresClient.get_engine(), create_schema=False)
    api_key = generate_api_key()
    dealer = DealerAccount(
        company_name=company_name,
        api_key_hash=hash_api_key(api_key),
        credits_purchased=credits,
    )

    try:
        await store.add_dealer(dealer)
    except Exception as e:
        logger.error("dealer_seed_failed", error=str(e))
        return False
    finally:
        await PostgresClient.close()

    logger.info(
        "dealer_seeded",
        dealer_reference_id=dealer.dealer_reference_id,
        credits=credits,
    )
    # The key is not recoverable after this point
    print(f"\nDealer API key for {company_name}: {api_key}\n")
    return True


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    results: dict[str, bool] = {}

    results["PostgreSQL"] = await init_postgres()

    if not args.postgres_only:
        results["Redis"] = await init_redis()

    if args.seed_dealer and results["PostgreSQL"]:
        results["Seed dealer"] = await seed_dealer(args.seed_dealer, args.credits)

    failed = [name for name, success in results.items() if not success]
    for name, success in results.items():
        logger.info("init_step", step=name, ok=success)

    if failed:
        logger.error("init_failed", failed=failed)
        return 1

    logger.info("init_completed")
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize VeriSettle databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--postgres-only",
        action="store_true",
        help="Initialize only PostgreSQL",
    )
    parser.add_argument(
        "--seed-dealer",
        metavar="COMPANY",
        help="Create a development dealer with this company name",
    )
    parser.add_argument(
        "--credits",
        type=int,
        default=10,
        help="Credits for the seeded dealer (default: 10)",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
