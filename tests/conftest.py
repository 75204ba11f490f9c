"""
Test Configuration
==================

Pytest fixtures for VeriSettle tests.

Every test gets its own in-memory container: store, locks, mock providers
and mock ledger anchor are fresh instances, so tests never share state.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["BLOCKCHAIN_MODE"] = "mock"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["STORAGE_LOCK_BACKEND"] = "local"

from services.settlement.container import SettlementContainer  # noqa: E402
from services.settlement.providers import MockKYCProvider, MockPaymentProvider  # noqa: E402
from services.settlement.storage import MemorySettlementStore  # noqa: E402
from shared.auth import create_access_token, generate_api_key, hash_api_key  # noqa: E402
from shared.blockchain import MockLedgerAnchor  # noqa: E402
from shared.config.settings import (  # noqa: E402
    EncryptionSettings,
    Environment,
    QuotaSettings,
    ReconciliationSettings,
    Settings,
)
from shared.models import BuyerAccount, DealerAccount, KYCDecision, SettlementState  # noqa: E402


TEST_ENCRYPTION_KEY = "verisettle-test-encryption-key"
TEST_ADDRESS = "123 Main St, Los Angeles, CA 90210"


def make_settings(**overrides: Any) -> Settings:
    """Settings tuned for tests: no backoff, short waits, cheap key derivation."""
    values: dict[str, Any] = {
        "environment": Environment.TESTING,
        "encryption": EncryptionSettings(key=TEST_ENCRYPTION_KEY, pbkdf2_iterations=1_000),
        "reconciliation": ReconciliationSettings(
            wait_timeout_seconds=0.3,
            poll_interval_ms=20,
            retry_after_ms=3000,
            max_attempts=2,
            backoff_min_seconds=0.0,
            backoff_max_seconds=0.0,
        ),
        "quota": QuotaSettings(),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def container(test_settings: Settings) -> AsyncGenerator[SettlementContainer, None]:
    """Fresh in-memory component graph."""
    built = SettlementContainer.build(
        test_settings,
        store=MemorySettlementStore(),
        payment_provider=MockPaymentProvider(),
        kyc_provider=MockKYCProvider(),
        anchor=MockLedgerAnchor(),
    )
    await built.startup()
    yield built
    await built.shutdown()


@pytest.fixture
def payments(container: SettlementContainer) -> MockPaymentProvider:
    assert isinstance(container.payment_provider, MockPaymentProvider)
    return container.payment_provider


@pytest.fixture
def kyc(container: SettlementContainer) -> MockKYCProvider:
    assert isinstance(container.kyc_provider, MockKYCProvider)
    return container.kyc_provider


@pytest.fixture
def anchor(container: SettlementContainer) -> MockLedgerAnchor:
    assert isinstance(container.anchor, MockLedgerAnchor)
    return container.anchor


@pytest_asyncio.fixture
async def buyer(container: SettlementContainer) -> BuyerAccount:
    """A buyer who has not started verification."""
    account = BuyerAccount(
        auth_id="auth|buyer-1",
        email="buyer@example.com",
        first_name="Ada",
        last_name="Lopez",
    )
    await container.store.add_buyer(account)
    return account


@pytest_asyncio.fixture
async def verified_buyer(
    container: SettlementContainer, kyc: MockKYCProvider, buyer: BuyerAccount
) -> BuyerAccount:
    """A buyer whose verification completed with the default identity."""
    started = await container.orchestrator.start(buyer.id)
    kyc.complete(started.session_id, approved=True)
    state = await container.orchestrator.apply_decision(
        started.session_id, KYCDecision.APPROVED
    )
    assert state == SettlementState.COMPLETED
    current = await container.store.get_buyer(buyer.id)
    assert current is not None
    return current


@pytest.fixture
def dealer_api_key() -> str:
    return generate_api_key()


@pytest_asyncio.fixture
async def dealer(container: SettlementContainer, dealer_api_key: str) -> DealerAccount:
    """A dealer with ten credits."""
    account = DealerAccount(
        company_name="Coastal Sporting Goods",
        api_key_hash=hash_api_key(dealer_api_key),
        credits_purchased=10,
    )
    await container.store.add_dealer(account)
    return account


@pytest.fixture
def buyer_headers(buyer: BuyerAccount) -> dict[str, str]:
    """Bearer token for ``buyer``."""
    token = create_access_token({"sub": buyer.auth_id, "account_kind": "buyer"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def dealer_headers(dealer: DealerAccount, dealer_api_key: str) -> dict[str, str]:
    """API key header for ``dealer``."""
    return {"X-API-Key": dealer_api_key}


@pytest_asyncio.fixture
async def client(container: SettlementContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the settlement service."""
    from services.settlement.main import create_app

    app = create_app(container)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as http_client:
        yield http_client
