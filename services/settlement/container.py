"""
Settlement Service Wiring
=========================

Builds the component graph from ``Settings``. Every collaborator can be
injected, so tests get a fresh in-memory graph per test.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from typing import Any

from services.settlement.providers import KYCProvider, MockKYCProvider, MockPaymentProvider
from services.settlement.providers.payment import PaymentProvider
from services.settlement.services import (
    ComplianceLedger,
    DealerVerificationService,
    IdentityCoordinator,
    PaymentHoldManager,
    PrivacyService,
    QuotaMeter,
    ReconciliationHandler,
    ResolutionNotifier,
    SettlementOrchestrator,
)
from services.settlement.storage import (
    LocalLockManager,
    LockManager,
    MemorySettlementStore,
    RedisLockManager,
    SettlementStore,
    SqlSettlementStore,
)
from shared.auth import SecretBox
from shared.blockchain import LedgerAnchorClient, create_ledger_anchor
from shared.config.settings import (
    KYCProviderName,
    LockBackend,
    PaymentProviderName,
    Settings,
    StorageBackend,
)
from shared.database import PostgresClient, RedisClient
from shared.logging import get_logger
from shared.zk import ProofVerifier, VerificationProver

logger = get_logger(__name__)


def build_payment_provider(settings: Settings) -> PaymentProvider:
    if settings.payment.provider == PaymentProviderName.STRIPE:
        from services.settlement.providers.stripe import StripePaymentProvider

        return StripePaymentProvider(
            settings.payment.stripe_secret_key.get_secret_value(),
            currency=settings.payment.currency,
            webhook_secret=settings.payment.stripe_webhook_secret.get_secret_value(),
        )
    return MockPaymentProvider()


def build_kyc_provider(settings: Settings) -> KYCProvider:
    if settings.kyc.provider == KYCProviderName.PERSONA:
        from services.settlement.providers.persona import PersonaKYCProvider

        return PersonaKYCProvider(
            api_key=settings.kyc.api_key.get_secret_value(),
            template_id=settings.kyc.template_id,
            webhook_secret=settings.kyc.webhook_secret.get_secret_value(),
            base_url=settings.kyc.base_url,
            timeout_seconds=settings.kyc.timeout_seconds,
        )
    return MockKYCProvider()


def build_store(settings: Settings) -> SettlementStore:
    if settings.storage.backend == StorageBackend.POSTGRES:
        return SqlSettlementStore(
            PostgresClient.get_engine(),
            session_factory=PostgresClient.get_session_factory(),
        )
    return MemorySettlementStore()


def build_locks(settings: Settings) -> LockManager:
    if settings.storage.lock_backend == LockBackend.REDIS:
        return RedisLockManager(
            RedisClient.get_client(),
            timeout_seconds=settings.storage.lock_timeout_seconds,
            wait_seconds=settings.storage.lock_wait_seconds,
        )
    return LocalLockManager()


@dataclass
class SettlementContainer:
    """Component graph of one settlement service instance."""

    settings: Settings
    store: SettlementStore
    locks: LockManager
    payment_provider: PaymentProvider
    kyc_provider: KYCProvider
    anchor: LedgerAnchorClient
    notifier: ResolutionNotifier
    holds: PaymentHoldManager
    identity: IdentityCoordinator
    prover: VerificationProver
    proof_verifier: ProofVerifier
    ledger: ComplianceLedger
    quota: QuotaMeter
    orchestrator: SettlementOrchestrator
    reconciliation: ReconciliationHandler
    dealer_verification: DealerVerificationService
    privacy: PrivacyService
    started: bool = field(default=False)

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: SettlementStore | None = None,
        payment_provider: PaymentProvider | None = None,
        kyc_provider: KYCProvider | None = None,
        anchor: LedgerAnchorClient | None = None,
        locks: LockManager | None = None,
    ) -> "SettlementContainer":
        store = store or build_store(settings)
        locks = locks or build_locks(settings)
        payment_provider = payment_provider or build_payment_provider(settings)
        kyc_provider = kyc_provider or build_kyc_provider(settings)
        anchor = anchor or create_ledger_anchor(settings.blockchain.mode)
        retry_policy = settings.reconciliation

        secret_box = SecretBox(
            settings.encryption.key.get_secret_value(),
            iterations=settings.encryption.pbkdf2_iterations,
        )
        notifier = ResolutionNotifier()
        holds = PaymentHoldManager(
            store,
            payment_provider,
            retry_policy,
            amount_cents=settings.payment.verification_amount_cents,
            currency=settings.payment.currency,
        )
        identity = IdentityCoordinator(
            store,
            kyc_provider,
            secret_box,
            retry_policy,
            fallback_validity_days=settings.policy.verification_validity_days,
        )
        prover = VerificationProver(settings.policy)
        ledger = ComplianceLedger(store, anchor, anchor_enabled=settings.blockchain.anchor_enabled)
        quota = QuotaMeter(store, charge_failed_attempts=settings.quota.charge_failed_attempts)
        orchestrator = SettlementOrchestrator(
            store, locks, holds, identity, prover, ledger, notifier, settings.policy
        )

        return cls(
            settings=settings,
            store=store,
            locks=locks,
            payment_provider=payment_provider,
            kyc_provider=kyc_provider,
            anchor=anchor,
            notifier=notifier,
            holds=holds,
            identity=identity,
            prover=prover,
            proof_verifier=ProofVerifier(anchor),
            ledger=ledger,
            quota=quota,
            orchestrator=orchestrator,
            reconciliation=ReconciliationHandler(orchestrator, store, notifier, retry_policy),
            dealer_verification=DealerVerificationService(
                store, quota, identity, prover, ledger, batch_limit=settings.quota.batch_limit
            ),
            privacy=PrivacyService(store, locks, identity, ledger),
        )

    async def startup(self) -> None:
        await self.store.connect()
        await self.anchor.connect()
        self.started = True
        logger.info(
            "settlement_container_started",
            store=type(self.store).__name__,
            locks=type(self.locks).__name__,
            payment_provider=self.payment_provider.name,
            kyc_provider=self.kyc_provider.name,
        )

    async def shutdown(self) -> None:
        await self.kyc_provider.close()
        await self.anchor.disconnect()
        await self.store.close()
        if self.settings.storage.lock_backend == LockBackend.REDIS:
            await RedisClient.close()
        self.started = False
        logger.info("settlement_container_stopped")

    async def health(self) -> dict[str, dict[str, Any]]:
        """Health of external collaborators."""
        components = {
            "payment_provider": await self.payment_provider.health_check(),
            "kyc_provider": await self.kyc_provider.health_check(),
            "ledger_anchor": await self.anchor.health_check(),
        }
        if isinstance(self.store, SqlSettlementStore):
            components["postgres"] = await PostgresClient.health_check()
        if isinstance(self.locks, RedisLockManager):
            components["redis"] = await RedisClient.health_check()
        return components
