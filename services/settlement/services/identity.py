"""
Identity Verification Coordinator
=================================

Opens KYC sessions and stores the verified attributes of approved sessions
as encrypted buyer secrets.

Decisions are never read synchronously from the provider; they arrive
through the reconciliation handler. Attributes are fetched only after an
approval has been delivered.

Version: 0.1.0
"""

from datetime import UTC, datetime, time, timedelta

from services.settlement.providers.kyc import KYCProvider, VerificationSession
from services.settlement.services.external import call_provider
from services.settlement.storage.base import SettlementStore
from shared.auth import DecryptionError, SecretBox, generate_salt
from shared.config.settings import ReconciliationSettings
from shared.errors import InvalidStateError, NotFoundError
from shared.logging import get_logger
from shared.models import BuyerAccount, BuyerSecrets, utc_now
from shared.zk import IdentityAttributes

logger = get_logger(__name__)


class IdentityCoordinator:
    """
    KYC session lifecycle and buyer secret storage.

    Usage:
        identity = IdentityCoordinator(store, MockKYCProvider(), box, retry_policy)

        session = await identity.create_session(buyer)
        attributes, secrets = await identity.record_verified_identity(buyer, session.session_id)
    """

    def __init__(
        self,
        store: SettlementStore,
        provider: KYCProvider,
        secret_box: SecretBox,
        retry_policy: ReconciliationSettings,
        fallback_validity_days: int = 365,
    ) -> None:
        self.store = store
        self.provider = provider
        self.secret_box = secret_box
        self.retry_policy = retry_policy
        self.fallback_validity_days = fallback_validity_days

    async def create_session(self, buyer: BuyerAccount) -> VerificationSession:
        """
        Open a verification session for one attempt.

        Secrets whose identity document has expired are deleted first, so
        stale identity data never coexists with a new session.

        Raises:
            ExternalServiceError: The provider could not open a session
        """
        secrets = await self.store.get_secrets(buyer.id)
        if secrets is not None and secrets.is_expired():
            await self.store.delete_secrets(buyer.id)
            logger.info("expired_secrets_purged", buyer_reference_id=buyer.buyer_reference_id)

        session = await call_provider(
            self.retry_policy,
            "create_session",
            self.provider.create_session,
            buyer.buyer_reference_id,
        )
        logger.info(
            "verification_session_opened",
            session_id=session.session_id,
            buyer_reference_id=buyer.buyer_reference_id,
        )
        return session

    def _expiry(self, attributes: IdentityAttributes) -> datetime:
        if attributes.document_expires_at is not None:
            return datetime.combine(attributes.document_expires_at, time.min, tzinfo=UTC)
        return utc_now() + timedelta(days=self.fallback_validity_days)

    async def record_verified_identity(
        self, buyer: BuyerAccount, session_id: str
    ) -> tuple[IdentityAttributes, BuyerSecrets]:
        """
        Fetch the approved session's attributes and store them encrypted.

        Any previous secrets are replaced together with their salt.

        Raises:
            ExternalServiceError: Attributes could not be fetched
        """
        attributes = await call_provider(
            self.retry_policy,
            "get_verified_attributes",
            self.provider.get_verified_attributes,
            session_id,
        )

        secrets = BuyerSecrets(
            buyer_id=buyer.id,
            encrypted_attributes=self.secret_box.encrypt_json(attributes.model_dump(mode="json")),
            commitment_salt=generate_salt(),
            kyc_session_id=session_id,
            expires_at=self._expiry(attributes),
        )
        await self.store.delete_secrets(buyer.id)
        await self.store.put_secrets(secrets)

        logger.info(
            "verified_identity_stored",
            session_id=session_id,
            buyer_reference_id=buyer.buyer_reference_id,
            expires_at=secrets.expires_at.isoformat(),
        )
        return attributes, secrets

    async def load_identity(self, buyer_id: str) -> tuple[IdentityAttributes, BuyerSecrets]:
        """
        Decrypt a buyer's stored attributes.

        Raises:
            NotFoundError: No secrets are stored
            InvalidStateError: Secrets cannot be decrypted with the current key
        """
        secrets = await self.store.get_secrets(buyer_id)
        if secrets is None:
            raise NotFoundError("No verified identity on record")
        try:
            data = self.secret_box.decrypt_json(secrets.encrypted_attributes)
        except DecryptionError as e:
            logger.error("buyer_secrets_unreadable", buyer_id=buyer_id)
            raise InvalidStateError("Verified identity could not be read") from e
        return IdentityAttributes.model_validate(data), secrets

    async def purge(self, buyer_id: str) -> bool:
        """Delete a buyer's secrets. Returns True if any existed."""
        deleted = await self.store.delete_secrets(buyer_id)
        if deleted:
            logger.info("buyer_secrets_deleted", buyer_id=buyer_id)
        return deleted
