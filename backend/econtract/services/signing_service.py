"""
Signing Orchestration
Issues signature requests and records submitted signatures.

Concurrent submissions with the same token: the consumption entry
"sign:<token>" is claimed with an atomic pop, so exactly one submitter
proceeds and the other gets TokenInvalidOrExpiredError. Different tokens for
the same party are stopped by the duplicate check on a freshly read contract
plus the version-conditional write (AlreadySignedError).
"""
import functools
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field

from utils.rate_limiter import RateLimiter
from utils.timestamps import truncate_to_millis, utc_now
from econtract.cache.kv_store import KeyValueStore
from econtract.errors import (
    AlreadySignedError,
    ConflictError,
    ContractMismatchError,
    PartyNotFoundError,
    RateLimitedError,
    TokenInvalidOrExpiredError,
)
from econtract.models.contract import Contract, ContractStatus
from econtract.services.contract_hash import (
    generate_certificate_id,
    generate_qr_payload,
    verify_contract_integrity,
)
from econtract.services.contract_service import ContractService
from econtract.services.contract_workflow import SIGNABLE_STATES, assert_valid_transition
from econtract.services.notification_service import NotificationService, build_signature_url
from econtract.services.side_effects import TASK_NOTIFICATION, SideEffectQueue
from econtract.services.signature_factory import SignatureFactory
from econtract.services.signature_token import SignatureTokenService, token_fingerprint
from econtract.services.verification_hash import VerificationHasher

logger = logging.getLogger(__name__)

SIGN_KEY_PREFIX = "sign:"
MAX_APPLY_ATTEMPTS = 3
UNKNOWN_CLIENT = "unknown"


class SignatureRequestResult(BaseModel):
    token: str
    signature_url: str
    expires_at: datetime
    contract_status: ContractStatus
    warnings: List[str] = Field(default_factory=list)


class SignatureSubmissionResult(BaseModel):
    certificate_id: str
    signed_at: datetime
    contract_status: ContractStatus
    all_signed: bool
    certificate_queued: bool = False
    qr_code_data: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class PartyVerificationResult(BaseModel):
    party_id: str
    valid: bool
    error: Optional[str] = None


class SignatureVerificationReport(BaseModel):
    valid: bool
    results: List[PartyVerificationResult] = Field(default_factory=list)
    # Contract terms still match the hash sealed when signing started
    integrity_valid: bool = True
    integrity_error: Optional[str] = None

    @property
    def invalid_party_ids(self) -> List[str]:
        return [r.party_id for r in self.results if not r.valid]


class SigningService:
    def __init__(
        self,
        contract_service: ContractService,
        token_service: SignatureTokenService,
        signature_factory: SignatureFactory,
        hasher: VerificationHasher,
        kv_store: KeyValueStore,
        rate_limiter: RateLimiter,
        notifier: NotificationService,
        side_effects: SideEffectQueue,
        contract_domain: str,
        signature_ttl: timedelta = timedelta(hours=48),
        request_rate_limit: int = 20,
        submit_rate_limit: int = 10,
        rate_limit_window_seconds: int = 60,
    ):
        self.contract_service = contract_service
        self.token_service = token_service
        self.signature_factory = signature_factory
        self.hasher = hasher
        self.kv_store = kv_store
        self.rate_limiter = rate_limiter
        self.notifier = notifier
        self.side_effects = side_effects
        self.contract_domain = contract_domain.rstrip("/")
        self.signature_ttl = signature_ttl
        self.request_rate_limit = request_rate_limit
        self.submit_rate_limit = submit_rate_limit
        self.rate_limit_window_seconds = rate_limit_window_seconds

    async def _enforce_rate_limit(self, scope: str, client_ip: Optional[str], limit: int) -> None:
        result = await self.rate_limiter.check_limit(
            f"{scope}:{client_ip or UNKNOWN_CLIENT}", limit, self.rate_limit_window_seconds
        )
        if not result.allowed:
            raise RateLimitedError(result.retry_after)

    # ========================================================================
    # Request signature
    # ========================================================================

    async def request_signature(
        self,
        contract_id: str,
        party_id: str,
        client_ip: Optional[str] = None,
        performed_by: str = "system",
    ) -> SignatureRequestResult:
        """Issue a signing link for one party and move the contract to pending_signature."""
        await self._enforce_rate_limit("sign-request", client_ip, self.request_rate_limit)

        contract = await self.contract_service.require_contract(contract_id)
        party = contract.get_party(party_id)
        if party is None:
            raise PartyNotFoundError(party_id)
        if contract.has_signed(party_id):
            raise AlreadySignedError(party_id)
        if contract.status not in SIGNABLE_STATES:
            assert_valid_transition(contract.status, ContractStatus.PENDING_SIGNATURE)

        now = utc_now()
        token = self.token_service.issue(contract_id, party_id, self.signature_ttl, now=now)
        expires_at = truncate_to_millis(now + self.signature_ttl)
        key = f"{SIGN_KEY_PREFIX}{token}"

        await self.kv_store.set(
            key,
            {"contract_id": contract_id, "party_id": party_id},
            ttl_seconds=self.signature_ttl.total_seconds(),
        )
        try:
            updated = await self._record_request(contract, party_id, token, expires_at, performed_by, client_ip)
        except Exception:
            await self.kv_store.delete(key)
            raise

        signature_url = build_signature_url(self.contract_domain, contract_id, token)
        result = SignatureRequestResult(
            token=token,
            signature_url=signature_url,
            expires_at=expires_at,
            contract_status=updated.status,
        )

        try:
            self.side_effects.enqueue(
                TASK_NOTIFICATION,
                functools.partial(
                    self.notifier.send_signature_request,
                    party.email,
                    party.name,
                    updated.title,
                    signature_url,
                    expires_at,
                ),
                contract_id=contract_id,
            )
        except Exception as e:
            logger.error(f"Failed to queue signature request email for {contract_id}: {e}")
            result.warnings.append("Signature request email could not be queued")

        logger.info(f"Signature requested for contract {contract_id}, party {party_id}")
        return result

    async def _record_request(
        self,
        contract: Contract,
        party_id: str,
        token: str,
        expires_at: datetime,
        performed_by: str,
        client_ip: Optional[str],
    ) -> Contract:
        for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
            try:
                return await self.contract_service.record_signature_request(
                    contract, party_id, token, expires_at, performed_by, client_ip
                )
            except ConflictError:
                if attempt == MAX_APPLY_ATTEMPTS:
                    raise
                logger.info(f"Conflict recording signature request on {contract.contract_id}, retrying")
                contract = await self.contract_service.require_contract(contract.contract_id)

    # ========================================================================
    # Submit signature
    # ========================================================================

    async def submit_signature(
        self,
        contract_id: str,
        token: str,
        ip_address: str,
        user_agent: str,
        signature_image: Optional[str] = None,
    ) -> SignatureSubmissionResult:
        await self._enforce_rate_limit("sign-submit", ip_address, self.submit_rate_limit)

        fingerprint = token_fingerprint(token or "")
        verification = self.token_service.verify(token)
        if not verification.valid:
            if verification.expired:
                logger.info(f"Rejected expired signature token {fingerprint} for {contract_id}")
            else:
                logger.warning(f"Rejected malformed signature token {fingerprint} for {contract_id}")
            raise TokenInvalidOrExpiredError()

        if verification.contract_id != contract_id:
            logger.warning(
                f"Signature token {fingerprint} belongs to {verification.contract_id}, not {contract_id}"
            )
            raise ContractMismatchError()

        key = f"{SIGN_KEY_PREFIX}{token}"
        remaining_ttl = await self.kv_store.ttl(key)
        entry = await self.kv_store.pop(key)
        if entry is None:
            logger.info(f"Signature token {fingerprint} already consumed or unknown")
            raise TokenInvalidOrExpiredError()
        if entry.get("contract_id") != contract_id or entry.get("party_id") != verification.party_id:
            logger.warning(f"Consumption entry for token {fingerprint} does not match its payload")
            raise TokenInvalidOrExpiredError()

        party_id = verification.party_id
        signature = self.signature_factory.create_signature(
            contract_id=contract_id,
            party_id=party_id,
            ip_address=ip_address,
            user_agent=user_agent,
            signature_image_data=signature_image,
        )

        try:
            applied = await self._apply_with_retry(contract_id, signature, token)
        except AlreadySignedError:
            raise
        except Exception:
            if remaining_ttl is None or remaining_ttl > 0:
                await self.kv_store.set(key, entry, ttl_seconds=remaining_ttl)
                logger.info(f"Restored signature token {fingerprint} after failed submission")
            raise

        contract = applied.contract
        result = SignatureSubmissionResult(
            certificate_id=signature.certificate_id,
            signed_at=signature.signed_at,
            contract_status=contract.status,
            all_signed=contract.status == ContractStatus.COMPLETED,
            certificate_queued=applied.certificate_queued,
            qr_code_data=generate_qr_payload(contract, signature, self.contract_domain),
            warnings=list(applied.warnings),
        )
        logger.info(
            f"Signature recorded for contract {contract_id}, party {party_id} "
            f"(status: {contract.status.value})"
        )
        return result

    async def _apply_with_retry(self, contract_id: str, signature, token: str):
        for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
            contract = await self.contract_service.require_contract(contract_id)
            try:
                return await self.contract_service.apply_signature(contract, signature, consumed_token=token)
            except ConflictError:
                if attempt == MAX_APPLY_ATTEMPTS:
                    raise
                logger.info(f"Conflict applying signature to {contract_id}, retrying ({attempt})")

    # ========================================================================
    # Verification
    # ========================================================================

    def verify_contract_signatures(self, contract: Contract) -> SignatureVerificationReport:
        """Recompute every stored signature's hash and compare the contract terms
        with the sealed integrity hash. Read-only, never raises."""
        results: List[PartyVerificationResult] = []
        integrity_valid, integrity_error = True, None
        try:
            sealed = contract.integrity_hash
            if sealed is None:
                if contract.signatures:
                    integrity_valid, integrity_error = False, "Integrity hash missing"
            elif not verify_contract_integrity(contract, sealed):
                integrity_valid, integrity_error = False, "Contract terms changed after signing started"
            party_ids = {p.id for p in contract.parties}
            for signature in contract.signatures:
                party_id = getattr(signature, "party_id", "unknown")
                try:
                    if party_id not in party_ids:
                        results.append(PartyVerificationResult(party_id=party_id, valid=False, error="Unknown party"))
                    elif not self.hasher.verify(signature, contract.contract_id):
                        results.append(PartyVerificationResult(
                            party_id=party_id, valid=False, error="Verification hash mismatch"
                        ))
                    elif signature.certificate_id != generate_certificate_id(signature):
                        results.append(PartyVerificationResult(
                            party_id=party_id, valid=False, error="Certificate ID mismatch"
                        ))
                    else:
                        results.append(PartyVerificationResult(party_id=party_id, valid=True))
                except Exception as e:
                    results.append(PartyVerificationResult(party_id=party_id, valid=False, error=str(e)))
        except Exception as e:
            logger.error(f"Signature verification failed for {getattr(contract, 'contract_id', '?')}: {e}")
            return SignatureVerificationReport(valid=False, results=results, integrity_valid=False, integrity_error=str(e))

        if not integrity_valid:
            logger.warning(f"Integrity check failed for {contract.contract_id}: {integrity_error}")
        return SignatureVerificationReport(
            valid=integrity_valid and all(r.valid for r in results),
            results=results,
            integrity_valid=integrity_valid,
            integrity_error=integrity_error,
        )
