"""
Contract Lifecycle Service
Owns contract creation, validation, status transitions and deletion policy.
All contract mutations go through this service; every write is conditional on
the version that was read, so a concurrent writer surfaces as ConflictError
instead of being silently overwritten.
"""
import functools
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel

from utils.timestamps import ensure_utc, utc_now
from econtract.errors import (
    AlreadySignedError,
    CompletedContractDeletionError,
    ConflictError,
    ContractNotFoundError,
    ContractStateError,
    ContractValidationError,
    InvalidTransitionError,
    PartyNotFoundError,
)
from econtract.models.audit import ContractAuditAction
from econtract.models.contract import (
    Contract,
    ContractCreate,
    ContractStats,
    ContractStatus,
    ContractUpdate,
    Party,
)
from econtract.models.query import ContractFilter, ContractSort, PaginatedResult, SortOrder
from econtract.models.signature import Signature
from econtract.repositories.base import ContractRepository, DuplicateContractError
from econtract.services.audit_service import ContractAuditService
from econtract.services.contract_hash import contract_integrity_hash
from econtract.services.contract_workflow import (
    EDITABLE_STATES,
    SEALED_FIELDS,
    SIGNABLE_STATES,
    assert_valid_transition,
    compute_signing_status,
)
from econtract.services.side_effects import TASK_AUDIT, TASK_CERTIFICATE, SideEffectQueue

logger = logging.getLogger(__name__)

EXPIRING_SOON_WINDOW = timedelta(days=7)
RECENT_COMPLETED_LIMIT = 10

# Transitions that end an outstanding signature request
REQUEST_CLEARING_STATES = {
    ContractStatus.CANCELLED,
    ContractStatus.EXPIRED,
    ContractStatus.DRAFT,
}

CompletionListener = Callable[[Contract], Awaitable[Any]]


class SignatureApplied(BaseModel):
    """Outcome of folding a signature into a contract."""
    contract: Contract
    completed: bool
    certificate_queued: bool = False
    warnings: List[str] = []


def validate_parties(parties: List[Party]) -> None:
    if not parties:
        raise ContractValidationError("Contract must have at least one party", field="parties")

    seen = set()
    for index, party in enumerate(parties):
        if not (party.name or "").strip():
            raise ContractValidationError("Party name is required", field=f"parties[{index}].name")
        if not (party.email or "").strip():
            raise ContractValidationError("Party email is required", field=f"parties[{index}].email")
        try:
            validate_email(party.email, check_deliverability=False, test_environment=True)
        except EmailNotValidError:
            raise ContractValidationError(
                f"Invalid email format: {party.email}", field=f"parties[{index}].email"
            )
        if party.id in seen:
            raise ContractValidationError(f"Duplicate party id: {party.id}", field=f"parties[{index}].id")
        seen.add(party.id)


def validate_contract_fields(title: Optional[str], parties: List[Party], transaction_amount: Optional[float]) -> None:
    """Fail fast with a field-identifying error before any repository write."""
    if not (title or "").strip():
        raise ContractValidationError("Contract title is required", field="title")
    validate_parties(parties)
    if transaction_amount is not None and transaction_amount < 0:
        raise ContractValidationError("Transaction amount cannot be negative", field="transaction_amount")


class ContractService:
    def __init__(
        self,
        repository: ContractRepository,
        audit_service: ContractAuditService,
        side_effects: SideEffectQueue,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.audit_service = audit_service
        self.side_effects = side_effects
        self._clock = clock
        self._completion_listeners: List[CompletionListener] = []

    # ========================================================================
    # Side-effect hand-off
    # ========================================================================

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register work to run once a contract reaches completed."""
        self._completion_listeners.append(listener)

    def audit(
        self,
        action: ContractAuditAction,
        contract_id: str,
        performed_by: str = "system",
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> bool:
        """Queue an audit entry. Returns False when the hand-off itself failed."""
        try:
            self.side_effects.enqueue(
                TASK_AUDIT,
                functools.partial(
                    self.audit_service.log,
                    action,
                    contract_id,
                    performed_by=performed_by,
                    details=details,
                    ip_address=ip_address,
                ),
                contract_id=contract_id,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to queue audit entry {action.value} for {contract_id}: {e}")
            return False

    def _handle_completion(self, contract: Contract, performed_by: str) -> bool:
        logger.info(f"Contract {contract.contract_id} completed successfully")
        self.audit(ContractAuditAction.COMPLETED, contract.contract_id, performed_by)
        queued = True
        for listener in self._completion_listeners:
            try:
                self.side_effects.enqueue(
                    TASK_CERTIFICATE,
                    functools.partial(listener, contract),
                    contract_id=contract.contract_id,
                )
            except Exception as e:
                logger.error(f"Failed to queue completion work for {contract.contract_id}: {e}")
                queued = False
        return queued and bool(self._completion_listeners)

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        return await self.repository.find_by_id(contract_id)

    async def require_contract(self, contract_id: str) -> Contract:
        contract = await self.repository.find_by_id(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    async def get_all_contracts(self) -> List[Contract]:
        return await self.repository.find_all()

    async def search_contracts(
        self,
        contract_filter: Optional[ContractFilter] = None,
        page: int = 1,
        limit: int = 20,
        sort: Optional[ContractSort] = None,
    ) -> PaginatedResult[Contract]:
        return await self.repository.find_paginated(page, limit, contract_filter, sort)

    async def contract_exists(self, contract_id: str) -> bool:
        return await self.repository.exists(contract_id)

    async def get_contract_count(self, contract_filter: Optional[ContractFilter] = None) -> int:
        return await self.repository.count(contract_filter)

    async def get_contract_stats(self, now: Optional[datetime] = None) -> ContractStats:
        now = ensure_utc(now) if now else self._clock()
        horizon = now + EXPIRING_SOON_WINDOW
        stats = ContractStats()

        for contract in await self.repository.find_all():
            stats.total += 1
            if contract.status == ContractStatus.DRAFT:
                stats.draft += 1
            elif contract.status == ContractStatus.PENDING_SIGNATURE:
                stats.pending_signature += 1
            elif contract.status == ContractStatus.COMPLETED:
                stats.completed += 1
                stats.completed_count += 1
                stats.total_revenue += contract.transaction_amount or 0

            expires_at = contract.signature_expires_at
            if expires_at and now < expires_at <= horizon:
                stats.expiring_soon += 1

        return stats

    async def get_recent_completed_contracts(self, limit: int = RECENT_COMPLETED_LIMIT) -> List[Contract]:
        result = await self.repository.find_paginated(
            page=1,
            limit=limit,
            contract_filter=ContractFilter(status=[ContractStatus.COMPLETED.value]),
            sort=ContractSort(field="completed_at", order=SortOrder.DESC),
        )
        return result.items

    # ========================================================================
    # Create / update / delete
    # ========================================================================

    def _build_contract(self, data: ContractCreate) -> Contract:
        validate_contract_fields(data.title, data.parties, data.transaction_amount)
        now = self._clock()
        fields = data.model_dump(exclude_none=True)
        fields["title"] = data.title.strip()
        fields["parties"] = data.parties
        fields["status"] = ContractStatus.DRAFT
        fields["created_at"] = now
        fields["updated_at"] = now
        return Contract.model_validate(fields)

    async def create_contract(
        self,
        data: ContractCreate,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> Contract:
        contract = await self.repository.create(self._build_contract(data))
        logger.info(f"Contract created: {contract.contract_id}")
        self.audit(
            ContractAuditAction.CREATED,
            contract.contract_id,
            performed_by,
            {"title": contract.title, "party_count": len(contract.parties)},
            ip_address,
        )
        return contract

    async def create_multiple_contracts(
        self,
        items: List[ContractCreate],
        performed_by: str = "system",
    ) -> List[Contract]:
        # Validate everything before writing anything
        contracts = [self._build_contract(item) for item in items]
        seen = set()
        for contract in contracts:
            if contract.contract_id in seen or await self.repository.exists(contract.contract_id):
                raise DuplicateContractError(contract.contract_id)
            seen.add(contract.contract_id)

        created = await self.repository.create_many(contracts)
        for contract in created:
            self.audit(ContractAuditAction.CREATED, contract.contract_id, performed_by, {"bulk": True})
        return created

    async def update_contract(
        self,
        contract_id: str,
        updates: Union[ContractUpdate, Dict[str, Any]],
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> Contract:
        if isinstance(updates, dict):
            updates = ContractUpdate.model_validate(updates)
        fields = {k: getattr(updates, k) for k in updates.model_fields_set}
        if not fields:
            return await self.require_contract(contract_id)

        contract = await self.require_contract(contract_id)

        sealed = sorted(SEALED_FIELDS.intersection(fields))
        if sealed and contract.status not in EDITABLE_STATES:
            raise ContractStateError(
                f"{', '.join(sealed)} cannot be changed once signing has started "
                f"(status: {contract.status.value})"
            )

        validate_contract_fields(
            fields.get("title", contract.title),
            fields.get("parties", contract.parties) or [],
            fields.get("transaction_amount", contract.transaction_amount),
        )
        if "title" in fields:
            fields["title"] = fields["title"].strip()

        updated = await self.repository.update(contract_id, fields, expected_version=contract.version)
        self.audit(
            ContractAuditAction.UPDATED,
            contract_id,
            performed_by,
            {"fields": sorted(fields.keys())},
            ip_address,
        )
        return updated

    async def update_contract_status(
        self,
        contract_id: str,
        new_status: ContractStatus,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
        contract: Optional[Contract] = None,
    ) -> Contract:
        """Move a contract along the workflow. Illegal transitions raise without writing."""
        new_status = ContractStatus(new_status)
        if contract is None:
            contract = await self.require_contract(contract_id)
        assert_valid_transition(contract.status, new_status)

        updates: Dict[str, Any] = {"status": new_status}
        if new_status == ContractStatus.COMPLETED:
            updates["completed_at"] = self._clock()
        if new_status in REQUEST_CLEARING_STATES:
            updates["signature_request_token"] = None
            updates["signature_expires_at"] = None
        if new_status == ContractStatus.PENDING_SIGNATURE:
            updates["integrity_hash"] = contract_integrity_hash(contract)
        elif new_status == ContractStatus.DRAFT:
            updates["integrity_hash"] = None

        updated = await self.repository.update(contract_id, updates, expected_version=contract.version)
        logger.info(f"Contract {contract_id} status {contract.status.value} -> {new_status.value}")

        self.audit(
            ContractAuditAction.STATUS_UPDATED,
            contract_id,
            performed_by,
            {"from": contract.status.value, "to": new_status.value},
            ip_address,
        )
        if new_status == ContractStatus.CANCELLED:
            self.audit(ContractAuditAction.CANCELLED, contract_id, performed_by, ip_address=ip_address)
        elif new_status == ContractStatus.EXPIRED:
            self.audit(ContractAuditAction.EXPIRED, contract_id, performed_by, ip_address=ip_address)
        elif new_status == ContractStatus.COMPLETED:
            self._handle_completion(updated, performed_by)
        return updated

    async def delete_contract(
        self,
        contract_id: str,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> bool:
        contract = await self.require_contract(contract_id)
        if contract.status == ContractStatus.COMPLETED:
            raise CompletedContractDeletionError(contract_id)

        deleted = await self.repository.delete(contract_id)
        if deleted:
            logger.info(f"Contract deleted: {contract_id}")
            self.audit(ContractAuditAction.DELETED, contract_id, performed_by, ip_address=ip_address)
        return deleted

    async def delete_multiple_contracts(self, contract_ids: List[str], performed_by: str = "system") -> int:
        # Refuse the whole batch if any contract is completed
        existing = []
        for contract_id in contract_ids:
            contract = await self.repository.find_by_id(contract_id)
            if contract is None or contract_id in existing:
                continue
            if contract.status == ContractStatus.COMPLETED:
                raise CompletedContractDeletionError(contract_id)
            existing.append(contract_id)

        deleted = await self.repository.delete_many(existing)
        for contract_id in existing:
            self.audit(ContractAuditAction.DELETED, contract_id, performed_by, {"bulk": True})
        return deleted

    # ========================================================================
    # Signing support (called by SigningService)
    # ========================================================================

    async def record_signature_request(
        self,
        contract: Contract,
        party_id: str,
        token: str,
        expires_at: datetime,
        performed_by: str = "system",
        ip_address: Optional[str] = None,
    ) -> Contract:
        """Store the outstanding request and move the contract to pending_signature.

        A contract already collecting signatures keeps its status.
        """
        if contract.get_party(party_id) is None:
            raise PartyNotFoundError(party_id)
        if contract.has_signed(party_id):
            raise AlreadySignedError(party_id)

        updates: Dict[str, Any] = {
            "signature_request_token": token,
            "signature_expires_at": expires_at,
        }
        if contract.status not in SIGNABLE_STATES:
            assert_valid_transition(contract.status, ContractStatus.PENDING_SIGNATURE)
            updates["status"] = ContractStatus.PENDING_SIGNATURE
        if contract.integrity_hash is None and not contract.signatures:
            updates["integrity_hash"] = contract_integrity_hash(contract)

        updated = await self.repository.update(
            contract.contract_id, updates, expected_version=contract.version
        )
        self.audit(
            ContractAuditAction.SENT_FOR_SIGNATURE,
            contract.contract_id,
            performed_by,
            {"party_id": party_id, "expires_at": expires_at.isoformat()},
            ip_address,
        )
        return updated

    async def apply_signature(
        self,
        contract: Contract,
        signature: Signature,
        consumed_token: Optional[str] = None,
    ) -> SignatureApplied:
        """Append a signature and recompute the aggregate status.

        The write is conditional on contract.version; a ConflictError means the
        caller must reload and try again.
        """
        party_id = signature.party_id
        if contract.get_party(party_id) is None:
            raise PartyNotFoundError(party_id)
        if contract.has_signed(party_id):
            raise AlreadySignedError(party_id)
        if contract.status not in SIGNABLE_STATES:
            raise InvalidTransitionError(contract.status.value, ContractStatus.PARTIALLY_SIGNED.value)

        signatures = list(contract.signatures) + [signature]
        all_signed = contract.model_copy(update={"signatures": signatures}).all_required_signed()
        new_status = compute_signing_status(all_signed, len(signatures))

        updates: Dict[str, Any] = {"signatures": signatures}
        if new_status != contract.status:
            assert_valid_transition(contract.status, new_status)
            updates["status"] = new_status
        completed = new_status == ContractStatus.COMPLETED
        if completed:
            updates["completed_at"] = self._clock()
        if consumed_token is not None and contract.signature_request_token == consumed_token:
            updates["signature_request_token"] = None
            updates["signature_expires_at"] = None

        updated = await self.repository.update(
            contract.contract_id, updates, expected_version=contract.version
        )

        result = SignatureApplied(contract=updated, completed=completed)
        if not self.audit(
            ContractAuditAction.SIGNED,
            contract.contract_id,
            party_id,
            {"certificate_id": signature.certificate_id, "status": new_status.value},
            signature.ip_address,
        ):
            result.warnings.append("Audit entry could not be queued")

        if completed:
            result.certificate_queued = self._handle_completion(updated, party_id)
            if not result.certificate_queued:
                result.warnings.append("Certificate generation could not be queued")
        return result

    async def expire_overdue_signature_requests(
        self,
        now: Optional[datetime] = None,
        performed_by: str = "system",
    ) -> List[str]:
        """Move pending_signature contracts whose request lapsed to expired."""
        now = ensure_utc(now) if now else self._clock()
        expired_ids = []
        candidates = await self.repository.search(
            ContractFilter(status=[ContractStatus.PENDING_SIGNATURE.value])
        )
        for contract in candidates:
            if contract.signature_expires_at is None or contract.signature_expires_at > now:
                continue
            try:
                await self.update_contract_status(
                    contract.contract_id, ContractStatus.EXPIRED, performed_by, contract=contract
                )
                expired_ids.append(contract.contract_id)
            except (ConflictError, InvalidTransitionError) as e:
                logger.warning(f"Skipped expiring contract {contract.contract_id}: {e}")
        if expired_ids:
            logger.info(f"Expired {len(expired_ids)} overdue signature request(s)")
        return expired_ids
