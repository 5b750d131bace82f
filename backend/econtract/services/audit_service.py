"""E-Contract Audit Service

Append-only audit trail for contract operations. Entries go to the
`contract_audit_logs` collection when a database is configured, otherwise they
are kept in process memory.
"""

from typing import Optional, Dict, Any, List
import logging

from econtract.models.audit import ContractAuditAction, ContractAuditEntry

logger = logging.getLogger(__name__)


class ContractAuditService:
    """Service for contract audit logging."""

    def __init__(self, db=None, collection_name: str = "contract_audit_logs"):
        self.db = db
        self.collection_name = collection_name
        self._entries: List[ContractAuditEntry] = []

    async def log(
        self,
        action: ContractAuditAction,
        contract_id: str,
        performed_by: str = "system",
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> ContractAuditEntry:
        """Append an audit entry."""
        entry = ContractAuditEntry(
            action=action,
            contract_id=contract_id,
            performed_by=performed_by,
            details=details or {},
            ip_address=ip_address,
        )

        if self.db is not None:
            await self.db[self.collection_name].insert_one(entry.model_dump())
        else:
            self._entries.append(entry)

        logger.info(f"[AUDIT] {action.value}: contract {contract_id} (by: {performed_by})")
        return entry

    async def get_contract_history(self, contract_id: str, limit: int = 100) -> List[ContractAuditEntry]:
        """Entries for one contract, oldest first."""
        if self.db is not None:
            cursor = (
                self.db[self.collection_name]
                .find({"contract_id": contract_id}, {"_id": 0})
                .sort("performed_at", 1)
                .limit(limit)
            )
            return [ContractAuditEntry.model_validate(doc) async for doc in cursor]

        history = [e for e in self._entries if e.contract_id == contract_id]
        return history[:limit]
