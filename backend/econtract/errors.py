"""E-Contract error taxonomy.

Validation errors mean the input was malformed. State errors mean the input was
well-formed but the contract's current state forbids the operation. Token errors
collapse to a single user-facing "invalid or expired" class; the finer reason
(expired vs malformed) is only written to the log.
"""
from typing import Optional


class ContractError(Exception):
    """Base exception for contract lifecycle and signing operations."""
    pass


# ============================================================================
# Validation
# ============================================================================

class ContractValidationError(ContractError, ValueError):
    """Bad input. `field` names the offending field when known."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class PartyNotFoundError(ContractValidationError):
    def __init__(self, party_id: str):
        super().__init__(f"Party not found: {party_id}", field="party_id")
        self.party_id = party_id


# ============================================================================
# State
# ============================================================================

class ContractStateError(ContractError):
    """Operation not permitted in the contract's current state."""
    pass


class InvalidTransitionError(ContractStateError):
    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class AlreadySignedError(ContractStateError):
    def __init__(self, party_id: str):
        super().__init__(f"Party has already signed: {party_id}")
        self.party_id = party_id


class CompletedContractDeletionError(ContractStateError):
    def __init__(self, contract_id: str):
        super().__init__("Cannot delete completed contracts")
        self.contract_id = contract_id


class ContractNotCompletedError(ContractStateError):
    def __init__(self, contract_id: str, status: str):
        super().__init__(f"Contract {contract_id} is not completed (status: {status})")
        self.contract_id = contract_id
        self.status = status


# ============================================================================
# Tokens
# ============================================================================

class SignatureTokenError(ContractError):
    """Signature link could not be honoured."""
    pass


class TokenInvalidOrExpiredError(SignatureTokenError):
    def __init__(self):
        super().__init__("Signature link is invalid or has expired")


class ContractMismatchError(SignatureTokenError):
    def __init__(self):
        super().__init__("Signature link does not belong to this contract")


# ============================================================================
# Infrastructure / concurrency
# ============================================================================

class ContractNotFoundError(ContractError):
    def __init__(self, contract_id: str):
        super().__init__(f"Contract not found: {contract_id}")
        self.contract_id = contract_id


class ConflictError(ContractError):
    """Conditional update lost a race against another writer."""

    def __init__(self, contract_id: str, expected_version: Optional[int] = None, actual_version: Optional[int] = None):
        super().__init__(
            f"Contract {contract_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.contract_id = contract_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class RateLimitedError(ContractError):
    def __init__(self, retry_after: int = 0):
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds")
        self.retry_after = retry_after


class IntegrityViolationError(ContractError):
    """Stored signatures fail verification; the contract must not be certified."""

    def __init__(self, contract_id: str, invalid_party_ids=None, reason: Optional[str] = None):
        invalid_party_ids = list(invalid_party_ids or [])
        details = [d for d in (reason, ", ".join(invalid_party_ids)) if d]
        super().__init__(
            f"Signature verification failed for contract {contract_id}: {'; '.join(details) or 'unknown'}"
        )
        self.contract_id = contract_id
        self.invalid_party_ids = invalid_party_ids
        self.reason = reason
