"""
Contract Workflow State Machine
Defines the valid contract states and transitions.
This is the single source of truth for contract workflow legality.
"""
from typing import Dict, List, Set

from econtract.models.contract import ContractStatus
from econtract.errors import InvalidTransitionError


# Valid state transitions - whitelist approach
ALLOWED_TRANSITIONS: Dict[ContractStatus, List[ContractStatus]] = {
    ContractStatus.DRAFT: [
        ContractStatus.PENDING_REVIEW,
        ContractStatus.PENDING_SIGNATURE,
        ContractStatus.CANCELLED,
    ],
    ContractStatus.PENDING_REVIEW: [
        ContractStatus.PENDING_SIGNATURE,
        ContractStatus.DRAFT,
        ContractStatus.CANCELLED,
    ],
    ContractStatus.PENDING_SIGNATURE: [
        ContractStatus.PARTIALLY_SIGNED,
        ContractStatus.COMPLETED,
        ContractStatus.CANCELLED,
        ContractStatus.EXPIRED,
    ],
    ContractStatus.PARTIALLY_SIGNED: [ContractStatus.COMPLETED, ContractStatus.CANCELLED],
    # Terminal
    ContractStatus.COMPLETED: [],
    ContractStatus.CANCELLED: [ContractStatus.DRAFT],
    ContractStatus.EXPIRED: [ContractStatus.DRAFT, ContractStatus.CANCELLED],
}


TERMINAL_STATES: Set[ContractStatus] = {ContractStatus.COMPLETED}

# Signatures may be submitted while in these states
SIGNABLE_STATES: Set[ContractStatus] = {
    ContractStatus.PENDING_SIGNATURE,
    ContractStatus.PARTIALLY_SIGNED,
}

# Sealed fields may still be edited while in these states
EDITABLE_STATES: Set[ContractStatus] = {
    ContractStatus.DRAFT,
    ContractStatus.PENDING_REVIEW,
}

# Fields covered by the integrity hash sealed when signing starts
SEALED_FIELDS: Set[str] = {"title", "content", "parties"}


def is_valid_transition(from_status: ContractStatus, to_status: ContractStatus) -> bool:
    """Check if a state transition is valid"""
    if from_status not in ALLOWED_TRANSITIONS:
        return False
    return to_status in ALLOWED_TRANSITIONS[from_status]


def assert_valid_transition(from_status: ContractStatus, to_status: ContractStatus) -> None:
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(
            getattr(from_status, "value", str(from_status)),
            getattr(to_status, "value", str(to_status)),
        )


def is_terminal_state(status: ContractStatus) -> bool:
    return status in TERMINAL_STATES


def get_allowed_transitions(status: ContractStatus) -> List[ContractStatus]:
    """Get list of valid next states from current status"""
    return ALLOWED_TRANSITIONS.get(status, [])


def compute_signing_status(all_signed: bool, signed_count: int) -> ContractStatus:
    """Aggregate status implied by the recorded signatures."""
    if all_signed:
        return ContractStatus.COMPLETED
    if signed_count > 0:
        return ContractStatus.PARTIALLY_SIGNED
    return ContractStatus.PENDING_SIGNATURE
