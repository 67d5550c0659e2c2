"""
Deal Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the deal engine.

CRITICAL PRINCIPLE:
    "The node reports the deal state; the engine only reacts."

Records held in the engine maps are mutable dataclasses owned
by the orchestrator loop. Anything handed to a collaborator
(reports, stats dumps) is a copy.

============================================================
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# PROVIDERS
# ============================================================

@dataclass
class Provider:
    """A storage provider known to the probe."""

    address: str
    """Provider (miner) actor address, e.g. f01234."""

    capacity: int = 0
    """Quality-adjusted power in bytes."""

    peer_id: str = ""
    """libp2p peer ID, filled on first contact."""

    sector_size: int = 0
    """Sector size in bytes, filled on first contact."""

    last_ask_price: str = "0"
    """Last observed ask price per epoch (attoFIL)."""

    reachable: bool = False
    """Whether the last ask query succeeded."""

    def copy(self) -> "Provider":
        """Detached copy for outside readers."""
        return replace(self)


@dataclass
class ProviderAllowanceRecord:
    """
    Rolling daily allowance and counters for one provider.

    INVARIANTS:
    - min floor <= daily_allowance <= max ceiling
    - current_outstanding_volume >= 0
    """

    daily_allowance: int
    """Bytes that may be proposed in the current window."""

    last_observed_capacity: int
    """Capacity seen at the last recompute."""

    last_recomputed_at: datetime
    """Start of the current allowance window."""

    current_outstanding_count: int = 0
    current_outstanding_volume: int = 0

    lifetime_proposed_count: int = 0
    lifetime_proposed_volume: int = 0

    lifetime_success_count: int = 0
    lifetime_success_volume: int = 0

    @property
    def allowance_exhausted(self) -> bool:
        """Whether the window's allowance has been used up."""
        return self.current_outstanding_volume >= self.daily_allowance

    def copy(self) -> "ProviderAllowanceRecord":
        return replace(self)


# ============================================================
# PENDING RECORDS
# ============================================================

@dataclass
class PendingStorageDeal:
    """A proposed deal awaiting a terminal state. Keyed by deal CID."""

    data_cid: str
    provider: str
    file_path: str
    content_hash: str
    size: int
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class PendingRetrieval:
    """A deal that reached Active and awaits verification. Keyed by data CID."""

    provider: str
    file_path: str
    content_hash: str
    size: int
    created_at: datetime = field(default_factory=_utcnow)


# ============================================================
# DEAL STATES
# ============================================================

class DealState(Enum):
    """
    Storage deal state as reported by the node.

    The numeric code reported by Lotus is the position of the
    state in LOTUS_STATE_ORDER. Codes outside that table map to
    UNKNOWN so every report lands on a defined state.
    """

    UNKNOWN = "StorageDealUnknown"
    PROPOSAL_NOT_FOUND = "StorageDealProposalNotFound"
    PROPOSAL_REJECTED = "StorageDealProposalRejected"
    PROPOSAL_ACCEPTED = "StorageDealProposalAccepted"
    STAGED = "StorageDealStaged"
    SEALING = "StorageDealSealing"
    ACTIVE = "StorageDealActive"
    FAILING = "StorageDealFailing"
    NOT_FOUND = "StorageDealNotFound"
    FUNDS_ENSURED = "StorageDealFundsEnsured"
    WAITING_FOR_DATA_REQUEST = "StorageDealWaitingForDataRequest"
    VALIDATING = "StorageDealValidating"
    ACCEPT_WAIT = "StorageDealAcceptWait"
    TRANSFERRING = "StorageDealTransferring"
    WAITING_FOR_DATA = "StorageDealWaitingForData"
    VERIFY_DATA = "StorageDealVerifyData"
    ENSURE_PROVIDER_FUNDS = "StorageDealEnsureProviderFunds"
    ENSURE_CLIENT_FUNDS = "StorageDealEnsureClientFunds"
    PROVIDER_FUNDING = "StorageDealProviderFunding"
    CLIENT_FUNDING = "StorageDealClientFunding"
    PUBLISH = "StorageDealPublish"
    PUBLISHING = "StorageDealPublishing"
    ERROR = "StorageDealError"
    COMPLETED = "StorageDealCompleted"

    @classmethod
    def from_code(cls, code: int) -> "DealState":
        """Map a Lotus numeric state code to a DealState."""
        if 0 <= code < len(LOTUS_STATE_ORDER):
            return LOTUS_STATE_ORDER[code]
        return cls.UNKNOWN

    @property
    def code(self) -> int:
        """Lotus numeric code for this state."""
        return LOTUS_STATE_ORDER.index(self)

    def is_terminal(self) -> bool:
        """Check if the node will not move the deal any further."""
        return self in {
            DealState.PROPOSAL_REJECTED,
            DealState.ERROR,
            DealState.COMPLETED,
        }


LOTUS_STATE_ORDER: Tuple[DealState, ...] = (
    DealState.UNKNOWN,
    DealState.PROPOSAL_NOT_FOUND,
    DealState.PROPOSAL_REJECTED,
    DealState.PROPOSAL_ACCEPTED,
    DealState.STAGED,
    DealState.SEALING,
    DealState.ACTIVE,
    DealState.FAILING,
    DealState.NOT_FOUND,
    DealState.FUNDS_ENSURED,
    DealState.WAITING_FOR_DATA_REQUEST,
    DealState.VALIDATING,
    DealState.ACCEPT_WAIT,
    DealState.TRANSFERRING,
    DealState.WAITING_FOR_DATA,
    DealState.VERIFY_DATA,
    DealState.ENSURE_PROVIDER_FUNDS,
    DealState.ENSURE_CLIENT_FUNDS,
    DealState.PROVIDER_FUNDING,
    DealState.CLIENT_FUNDING,
    DealState.PUBLISH,
    DealState.PUBLISHING,
    DealState.ERROR,
    DealState.COMPLETED,
)


class DealAction(Enum):
    """Local reaction to a reported deal state."""

    RECORD_SUCCESS = "RECORD_SUCCESS"
    """Deal is active: count success, queue retrieval, stop tracking."""

    CLEANUP = "CLEANUP"
    """Deal completed without an observed Active: drop silently."""

    RELEASE_FILE = "RELEASE_FILE"
    """Data reached the provider: delete the local file, keep tracking."""

    RECORD_FAILURE = "RECORD_FAILURE"
    """Deal failed: count failure, stop tracking."""

    AWAIT = "AWAIT"
    """Still in progress: keep tracking unless timed out."""


class DealOutcome(Enum):
    """Result of polling one pending deal."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CLEANED_UP = "CLEANED_UP"
    PENDING = "PENDING"
    POLL_FAILED = "POLL_FAILED"
    ABSENT = "ABSENT"

    def is_removal(self) -> bool:
        """Whether the deal left the pending map."""
        return self in {
            DealOutcome.SUCCEEDED,
            DealOutcome.FAILED,
            DealOutcome.TIMED_OUT,
            DealOutcome.CLEANED_UP,
        }


class RetrievalOutcome(Enum):
    """Result of one retrieval verification attempt."""

    VERIFIED = "VERIFIED"
    INTEGRITY_FAILURE = "INTEGRITY_FAILURE"
    TRANSFER_ERROR = "TRANSFER_ERROR"
    TIMED_OUT = "TIMED_OUT"
    NO_OFFERS = "NO_OFFERS"
    DEFERRED = "DEFERRED"
    ABSENT = "ABSENT"

    def is_removal(self) -> bool:
        """Whether the retrieval left the pending map."""
        return self in {
            RetrievalOutcome.VERIFIED,
            RetrievalOutcome.INTEGRITY_FAILURE,
            RetrievalOutcome.TRANSFER_ERROR,
            RetrievalOutcome.TIMED_OUT,
        }


# ============================================================
# PHASE SUMMARIES
# ============================================================

@dataclass
class PollSummary:
    """Counts from one pending-deal polling pass."""

    polled: int = 0
    outcomes: Dict[DealOutcome, int] = field(default_factory=dict)
    stopped_early: bool = False

    def add(self, outcome: DealOutcome) -> None:
        self.polled += 1
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, outcome: DealOutcome) -> int:
        return self.outcomes.get(outcome, 0)


@dataclass
class RetrievalSummary:
    """Counts from one retrieval verification pass."""

    attempted: int = 0
    outcomes: Dict[RetrievalOutcome, int] = field(default_factory=dict)
    stopped_early: bool = False

    def add(self, outcome: RetrievalOutcome) -> None:
        self.attempted += 1
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def count(self, outcome: RetrievalOutcome) -> int:
        return self.outcomes.get(outcome, 0)


@dataclass
class ProposalSummary:
    """Counts from one admission/proposal pass."""

    admitted: int = 0
    proposed: int = 0
    failed: int = 0
    stopped_early: bool = False
    deal_ids: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.admitted - self.proposed - self.failed


def format_state(state: Optional[DealState]) -> str:
    """Human-readable state name for logs and reports."""
    return state.value if state is not None else "unknown"
