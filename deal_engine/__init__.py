"""
Deal Engine Package.

============================================================
PURPOSE
============================================================
Storage deal lifecycle orchestration: admission control,
per-provider allowance pacing, the deal polling state
machine and retrieval verification.

CRITICAL PRINCIPLE:
    "The node reports the deal state; the engine only reacts."

AUTHORITY BOUNDARIES:
    CAN:
        - Propose deals within the pending cap and allowances
        - Poll deal states and react to them
        - Retrieve and verify stored data
        - Delete its own test files

    MUST NOT:
        - Exceed the pending deal cap
        - Record a failure from a transient poll error
        - Retry a failed retrieval automatically

============================================================
MODULES
============================================================
- types: Providers, records, deal states and outcomes
- config: Engine configuration
- registry: Known providers
- discovery: Provider listing sources
- allowance: Per-provider daily allowance
- admission: Per-cycle proposal gate
- proposer: Ask, generate, import, start deal
- state_machine: Deal state -> action table
- lifecycle: Pending deal polling
- retrieval: Retrieval and hash verification
- stats: Outcome counters and summary
- test_files: Test file generation and hashing
- adapters: Storage node adapters

============================================================
"""

from .types import (
    Provider,
    ProviderAllowanceRecord,
    PendingStorageDeal,
    PendingRetrieval,
    DealState,
    DealAction,
    DealOutcome,
    RetrievalOutcome,
    PollSummary,
    RetrievalSummary,
    ProposalSummary,
    LOTUS_STATE_ORDER,
)
from .config import (
    DealEngineConfig,
    AdmissionConfig,
    AllowanceConfig,
    TimeoutConfig,
    BatchConfig,
    TestFileConfig,
    NodeConfig,
    BackendConfig,
)
from .errors import FailureKind, classify_error
from .registry import ProviderRegistry
from .discovery import ProviderSource, BackendProviderSource, NetworkProviderSource
from .allowance import ProviderAllowanceTracker, clamp_allowance
from .admission import DealAdmissionController
from .state_machine import STATE_ACTIONS, action_for_state
from .stats import StatsAggregator, StatsSnapshot
from .test_files import TestFileManager, GeneratedFile
from .retrieval import RetrievalVerifier
from .lifecycle import DealLifecycleTracker
from .proposer import DealProposer


__all__ = [
    # Types
    "Provider",
    "ProviderAllowanceRecord",
    "PendingStorageDeal",
    "PendingRetrieval",
    "DealState",
    "DealAction",
    "DealOutcome",
    "RetrievalOutcome",
    "PollSummary",
    "RetrievalSummary",
    "ProposalSummary",
    "LOTUS_STATE_ORDER",
    # Config
    "DealEngineConfig",
    "AdmissionConfig",
    "AllowanceConfig",
    "TimeoutConfig",
    "BatchConfig",
    "TestFileConfig",
    "NodeConfig",
    "BackendConfig",
    # Errors
    "FailureKind",
    "classify_error",
    # Components
    "ProviderRegistry",
    "ProviderSource",
    "BackendProviderSource",
    "NetworkProviderSource",
    "ProviderAllowanceTracker",
    "clamp_allowance",
    "DealAdmissionController",
    "STATE_ACTIONS",
    "action_for_state",
    "StatsAggregator",
    "StatsSnapshot",
    "TestFileManager",
    "GeneratedFile",
    "RetrievalVerifier",
    "DealLifecycleTracker",
    "DealProposer",
]
