"""
Deal Engine - Failure Taxonomy.

============================================================
PURPOSE
============================================================
Classification of probe failures and the fixed messages
reported for them.

FAILURE KINDS:
1. TRANSIENT - Network/timeout talking to the node.
               Skipped, retried next cycle, nothing recorded.
2. REJECTED  - Provider refused the ask or the proposal.
               Reported as a storage failure, no local state.
3. INTEGRITY - Retrieved bytes differ from the original.
4. TIMEOUT   - Deal stuck past its deadline, or a retrieval
               exceeded its bound. Terminal failure.

============================================================
"""

from enum import Enum
from typing import Optional

from .adapters.errors import ErrorCategory, NodeError
from .types import DealState, format_state


# ============================================================
# FAILURE KINDS
# ============================================================

class FailureKind(Enum):
    """Classification of a probe failure."""

    TRANSIENT = "TRANSIENT"
    """Retry next cycle."""

    REJECTED = "REJECTED"
    """Provider said no."""

    INTEGRITY = "INTEGRITY"
    """Hash mismatch after retrieval."""

    TIMEOUT = "TIMEOUT"
    """Deadline exceeded."""

    def is_recorded(self) -> bool:
        """Whether this kind counts as a provider failure."""
        return self is not FailureKind.TRANSIENT


def classify_error(error: Exception) -> FailureKind:
    """
    Classify an exception raised while talking to the node.

    Non-retryable NodeErrors are the node's (or provider's)
    definitive answer. Everything else is transient.
    """
    if isinstance(error, NodeError):
        if error.category is ErrorCategory.TIMEOUT:
            return FailureKind.TRANSIENT
        if not error.is_retryable:
            return FailureKind.REJECTED
    return FailureKind.TRANSIENT


# ============================================================
# REPORTED MESSAGES
# ============================================================

HASH_CHECK_FAILED = "hash check failed"
RETRIEVAL_SUCCESS = "success"
STORAGE_SUCCESS = "success"


def deal_timeout_message(state: Optional[DealState]) -> str:
    """Message for a deal that aged out while not terminal."""
    return f"timeout in state: {format_state(state)}"


def retrieval_timeout_message(data_cid: str) -> str:
    """Message for a retrieval that exceeded its bound."""
    return f"{data_cid} retrieve deal timeout"


def error_message(error: BaseException) -> str:
    """Text of an error as reported to the backend."""
    if isinstance(error, NodeError):
        return error.message
    return str(error) or error.__class__.__name__
