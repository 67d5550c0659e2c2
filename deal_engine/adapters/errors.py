"""
Node Adapter - Error Handling and Mapping.

============================================================
PURPOSE
============================================================
Standardized error handling for node adapters with:
- Unified error taxonomy across RPC and command modes
- JSON-RPC error object mapping
- Retry eligibility classification
- Error context preservation

============================================================
ERROR CATEGORIES
============================================================
1. NETWORK    - Connection issues, node down
2. TIMEOUT    - Request exceeded its deadline
3. REJECTED   - Node or provider explicitly refused
4. NOT_FOUND  - Unknown CID / deal / actor
5. PROTOCOL   - Malformed or unusable response
6. COMMAND    - lotus binary exited non-zero
7. UNKNOWN    - Unclassified errors

============================================================
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Standardized node error categories."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    REJECTED = "REJECTED"
    NOT_FOUND = "NOT_FOUND"
    PROTOCOL = "PROTOCOL"
    COMMAND = "COMMAND"
    UNKNOWN = "UNKNOWN"


_RETRYABLE_CATEGORIES = {
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.PROTOCOL,
    ErrorCategory.UNKNOWN,
}


# ============================================================
# NODE ERROR
# ============================================================

class NodeError(Exception):
    """
    Standardized node error.

    Raised by every adapter call that fails. Callers treat
    retryable errors as "skip this cycle" and non-retryable ones
    as a definitive answer from the node.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        code: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.code = code
        self.operation = operation
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Check if error is transient."""
        return self.category in _RETRYABLE_CATEGORIES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "retryable": self.is_retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        prefix = f"{self.operation}: " if self.operation else ""
        return f"[{self.category.value}] {prefix}{self.message}"


# ============================================================
# MAPPING HELPERS
# ============================================================

def map_rpc_error(error: Dict[str, Any], operation: Optional[str] = None) -> NodeError:
    """
    Map a JSON-RPC error object to a NodeError.

    Lotus reports most refusals (ask refused, miner offline,
    deal not found) as error objects with code 1 and a message.

    Args:
        error: The "error" member of a JSON-RPC response
        operation: RPC method name

    Returns:
        NodeError
    """
    code = error.get("code")
    message = str(error.get("message", "unknown RPC error"))
    lowered = message.lower()

    if "not found" in lowered:
        category = ErrorCategory.NOT_FOUND
    elif code in (-32700, -32600, -32601, -32602):
        category = ErrorCategory.PROTOCOL
    else:
        category = ErrorCategory.REJECTED

    return NodeError(message, category=category, code=code, operation=operation, details=dict(error))


def create_network_error(message: str, operation: Optional[str] = None) -> NodeError:
    """Create a transient network error."""
    return NodeError(f"Network error: {message}", category=ErrorCategory.NETWORK, operation=operation)


def create_timeout_error(operation: Optional[str] = None, timeout_seconds: Optional[float] = None) -> NodeError:
    """Create a transient timeout error."""
    suffix = f" after {timeout_seconds:.0f}s" if timeout_seconds else ""
    return NodeError(f"Request timeout{suffix}", category=ErrorCategory.TIMEOUT, operation=operation)


def create_protocol_error(message: str, operation: Optional[str] = None) -> NodeError:
    """Create an error for an unusable response."""
    return NodeError(message, category=ErrorCategory.PROTOCOL, operation=operation)


def create_command_error(
    returncode: int,
    stderr: str,
    operation: Optional[str] = None,
) -> NodeError:
    """Create an error for a failed lotus command."""
    return NodeError(
        stderr.strip() or f"command exited with {returncode}",
        category=ErrorCategory.COMMAND,
        code=returncode,
        operation=operation,
    )
