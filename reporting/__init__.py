"""
Reporting Package.

Outcome reporting to the backend and provider listing from it.

Modules:
- backend_client: aiohttp client, fire-and-forget reports
- schemas: Pydantic models for the backend payloads
"""

from .backend_client import BackendClient, BackendError, log_outcome
from .schemas import MinerItem, MinerPage, OutcomeKindEnum, OutcomeReport


__all__ = [
    "BackendClient",
    "BackendError",
    "log_outcome",
    "MinerItem",
    "MinerPage",
    "OutcomeKindEnum",
    "OutcomeReport",
]
