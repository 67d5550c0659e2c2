"""
Pydantic schemas for the outcome-reporting backend.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================
# ENUMS
# =============================================================

class OutcomeKindEnum(str, Enum):
    STORAGE = "storage"
    RETRIEVAL = "retrieval"


# =============================================================
# PROVIDER LISTING
# =============================================================

class MinerItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    power: int = 0


class MinerPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: int
    items: List[MinerItem] = Field(default_factory=list)


# =============================================================
# OUTCOMES
# =============================================================

class OutcomeReport(BaseModel):
    kind: OutcomeKindEnum
    miner: str
    success: bool
    message: str = ""
    reported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data_cid: Optional[str] = None
