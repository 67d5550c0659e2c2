"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the probe orchestrator.

- Probe modes (backend-driven, standalone)
- Cycle phases with strict ordering
- Phase and cycle results
- Orchestrator configuration

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import os

from dotenv import load_dotenv

from deal_engine.config import DealEngineConfig


# ============================================================
# PROBE MODES
# ============================================================

class ProbeMode(Enum):
    """
    Provider discovery and reporting mode.
    """

    BACKEND = "backend"
    """Providers listed by the backend, outcomes reported to it."""

    STANDALONE = "standalone"
    """Providers enumerated from chain state, outcomes only logged."""

    @property
    def uses_backend(self) -> bool:
        return self == ProbeMode.BACKEND


# ============================================================
# CYCLE PHASES
# ============================================================

class ProbePhase(Enum):
    """
    Cycle phases in strict order.

    A later phase always observes the map changes of an
    earlier phase in the same cycle.
    """

    REFRESH_PROVIDERS = (1, "refresh_providers", "Refresh the provider list")
    RECOMPUTE_ALLOWANCES = (2, "recompute_allowances", "Recompute daily allowances")
    REFRESH_ASKS = (3, "refresh_asks", "Refresh cached ask prices")
    PROPOSE_DEALS = (4, "propose_deals", "Admit providers and propose deals")
    POLL_DEALS = (5, "poll_deals", "Poll pending storage deals")
    VERIFY_RETRIEVALS = (6, "verify_retrievals", "Retrieve and verify active deals")

    def __init__(self, order: int, phase_id: str, description: str):
        self._order = order
        self._phase_id = phase_id
        self._description = description

    @property
    def order(self) -> int:
        return self._order

    @property
    def phase_id(self) -> str:
        return self._phase_id

    @property
    def description(self) -> str:
        return self._description

    @classmethod
    def get_ordered_phases(cls, refresh_asks: bool = False) -> List["ProbePhase"]:
        """Phases to run each cycle, in execution order."""
        phases = sorted(cls, key=lambda p: p.order)
        if not refresh_asks:
            phases.remove(cls.REFRESH_ASKS)
        return phases


# ============================================================
# RESULTS
# ============================================================

@dataclass
class PhaseResult:
    """Result of executing a phase."""

    phase: ProbePhase
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.duration_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.phase_id,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "error_type": self.error_type,
            "context": self.context,
        }


@dataclass
class CycleResult:
    """Result of one probe cycle."""

    cycle_id: str
    mode: ProbeMode
    started_at: datetime
    completed_at: Optional[datetime] = None
    phase_results: List[PhaseResult] = field(default_factory=list)
    interrupted: bool = False

    @property
    def success(self) -> bool:
        """True when every phase ran without an escaped error."""
        return all(r.success for r in self.phase_results)

    @property
    def failed_phases(self) -> List[ProbePhase]:
        return [r.phase for r in self.phase_results if not r.success]

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def add_phase_result(self, result: PhaseResult) -> None:
        self.phase_results.append(result)

    def result_for(self, phase: ProbePhase) -> Optional[PhaseResult]:
        for result in self.phase_results:
            if result.phase == phase:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "mode": self.mode.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "interrupted": self.interrupted,
            "duration_seconds": self.duration_seconds,
            "failed_phases": [p.phase_id for p in self.failed_phases],
            "phase_results": [r.to_dict() for r in self.phase_results],
        }


# ============================================================
# ORCHESTRATOR CONFIGURATION
# ============================================================

@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    mode: ProbeMode = ProbeMode.BACKEND
    """Probe mode."""

    cycle_sleep_seconds: float = 2.0
    """Sleep between two cycles."""

    shutdown_grace_seconds: float = 3.0
    """Grace period before a stop request force-cancels the loop."""

    single_cycle: bool = False
    """Run one cycle and exit."""

    log_level: str = "INFO"
    """Logging level."""

    log_format: str = "text"
    """Log format: text or json."""

    correlation_id_prefix: str = "cycle"
    """Prefix for cycle correlation IDs."""

    engine: DealEngineConfig = field(default_factory=DealEngineConfig)
    """Deal engine configuration."""

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "OrchestratorConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv(env_file)
        engine = DealEngineConfig.from_env(env_file)

        return cls(
            mode=ProbeMode.STANDALONE if engine.backend.standalone else ProbeMode.BACKEND,
            cycle_sleep_seconds=float(os.getenv("QAB_CYCLE_SLEEP_SECONDS", "2")),
            shutdown_grace_seconds=float(os.getenv("QAB_SHUTDOWN_GRACE_SECONDS", "3")),
            single_cycle=os.getenv("QAB_SINGLE_CYCLE", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            engine=engine,
        )

    def set_mode(self, mode: ProbeMode) -> None:
        """Switch mode, keeping the engine's backend flag in step."""
        self.mode = mode
        self.engine.backend.standalone = mode == ProbeMode.STANDALONE

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.cycle_sleep_seconds < 0:
            errors.append("cycle_sleep_seconds must not be negative")

        if self.shutdown_grace_seconds < 0:
            errors.append("shutdown_grace_seconds must not be negative")

        if self.log_format not in ("text", "json"):
            errors.append("log_format must be 'text' or 'json'")

        if self.mode == ProbeMode.STANDALONE and not self.engine.backend.standalone:
            errors.append("standalone mode requires engine.backend.standalone")

        errors.extend(self.engine.validate())
        return errors
