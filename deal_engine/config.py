"""
Deal Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the deal engine.

CRITICAL CONSTRAINTS:
- Outstanding deals are capped, never rejected post-hoc
- Every remote call that can hang has a timeout
- Deterministic behavior

Values come from dataclass defaults, then the environment
(loaded through python-dotenv), then CLI flags.

============================================================
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from core.constants import (
    BUFFER_SIZE,
    DEAL_MIN_BLOCKS_DURATION,
    FILE_SIZE_LARGE,
    MAX_DAILY_ALLOWANCE,
    MAX_PENDING_STORAGE_DEALS,
    MIN_DAILY_ALLOWANCE,
)


# ============================================================
# ADMISSION CONFIGURATION
# ============================================================

@dataclass
class AdmissionConfig:
    """
    Admission control configuration.

    Bounds how many deals may be outstanding and how fast
    proposals are sent.
    """

    max_pending: int = MAX_PENDING_STORAGE_DEALS
    """Maximum number of pending storage deals."""

    proposal_pause_seconds: float = 1.0
    """Pause between two proposals in the same cycle."""


# ============================================================
# ALLOWANCE CONFIGURATION
# ============================================================

@dataclass
class AllowanceConfig:
    """
    Per-provider daily allowance configuration.
    """

    min_daily_allowance: int = MIN_DAILY_ALLOWANCE
    """Allowance floor in bytes."""

    max_daily_allowance: int = MAX_DAILY_ALLOWANCE
    """Allowance ceiling in bytes."""

    window_hours: float = 24.0
    """Minimum hours between two recomputes for a provider."""


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeouts and pacing.
    """

    deal_timeout_hours: float = 24.0
    """Age after which a non-terminal deal is failed."""

    retrieval_timeout_seconds: float = 3600.0
    """Hard bound on one retrieval transfer."""

    rpc_request_timeout_seconds: float = 60.0
    """Timeout for ordinary node RPC calls."""

    backend_request_timeout_seconds: float = 30.0
    """Timeout for backend HTTP calls."""

    poll_pause_seconds: float = 0.1
    """Pause between two deal status polls."""

    retrieval_pause_seconds: float = 1.0
    """Pause between two retrieval attempts."""


# ============================================================
# BATCH CONFIGURATION
# ============================================================

@dataclass
class BatchConfig:
    """
    Fan-out widths for remote calls.
    """

    discovery_batch_size: int = 50
    """Concurrent power queries during network enumeration."""

    ask_batch_size: int = 10
    """Concurrent ask queries during ask refresh."""


# ============================================================
# TEST FILE CONFIGURATION
# ============================================================

@dataclass
class TestFileConfig:
    """
    Generated test data configuration.
    """

    __test__ = False

    size: int = FILE_SIZE_LARGE
    """Size of each generated test file in bytes."""

    import_dir: str = "/tmp/qab/import"
    """Directory for generated test files."""

    retrieve_dir: str = "/tmp/qab/retrieve"
    """Directory for retrieved files."""

    buffer_size: int = BUFFER_SIZE
    """Write/hash chunk size."""

    keep_retrieved_files: bool = False
    """Keep retrieved files after verification."""

    def ensure_dirs(self) -> None:
        """Create the import and retrieve directories."""
        Path(self.import_dir).mkdir(parents=True, exist_ok=True)
        Path(self.retrieve_dir).mkdir(parents=True, exist_ok=True)


# ============================================================
# NODE CONFIGURATION
# ============================================================

@dataclass
class NodeConfig:
    """
    Storage node (Lotus) connection configuration.
    """

    api_url: str = "http://127.0.0.1:1234/rpc/v0"
    """JSON-RPC endpoint."""

    api_token_env: str = "LOTUS_API_TOKEN"
    """Environment variable holding the API bearer token."""

    cmd_mode: bool = False
    """Use the lotus binary for deal start and retrieval."""

    lotus_binary: str = "lotus"
    """Path of the lotus binary for command mode."""

    transfer_type: str = "graphsync"
    """Data transfer type for proposals."""

    min_blocks_duration: int = DEAL_MIN_BLOCKS_DURATION
    """Deal duration in epochs."""

    @property
    def api_token(self) -> str:
        return os.environ.get(self.api_token_env, "")


# ============================================================
# BACKEND CONFIGURATION
# ============================================================

@dataclass
class BackendConfig:
    """
    Outcome-reporting backend configuration.
    """

    base_url: str = "http://127.0.0.1:3000"
    """Backend REST base URL."""

    api_token_env: str = "QAB_BACKEND_TOKEN"
    """Environment variable holding the backend token."""

    standalone: bool = False
    """Standalone runs never contact the backend."""

    @property
    def api_token(self) -> str:
        return os.environ.get(self.api_token_env, "")


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class DealEngineConfig:
    """
    Master configuration for the deal engine.
    """

    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    allowance: AllowanceConfig = field(default_factory=AllowanceConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    test_file: TestFileConfig = field(default_factory=TestFileConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    refresh_asks: bool = False
    """Run the cached ask-price refresh phase each cycle."""

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "DealEngineConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv(env_file)

        return cls(
            admission=AdmissionConfig(
                max_pending=int(os.getenv("QAB_MAX_PENDING_DEALS", str(MAX_PENDING_STORAGE_DEALS))),
                proposal_pause_seconds=float(os.getenv("QAB_PROPOSAL_PAUSE_SECONDS", "1.0")),
            ),
            allowance=AllowanceConfig(
                min_daily_allowance=int(os.getenv("QAB_MIN_DAILY_ALLOWANCE", str(MIN_DAILY_ALLOWANCE))),
                max_daily_allowance=int(os.getenv("QAB_MAX_DAILY_ALLOWANCE", str(MAX_DAILY_ALLOWANCE))),
            ),
            timeout=TimeoutConfig(
                deal_timeout_hours=float(os.getenv("QAB_DEAL_TIMEOUT_HOURS", "24")),
                retrieval_timeout_seconds=float(os.getenv("QAB_RETRIEVAL_TIMEOUT_SECONDS", "3600")),
                rpc_request_timeout_seconds=float(os.getenv("QAB_RPC_TIMEOUT_SECONDS", "60")),
            ),
            test_file=TestFileConfig(
                size=int(os.getenv("QAB_TEST_FILE_SIZE", str(FILE_SIZE_LARGE))),
                import_dir=os.getenv("QAB_IMPORT_DIR", "/tmp/qab/import"),
                retrieve_dir=os.getenv("QAB_RETRIEVE_DIR", "/tmp/qab/retrieve"),
                keep_retrieved_files=os.getenv("QAB_KEEP_RETRIEVED_FILES", "false").lower() == "true",
            ),
            node=NodeConfig(
                api_url=os.getenv("LOTUS_API_URL", "http://127.0.0.1:1234/rpc/v0"),
                cmd_mode=os.getenv("QAB_CMD_MODE", "false").lower() == "true",
                lotus_binary=os.getenv("LOTUS_BINARY", "lotus"),
            ),
            backend=BackendConfig(
                base_url=os.getenv("QAB_BACKEND_URL", "http://127.0.0.1:3000"),
                standalone=os.getenv("QAB_STANDALONE", "false").lower() == "true",
            ),
            refresh_asks=os.getenv("QAB_REFRESH_ASKS", "false").lower() == "true",
        )

    @classmethod
    def for_testing(cls, base_dir: str) -> "DealEngineConfig":
        """Small, fast configuration rooted at `base_dir`."""
        return cls(
            admission=AdmissionConfig(max_pending=10, proposal_pause_seconds=0.0),
            timeout=TimeoutConfig(
                deal_timeout_hours=1.0,
                retrieval_timeout_seconds=5.0,
                poll_pause_seconds=0.0,
                retrieval_pause_seconds=0.0,
            ),
            test_file=TestFileConfig(
                size=4096,
                import_dir=str(Path(base_dir) / "import"),
                retrieve_dir=str(Path(base_dir) / "retrieve"),
                buffer_size=1024,
            ),
            backend=BackendConfig(standalone=True),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.admission.max_pending < 1:
            errors.append("admission.max_pending must be at least 1")
        if self.allowance.min_daily_allowance > self.allowance.max_daily_allowance:
            errors.append("allowance.min_daily_allowance must not exceed max_daily_allowance")
        if self.test_file.size < 1:
            errors.append("test_file.size must be positive")
        if self.timeout.retrieval_timeout_seconds <= 0:
            errors.append("timeout.retrieval_timeout_seconds must be positive")
        if self.timeout.deal_timeout_hours <= 0:
            errors.append("timeout.deal_timeout_hours must be positive")
        if self.batch.discovery_batch_size < 1 or self.batch.ask_batch_size < 1:
            errors.append("batch sizes must be at least 1")

        return errors
