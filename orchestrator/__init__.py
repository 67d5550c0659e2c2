"""
Orchestrator Package - Probe Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
This package provides the orchestration layer for the storage
deal probe. It is the SINGLE ENTRYPOINT that controls startup,
shutdown, and the cycle loop.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO deal logic
2. It is the single owner of every deal engine map
3. Phases run sequentially and in strict order
4. An error escaping a phase never stops the loop

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                     Orchestrator                    |
    |-----------------------------------------------------|
    |  ProbeMode      |  backend-driven or standalone     |
    |  ProbePhase     |  cycle phases in strict order     |
    |  Core           |  cycle loop and signal handling   |
    |  CLI            |  Command-line interface           |
    +-----------------------------------------------------+

============================================================
CYCLE PHASES
============================================================
 1. REFRESH_PROVIDERS     - Refresh the provider list
 2. RECOMPUTE_ALLOWANCES  - Recompute daily allowances
 3. REFRESH_ASKS          - Refresh cached asks (--refresh-asks)
 4. PROPOSE_DEALS         - Admit providers and propose deals
 5. POLL_DEALS            - Poll pending storage deals
 6. VERIFY_RETRIEVALS     - Retrieve and verify active deals
    then report stats and sleep

============================================================
QUICK START
============================================================
Command line usage::

    # Backend-driven probe
    python app.py

    # Standalone, one cycle, small files
    python app.py --standalone --single-cycle --size-preset small

PM2 usage::

    pm2 start app.py --interpreter python --name qab-probe -- --standalone

Programmatic usage::

    import asyncio
    from orchestrator import OrchestratorConfig, ProbeMode, ProbeOrchestrator

    async def main():
        config = OrchestratorConfig.from_env()
        config.set_mode(ProbeMode.STANDALONE)
        await ProbeOrchestrator(config=config).run_forever()

    asyncio.run(main())

============================================================
EXPORTS
============================================================
"""

# ============================================================
# Models
# ============================================================
from orchestrator.models import (
    ProbeMode,
    ProbePhase,
    PhaseResult,
    CycleResult,
    OrchestratorConfig,
)

# ============================================================
# Core
# ============================================================
from orchestrator.core import (
    ProbeOrchestrator,
    create_orchestrator,
    setup_logging,
)

# ============================================================
# CLI
# ============================================================
from orchestrator.cli import (
    create_parser,
    validate_args,
    build_config,
    show_phases,
    print_banner,
    main,
    async_main,
)

# ============================================================
# Package metadata
# ============================================================
__version__ = "1.0.0"

__all__ = [
    # Models
    "ProbeMode",
    "ProbePhase",
    "PhaseResult",
    "CycleResult",
    "OrchestratorConfig",

    # Core
    "ProbeOrchestrator",
    "create_orchestrator",
    "setup_logging",

    # CLI
    "create_parser",
    "validate_args",
    "build_config",
    "show_phases",
    "print_banner",
    "main",
    "async_main",
]
