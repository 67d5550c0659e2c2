"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the storage deal probe.

- Provides argparse-based CLI
- Flags override environment (.env) configuration
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli
python -m orchestrator.cli --standalone --size-preset small
python -m orchestrator.cli --cmd-mode --max-pending 20 --single-cycle

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from core.constants import FILE_SIZE_PRESETS, SYSTEM_NAME, SYSTEM_VERSION, format_bytes
from core.exceptions import ProbeException

from .models import OrchestratorConfig, ProbeMode, ProbePhase
from .core import ProbeOrchestrator


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=SYSTEM_NAME,
        description="Synthetic storage deal and retrieval probe for Lotus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  (default)     Providers listed by the backend, outcomes reported to it
  --standalone  Providers enumerated from chain state, outcomes only logged

Examples:
  %(prog)s                                  # Backend-driven probe
  %(prog)s --standalone --size-preset small # 100 MiB files, no backend
  %(prog)s --cmd-mode --single-cycle        # One cycle using the lotus binary
        """
    )

    # --------------------------------------------------------
    # Mode Selection
    # --------------------------------------------------------
    mode_group = parser.add_argument_group("Mode Options")

    mode_group.add_argument(
        "--standalone",
        action="store_true",
        default=None,
        help="Discover providers from chain state, do not contact the backend",
    )

    mode_group.add_argument(
        "--cmd-mode",
        action="store_true",
        default=None,
        help="Start deals and retrievals through the lotus binary",
    )

    mode_group.add_argument(
        "--single-cycle",
        action="store_true",
        default=None,
        help="Run one cycle and exit",
    )

    # --------------------------------------------------------
    # Deal Options
    # --------------------------------------------------------
    deal_group = parser.add_argument_group("Deal Options")

    size = deal_group.add_mutually_exclusive_group()
    size.add_argument(
        "--size",
        type=int,
        metavar="BYTES",
        help="Test file size in bytes (default: 5 GiB)",
    )
    size.add_argument(
        "--size-preset",
        choices=sorted(FILE_SIZE_PRESETS),
        help="Test file size preset: small=100 MiB, medium=1 GiB, large=5 GiB",
    )

    deal_group.add_argument(
        "--max-pending",
        type=int,
        metavar="N",
        help="Maximum pending storage deals (default: 100)",
    )

    deal_group.add_argument(
        "--deal-timeout-hours",
        type=float,
        metavar="HOURS",
        help="Fail deals stuck in a non-terminal state longer than this (default: 24)",
    )

    deal_group.add_argument(
        "--retrieval-timeout",
        type=float,
        metavar="SECONDS",
        help="Hard bound on one retrieval (default: 3600)",
    )

    deal_group.add_argument(
        "--refresh-asks",
        action="store_true",
        default=None,
        help="Refresh cached ask prices every cycle (informational)",
    )

    deal_group.add_argument(
        "--keep-retrieved",
        action="store_true",
        default=None,
        help="Keep retrieved files after verification",
    )

    # --------------------------------------------------------
    # Endpoint Options
    # --------------------------------------------------------
    endpoint_group = parser.add_argument_group("Endpoint Options")

    endpoint_group.add_argument(
        "--lotus-api-url",
        type=str,
        metavar="URL",
        help="Lotus JSON-RPC endpoint",
    )

    endpoint_group.add_argument(
        "--backend-url",
        type=str,
        metavar="URL",
        help="Backend base URL",
    )

    endpoint_group.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="Load environment from this file instead of .env",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: text)",
    )

    # --------------------------------------------------------
    # Version/Info
    # --------------------------------------------------------
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {SYSTEM_VERSION}",
    )

    parser.add_argument(
        "--show-phases",
        action="store_true",
        help="Show cycle phases and exit",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Args:
        args: Parsed arguments

    Returns:
        List of validation errors
    """
    errors = []

    if args.size is not None and args.size < 1:
        errors.append("--size must be positive")

    if args.max_pending is not None and args.max_pending < 1:
        errors.append("--max-pending must be at least 1")

    if args.deal_timeout_hours is not None and args.deal_timeout_hours <= 0:
        errors.append("--deal-timeout-hours must be positive")

    if args.retrieval_timeout is not None and args.retrieval_timeout <= 0:
        errors.append("--retrieval-timeout must be positive")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> OrchestratorConfig:
    """
    Build orchestrator configuration from environment and CLI.

    Flags that were not given leave the environment value.

    Args:
        args: Parsed arguments

    Returns:
        OrchestratorConfig instance
    """
    config = OrchestratorConfig.from_env(args.env_file)
    engine = config.engine

    if args.standalone:
        config.set_mode(ProbeMode.STANDALONE)
    if args.cmd_mode:
        engine.node.cmd_mode = True
    if args.single_cycle:
        config.single_cycle = True

    if args.size is not None:
        engine.test_file.size = args.size
    elif args.size_preset is not None:
        engine.test_file.size = FILE_SIZE_PRESETS[args.size_preset]

    if args.max_pending is not None:
        engine.admission.max_pending = args.max_pending
    if args.deal_timeout_hours is not None:
        engine.timeout.deal_timeout_hours = args.deal_timeout_hours
    if args.retrieval_timeout is not None:
        engine.timeout.retrieval_timeout_seconds = args.retrieval_timeout
    if args.refresh_asks:
        engine.refresh_asks = True
    if args.keep_retrieved:
        engine.test_file.keep_retrieved_files = True

    if args.lotus_api_url:
        engine.node.api_url = args.lotus_api_url
    if args.backend_url:
        engine.backend.base_url = args.backend_url

    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    return config


# ============================================================
# SHOW PHASES
# ============================================================

def show_phases(refresh_asks: bool = True) -> None:
    """Print the cycle phases."""
    print("\nCycle phases")
    print("=" * 60)

    for i, phase in enumerate(ProbePhase.get_ordered_phases(refresh_asks), 1):
        suffix = " (with --refresh-asks)" if phase == ProbePhase.REFRESH_ASKS else ""
        print(f"  {i:2d}. {phase.phase_id:24s} - {phase.description}{suffix}")

    print("   *. report stats, then sleep")
    print()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(config: OrchestratorConfig) -> int:
    """
    Async main entry point.

    Args:
        config: Orchestrator configuration

    Returns:
        Exit code
    """
    try:
        orchestrator = ProbeOrchestrator(config=config)
    except ProbeException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    try:
        await orchestrator.run_forever()
        last_cycle = orchestrator.last_cycle
        if config.single_cycle and last_cycle is not None and not last_cycle.success:
            return 1
        return 0
    except ProbeException as e:
        logging.error(f"Fatal error: {e.message}", exc_info=True)
        return 1
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.show_phases:
        show_phases()
        return 0

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    config = build_config(args)
    print_banner(config)

    return asyncio.run(async_main(config))


def print_banner(config: OrchestratorConfig) -> None:
    """Print startup banner."""
    engine = config.engine
    print()
    print("=" * 60)
    print(f"  {SYSTEM_NAME.upper()} {SYSTEM_VERSION}")
    print("=" * 60)
    print(f"  Mode:         {config.mode.value}")
    print(f"  Node:         {'lotus binary' if engine.node.cmd_mode else engine.node.api_url}")
    print(f"  File size:    {format_bytes(engine.test_file.size)}")
    print(f"  Max pending:  {engine.admission.max_pending}")
    print(f"  Log level:    {config.log_level}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
