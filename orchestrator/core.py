"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Main probe loop.

- Single owner of every deal engine map
- Runs the cycle phases in strict order
- Isolates each phase: an escaped error is recorded in a
  PhaseResult and the cycle continues
- Handles signals (SIGINT, SIGTERM): stop flag first, forced
  cancellation after the shutdown grace period

============================================================
ARCHITECTURAL POSITION
============================================================
- The orchestrator has NO deal logic
- It ONLY sequences the deal engine components

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import ConfigurationError, ShutdownError, StartupError
from deal_engine import (
    BackendProviderSource,
    DealAdmissionController,
    DealLifecycleTracker,
    DealProposer,
    NetworkProviderSource,
    ProviderAllowanceTracker,
    ProviderRegistry,
    ProviderSource,
    RetrievalVerifier,
    StatsAggregator,
    TestFileManager,
)
from deal_engine.adapters import NodeAdapter, create_node_adapter
from monitoring.metrics import MetricsCollector, create_probe_metrics
from reporting.backend_client import BackendClient

from .models import CycleResult, OrchestratorConfig, PhaseResult, ProbeMode, ProbePhase


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# ORCHESTRATOR
# ============================================================

class ProbeOrchestrator:
    """
    Storage deal probe orchestrator.

    Everything the probe tracks lives in components owned by
    this object and is only touched from its loop.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        node: Optional[NodeAdapter] = None,
        backend: Optional[BackendClient] = None,
        clock: Optional[ClockProtocol] = None,
        metrics: Optional[MetricsCollector] = None,
        configure_logging: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Orchestrator configuration
            node: Node adapter (created from config if omitted)
            backend: Backend client (created from config if omitted)
            clock: Clock (system clock if omitted)
            metrics: Metrics sink (standard probe metrics if omitted)
            configure_logging: Install the root log handler
        """
        errors = config.validate()
        if errors:
            raise ConfigurationError(
                message=f"Invalid configuration: {', '.join(errors)}",
            )

        self._config = config
        engine = config.engine

        self._correlation_id = (
            f"{config.correlation_id_prefix}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
        )
        if configure_logging:
            self._logger = setup_logging(
                level=config.log_level,
                log_format=config.log_format,
                correlation_id=self._correlation_id,
            )
        else:
            self._logger = logging.getLogger("orchestrator")

        self._clock = clock or SystemClock()
        self._metrics = metrics or create_probe_metrics()
        self._node = node or create_node_adapter(engine.node, engine.timeout)
        self._backend = backend or BackendClient(engine.backend, engine.timeout)

        # Deal engine components
        self._files = TestFileManager(engine.test_file)
        self._stats = StatsAggregator(self._metrics)
        self._registry = ProviderRegistry()
        self._allowances = ProviderAllowanceTracker(engine.allowance)
        self._admission = DealAdmissionController(engine.admission)
        self._retrievals = RetrievalVerifier(
            node=self._node,
            files=self._files,
            stats=self._stats,
            reporter=self._backend,
            timeout_config=engine.timeout,
        )
        self._lifecycle = DealLifecycleTracker(
            node=self._node,
            allowances=self._allowances,
            retrievals=self._retrievals,
            files=self._files,
            stats=self._stats,
            reporter=self._backend,
            timeout_config=engine.timeout,
            clock=self._clock,
        )
        self._proposer = DealProposer(
            node=self._node,
            registry=self._registry,
            allowances=self._allowances,
            admission=self._admission,
            lifecycle=self._lifecycle,
            files=self._files,
            stats=self._stats,
            config=engine,
            reporter=self._backend,
            clock=self._clock,
        )
        self._source = self._create_source()

        self._phase_handlers: Dict[ProbePhase, Callable[[], Awaitable[Dict[str, Any]]]] = {
            ProbePhase.REFRESH_PROVIDERS: self._refresh_providers,
            ProbePhase.RECOMPUTE_ALLOWANCES: self._recompute_allowances,
            ProbePhase.REFRESH_ASKS: self._refresh_asks,
            ProbePhase.PROPOSE_DEALS: self._propose_deals,
            ProbePhase.POLL_DEALS: self._poll_deals,
            ProbePhase.VERIFY_RETRIEVALS: self._verify_retrievals,
        }

        # Runtime state
        self._running = False
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self._providers_loaded = False
        self._cycle_count = 0
        self._current_cycle: Optional[CycleResult] = None
        self._main_loop_task: Optional[asyncio.Task] = None
        self._force_stop_handle: Optional[asyncio.TimerHandle] = None
        self._signals_installed = False

        self._logger.info(
            f"Orchestrator initialized | mode={config.mode.value} | "
            f"node={self._node.node_id} | correlation_id={self._correlation_id}"
        )

    def _create_source(self) -> ProviderSource:
        engine = self._config.engine
        if self._config.mode == ProbeMode.STANDALONE:
            return NetworkProviderSource(
                self._node,
                batch_size=engine.batch.discovery_batch_size,
                timeout_seconds=engine.timeout.rpc_request_timeout_seconds,
            )
        return BackendProviderSource(self._backend)

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def allowances(self) -> ProviderAllowanceTracker:
        return self._allowances

    @property
    def lifecycle(self) -> DealLifecycleTracker:
        return self._lifecycle

    @property
    def retrievals(self) -> RetrievalVerifier:
        return self._retrievals

    @property
    def stats(self) -> StatsAggregator:
        return self._stats

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def last_cycle(self) -> Optional[CycleResult]:
        return self._current_cycle

    def should_stop(self) -> bool:
        """Stop callback handed to every phase."""
        return self._stop_requested

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Start the orchestrator.

        Raises:
            StartupError: If the node or backend cannot be reached
        """
        if self._running:
            self._logger.warning("Orchestrator already running")
            return

        self._logger.info("=== PROBE STARTUP SEQUENCE ===")
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        try:
            await self._connect()
        except StartupError:
            self._restore_signal_handlers()
            raise

        if self._config.mode == ProbeMode.STANDALONE:
            try:
                await self._load_providers()
            except Exception as e:
                self._logger.error(f"Initial provider enumeration failed, retrying next cycle: {e}")

        self._running = True
        self._logger.info("=== PROBE STARTUP COMPLETE ===")

    async def _connect(self) -> None:
        try:
            self._files.prepare()
        except OSError as e:
            raise StartupError(message=f"Cannot create test file directories: {e}", stage="prepare_files", cause=e)

        try:
            await self._node.connect()
        except Exception as e:
            raise StartupError(message=f"Node connection failed: {e}", stage="connect_node", cause=e)

        try:
            await self._backend.connect()
        except Exception as e:
            raise StartupError(message=f"Backend connection failed: {e}", stage="connect_backend", cause=e)

    async def stop(self) -> None:
        """Release the node and backend connections."""
        if not self._running:
            return

        self._logger.info("=== PROBE SHUTDOWN SEQUENCE ===")
        self._stop_requested = True
        self._cancel_force_stop()

        try:
            await self._backend.close()
            await self._node.disconnect()
        except Exception as e:
            self._logger.error(f"Shutdown error: {e}", exc_info=True)
            raise ShutdownError(message=f"Shutdown error: {e}", cause=e)
        finally:
            self._running = False
            self._restore_signal_handlers()

        self._logger.info("=== PROBE SHUTDOWN COMPLETE ===")

    def request_stop(self, reason: str = "stop requested") -> None:
        """
        Ask the loop to stop.

        Phases notice the flag between items. If the loop is
        still running after the grace period it is cancelled.
        """
        if self._stop_requested:
            return

        self._logger.info(f"Stopping: {reason}")
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

        if self._main_loop_task is not None and not self._main_loop_task.done():
            loop = asyncio.get_running_loop()
            self._force_stop_handle = loop.call_later(
                self._config.shutdown_grace_seconds,
                self._force_stop,
            )

    def _force_stop(self) -> None:
        if self._main_loop_task is not None and not self._main_loop_task.done():
            self._logger.warning(
                f"Loop still busy after {self._config.shutdown_grace_seconds:.0f}s grace, cancelling"
            )
            self._main_loop_task.cancel()

    def _cancel_force_stop(self) -> None:
        if self._force_stop_handle is not None:
            self._force_stop_handle.cancel()
            self._force_stop_handle = None

    # --------------------------------------------------------
    # Main Loop
    # --------------------------------------------------------

    async def run_forever(self) -> None:
        """
        Run cycles until a stop is requested.
        """
        if not self._running:
            await self.start()

        self._logger.info(f"Starting main loop | sleep={self._config.cycle_sleep_seconds}s")
        self._main_loop_task = asyncio.current_task()

        try:
            while not self._stop_requested:
                await self._execute_cycle()

                if self._config.single_cycle:
                    break

                if not self._stop_requested:
                    await self._sleep(self._config.cycle_sleep_seconds)

        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            self._logger.warning("Main loop cancelled during shutdown")
        finally:
            self._main_loop_task = None
            await self.stop()

    async def run_single_cycle(self) -> CycleResult:
        """
        Run a single probe cycle.

        Returns:
            CycleResult
        """
        if not self._running:
            await self.start()

        return await self._execute_cycle()

    async def _execute_cycle(self) -> CycleResult:
        """Run every phase in order, then report stats."""
        self._cycle_count += 1
        result = CycleResult(
            cycle_id=f"{self._correlation_id}_{self._cycle_count}",
            mode=self._config.mode,
            started_at=self._clock.now(),
        )
        self._current_cycle = result

        for phase in ProbePhase.get_ordered_phases(self._config.engine.refresh_asks):
            if self._stop_requested:
                result.interrupted = True
                break
            result.add_phase_result(await self._run_phase(phase))

        self._stats.set_pending(self._lifecycle.pending_count)
        self._stats.report(self._allowances, self._registry)

        result.completed_at = self._clock.now()
        if not result.success:
            self._logger.error(
                f"Cycle {result.cycle_id} had failing phases: "
                f"{', '.join(p.phase_id for p in result.failed_phases)}"
            )
        return result

    async def _run_phase(self, phase: ProbePhase) -> PhaseResult:
        """Run one phase, recording any escaped error."""
        started_at = self._clock.now()
        loop_start = asyncio.get_running_loop().time()
        handler = self._phase_handlers[phase]

        try:
            context = await handler()
            error = None
            error_type = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(f"Phase {phase.phase_id} failed: {e}", exc_info=True)
            context = {}
            error = str(e)
            error_type = type(e).__name__

        return PhaseResult(
            phase=phase,
            success=error is None,
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_seconds=asyncio.get_running_loop().time() - loop_start,
            error=error,
            error_type=error_type,
            context=context,
        )

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on a stop request."""
        if seconds <= 0 or self._stop_event is None:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # --------------------------------------------------------
    # Phases
    # --------------------------------------------------------

    async def _load_providers(self) -> int:
        providers = await self._source.load(self.should_stop)
        self._registry.replace(providers)
        self._providers_loaded = True
        return len(providers)

    async def _refresh_providers(self) -> Dict[str, Any]:
        if self._providers_loaded and not self._source.reload_every_cycle:
            return {"reloaded": False, "providers": len(self._registry)}

        count = await self._load_providers()
        return {"reloaded": True, "providers": count}

    async def _recompute_allowances(self) -> Dict[str, Any]:
        changed = self._allowances.recompute_all(self._registry.list_providers(), self._clock.now())
        return {"recomputed": changed}

    async def _refresh_asks(self) -> Dict[str, Any]:
        engine = self._config.engine
        answered = await self._registry.refresh_asks(
            self._node,
            batch_size=engine.batch.ask_batch_size,
            timeout_seconds=engine.timeout.rpc_request_timeout_seconds,
            should_stop=self.should_stop,
        )
        return {"reachable": answered}

    async def _propose_deals(self) -> Dict[str, Any]:
        admitted = self._admission.select_providers_for_proposal(
            self._registry.list_providers(),
            self._allowances.snapshot(),
            self._lifecycle.pending_count,
        )
        summary = await self._proposer.propose(admitted, self.should_stop)
        return {
            "admitted": summary.admitted,
            "proposed": summary.proposed,
            "failed": summary.failed,
            "stopped_early": summary.stopped_early,
        }

    async def _poll_deals(self) -> Dict[str, Any]:
        summary = await self._lifecycle.poll_all(self.should_stop)
        return {
            "polled": summary.polled,
            "outcomes": {o.value: n for o, n in summary.outcomes.items()},
            "stopped_early": summary.stopped_early,
        }

    async def _verify_retrievals(self) -> Dict[str, Any]:
        summary = await self._retrievals.verify_all(self.should_stop)
        return {
            "attempted": summary.attempted,
            "outcomes": {o.value: n for o, n in summary.outcomes.items()},
            "stopped_early": summary.stopped_early,
        }

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if self._signals_installed:
            return

        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try:
                    loop.add_signal_handler(sig, self.request_stop, f"received {sig.name}")
                except (NotImplementedError, RuntimeError, ValueError):
                    self._logger.debug(f"Cannot install handler for {sig.name}")
                    continue
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        self._stop_requested = True

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status."""
        return {
            "running": self._running,
            "stop_requested": self._stop_requested,
            "mode": self._config.mode.value,
            "correlation_id": self._correlation_id,
            "current_time": self._clock.now().isoformat(),
            "providers": len(self._registry),
            "pending_deals": self._lifecycle.pending_count,
            "pending_retrievals": self._retrievals.pending_count,
            "stats": self._stats.snapshot().to_dict(),
            "last_cycle": self._current_cycle.to_dict() if self._current_cycle else None,
        }


# ============================================================
# ORCHESTRATOR FACTORY
# ============================================================

def create_orchestrator(
    mode: ProbeMode = ProbeMode.BACKEND,
    config: Optional[OrchestratorConfig] = None,
    node: Optional[NodeAdapter] = None,
    backend: Optional[BackendClient] = None,
) -> ProbeOrchestrator:
    """
    Factory function to create an orchestrator.

    Args:
        mode: Probe mode
        config: Configuration (or load from environment)
        node: Node adapter override
        backend: Backend client override

    Returns:
        Configured ProbeOrchestrator instance
    """
    if config is None:
        config = OrchestratorConfig.from_env()
        config.set_mode(mode)

    return ProbeOrchestrator(config=config, node=node, backend=backend)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "ProbeOrchestrator",
    "create_orchestrator",
    "setup_logging",
]
