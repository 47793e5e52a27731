"""
IoT Sentinel Daemon.

Main entry point that wires all layers together and runs the workers:
- one ingestion worker per monitored interface
- the baseline sampling worker
- the vulnerability re-check worker
- the active-scan worker (optional)
- the read API (optional)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from iotsentinel import __version__
from iotsentinel.audit.database import AuditDatabase
from iotsentinel.capture.queue import ObservationQueue
from iotsentinel.catalog.loader import load_catalogs
from iotsentinel.catalog.models import CatalogSet
from iotsentinel.clock import Clock, SystemClock
from iotsentinel.config import SentinelConfig, load_config, validate_config
from iotsentinel.core.pipeline import PipelineOrchestrator
from iotsentinel.core.scheduler import AssessmentScheduler
from iotsentinel.enforcement.controllers import (
    InMemoryNetworkController,
    LoggingRemediationHandler,
    NetworkController,
    RemediationHandler,
)
from iotsentinel.enforcement.dispatcher import EnforcementDispatcher
from iotsentinel.fingerprint.matcher import FingerprintMatcher
from iotsentinel.forwarding.forwarder import (
    AuditForwarder,
    CompositeForwarder,
    EventForwarder,
    LoggingForwarder,
)
from iotsentinel.monitoring.baseline import BaselineTracker
from iotsentinel.policy.engine import PolicyEngine, create_default_policy
from iotsentinel.policy.parser import PolicyParseError, load_policy
from iotsentinel.registry.models import Observation
from iotsentinel.registry.store import DeviceRegistry
from iotsentinel.risk.assessor import ExcessiveAccessCheck, RiskAssessor
from iotsentinel.scanner.probe import ActiveProber

logger = logging.getLogger("iotsentinel")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level_name: str, log_file: str | None = None) -> None:
    """Configure root logging for the daemon and CLI."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )


def load_policy_engine(rules_file: str | None) -> PolicyEngine:
    """
    Load the policy engine.

    If the policy file is missing or malformed, falls back to the built-in
    default policy so devices are still enforced against something.
    """
    if rules_file:
        policy_path = Path(rules_file)
        if policy_path.exists():
            try:
                return PolicyEngine(policy=load_policy(policy_path))
            except (OSError, PolicyParseError) as e:
                logger.error(
                    "Failed to load policy %s: %s; using built-in default policy",
                    policy_path, e,
                )
                return PolicyEngine(policy=create_default_policy())
        logger.warning("Policy file not found: %s; using built-in default policy", policy_path)
    return PolicyEngine(policy=create_default_policy())


class SentinelDaemon:
    """
    Main IoT Sentinel daemon.

    Builds every component from configuration. Collaborators with no
    built-in production backend (network control, remediation, active
    probing) can be injected; otherwise in-process defaults are used.
    """

    def __init__(
        self,
        config: SentinelConfig,
        network: NetworkController | None = None,
        remediator: RemediationHandler | None = None,
        prober: ActiveProber | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize daemon with configuration.

        Args:
            config: Validated configuration object
            network: Network-control backend
            remediator: Remediation backend
            prober: Active-probe backend (active scanning needs one)
            clock: Time source
        """
        self.config = config
        self.clock = clock or SystemClock()

        self.catalogs: CatalogSet = load_catalogs(
            fingerprints=config.catalogs.fingerprints,
            vulnerabilities=config.catalogs.vulnerabilities,
            authorized=config.catalogs.authorized_devices,
            oui=config.catalogs.oui,
            banners=config.catalogs.banners,
        )
        self.policy_engine = load_policy_engine(config.policy.rules_file)
        self.db: AuditDatabase | None = None
        if config.database.enabled:
            self.db = AuditDatabase(config.database.path, wal_mode=config.database.wal_mode)

        self.registry = DeviceRegistry()
        self.matcher = FingerprintMatcher(
            fingerprints=self.catalogs.fingerprints,
            oui=self.catalogs.oui,
            banners=self.catalogs.banners,
        )
        self.assessor = RiskAssessor(
            authorized=self.catalogs.authorized,
            vulnerabilities=self.catalogs.vulnerabilities,
            excessive_access=ExcessiveAccessCheck(config.risk.type_profiles),
        )
        self.tracker = BaselineTracker(
            window_size=config.baseline.window_size,
            traffic_threshold=config.baseline.traffic_threshold,
            enhanced_factor=config.baseline.enhanced_factor,
        )
        self.network = network or InMemoryNetworkController()
        self.dispatcher = EnforcementDispatcher(
            network=self.network,
            tracker=self.tracker,
            remediator=remediator or LoggingRemediationHandler(),
            call_timeout=config.enforcement.call_timeout,
            clock=self.clock,
        )
        self.forwarder = self._build_forwarder()
        self.scheduler = AssessmentScheduler(
            registry=self.registry,
            assessor=self.assessor,
            clock=self.clock,
            forwarder=self.forwarder,
            prober=prober,
            matcher=self.matcher,
            vulnerability_interval=config.assessment.vulnerability_interval,
            active_scan_enabled=config.active_scan.enabled,
            active_scan_interval=config.active_scan.interval,
            probe_timeout=config.active_scan.timeout,
        )
        self.orchestrator = PipelineOrchestrator(
            registry=self.registry,
            matcher=self.matcher,
            assessor=self.assessor,
            policy_engine=self.policy_engine,
            dispatcher=self.dispatcher,
            tracker=self.tracker,
            scheduler=self.scheduler,
            forwarder=self.forwarder,
            audit_db=self.db,
            catalogs=self.catalogs,
            clock=self.clock,
            segmentation_threshold=config.report.high_risk_segmentation_threshold,
        )
        self.queues: dict[str, ObservationQueue] = {
            interface: ObservationQueue(interface, maxsize=config.capture.queue_size)
            for interface in config.capture.interfaces
        }

        # State
        self.running = False
        self._shutdown_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(config.capture.max_concurrent)
        self._workers: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()
        self._api_server: Any = None
        self._start_time: datetime | None = None

    def _build_forwarder(self) -> EventForwarder | None:
        sinks: list[EventForwarder] = []
        if self.config.forwarding.enabled:
            sinks.append(LoggingForwarder())
            if self.config.forwarding.siem_url:
                logger.info(
                    "Security events are logged to 'iotsentinel.events' for the SIEM "
                    "shipper targeting %s", self.config.forwarding.siem_url,
                )
        if self.db is not None:
            sinks.append(AuditForwarder(self.db))
        if not sinks:
            return None
        return CompositeForwarder(sinks)

    def queue_for(self, interface: str) -> ObservationQueue:
        """Observation queue a capture backend for ``interface`` should feed."""
        return self.queues[interface]

    async def start(self) -> None:
        """Start the daemon and all workers."""
        logger.info("Starting IoT Sentinel daemon v%s", __version__)
        self.running = True
        self._start_time = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        logger.info("Loaded %d policy rules", len(self.policy_engine.policy.rules))
        if self.catalogs.degraded:
            logger.warning("Catalogs degraded: %s", self.catalogs.status())

        for interface, queue in self.queues.items():
            self._spawn(self._ingest_worker(queue), f"ingest-{interface}")

        self._spawn(
            self._periodic("baseline", self.config.baseline.interval,
                           self.orchestrator.run_baseline_cycle),
            "baseline",
        )
        self._spawn(
            self._periodic("vulnerability", self.config.assessment.tick_interval,
                           self.scheduler.run_vulnerability_cycle),
            "vulnerability",
        )
        if self.scheduler.active_scan_available:
            self._spawn(
                self._periodic("active-scan", self.config.active_scan.tick_interval,
                               self.scheduler.run_active_scan_cycle),
                "active-scan",
            )
        elif self.config.active_scan.enabled:
            logger.warning("Active scanning enabled but no prober configured; skipping")

        if self.config.api.enabled:
            await self._start_api_server()

        logger.info(
            "Daemon started: %d interface(s), %d worker(s)",
            len(self.queues), len(self._workers),
        )

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        self._workers.append(asyncio.create_task(coro, name=name))

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        logger.info("Stopping IoT Sentinel daemon...")
        self.running = False
        self._shutdown_event.set()

        for queue in self.queues.values():
            queue.close()

        # Let in-flight observations finish; workers hold no cross-device state
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        if self._api_server is not None:
            self._api_server.should_exit = True

        if self.db is not None:
            self.db.close()

        logger.info("Daemon stopped")

    async def run(self) -> None:
        """Run until a shutdown signal arrives."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("Daemon cancelled")
        finally:
            await self.stop()

    async def _ingest_worker(self, queue: ObservationQueue) -> None:
        """Pull observations from one interface and process them concurrently."""
        logger.info("Ingestion worker started for %s", queue.interface)
        while not self._shutdown_event.is_set():
            try:
                observation = await asyncio.wait_for(queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            await self._semaphore.acquire()
            task = asyncio.create_task(self._process(queue, observation))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _process(self, queue: ObservationQueue, observation: Observation) -> None:
        try:
            await self.orchestrator.handle_observation(observation)
        except Exception as e:
            logger.error(
                "Error processing observation from %s: %s",
                observation.hardware_address, e, exc_info=True,
            )
        finally:
            self._semaphore.release()
            queue.task_done()

    async def _periodic(
        self,
        name: str,
        interval: float,
        cycle: Callable[[], Awaitable[Any]],
    ) -> None:
        """Run ``cycle`` every ``interval`` seconds until shutdown."""
        logger.info("%s worker started (every %ss)", name, interval)
        while not self._shutdown_event.is_set():
            try:
                await cycle()
            except Exception as e:
                logger.error("%s cycle failed: %s", name, e, exc_info=True)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def _start_api_server(self) -> None:
        """Start the FastAPI server in the background."""
        import uvicorn

        from iotsentinel.api import create_app

        logger.info("Starting API server on %s:%s", self.config.api.host, self.config.api.port)

        app = create_app(
            self.orchestrator,
            debug=self.config.daemon.log_level == "debug",
        )
        config = uvicorn.Config(
            app=app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.daemon.log_level,
            access_log=False,
        )
        self._api_server = uvicorn.Server(config)
        self._spawn(self._api_server.serve(), "api")

    def handle_signal(self, signum: int) -> None:
        """Handle termination signals."""
        sig_name = signal.Signals(signum).name
        logger.info("Received signal %s, initiating shutdown", sig_name)
        self.running = False
        self._shutdown_event.set()

    def get_statistics(self) -> dict[str, Any]:
        """Get daemon statistics."""
        uptime = None
        if self._start_time:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        return {
            "running": self.running,
            "uptime_seconds": uptime,
            "interfaces": {
                name: {"queued": q.qsize, "dropped": q.dropped}
                for name, q in self.queues.items()
            },
            "policy_rules": len(self.policy_engine.policy.rules),
            "catalogs_degraded": self.catalogs.degraded,
            "pipeline": self.orchestrator.get_statistics(),
        }


async def run_daemon(config: SentinelConfig) -> int:
    """Run the daemon with the given configuration."""
    daemon = SentinelDaemon(config)

    # Set up signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: daemon.handle_signal(s))

    try:
        await daemon.run()
    except Exception as e:
        logger.exception("Daemon crashed: %s", e)
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the daemon."""
    parser = argparse.ArgumentParser(
        prog="iotsentinel-daemon",
        description="IoT Sentinel daemon process",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-i", "--interface",
        action="append",
        metavar="IFACE",
        help="Interface to monitor (repeatable; overrides configuration)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # Override settings from command line
    if args.interface:
        config.capture.interfaces = args.interface
    if args.verbose:
        config.daemon.log_level = "debug"

    # Validate configuration
    errors = validate_config(config)
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    setup_logging(config.daemon.log_level, config.daemon.log_file)

    return asyncio.run(run_daemon(config))


if __name__ == "__main__":
    sys.exit(main())
