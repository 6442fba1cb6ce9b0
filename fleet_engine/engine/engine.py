# fleet_engine/engine/engine.py

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from fleet_engine.allocation.allocator import AllocationTable, allocate
from fleet_engine.core.errors import RoutingError, ValidationError
from fleet_engine.core.locking import HostLock
from fleet_engine.core.models import RunSummary, ServiceRuntimeState
from fleet_engine.manifest.schema import FleetManifest, ServiceSpec
from fleet_engine.reconciler.reconciler import ServiceReconciler
from fleet_engine.routing.router import EdgeRouter, RoutingPlan

logger = logging.getLogger(__name__)


class ConvergenceEngine:
    """
    validate -> allocate -> reconcile (bounded fan-out) -> barrier -> route

    The manifest is validated by the caller; allocation and reconciliation
    happen here under the host lock.
    """

    def __init__(
        self,
        *,
        reconciler_factory: Callable[[FleetManifest], ServiceReconciler],
        router: EdgeRouter,
        lock: HostLock,
        max_workers: int = 2,
    ):
        self._reconciler_factory = reconciler_factory
        self._router = router
        self._lock = lock
        self._max_workers = max(1, max_workers)
        self._cancel = threading.Event()

    # ============================================
    # Operations
    # ============================================

    def plan(self, manifest: FleetManifest) -> AllocationTable:
        """Allocation table for ``manifest`` without touching the host."""
        return allocate(manifest)

    def provision(self, manifest: FleetManifest) -> RunSummary:
        return self.converge(manifest, operation="provision", route=True)

    def deploy(self, manifest: FleetManifest, services: Optional[Iterable[str]] = None) -> RunSummary:
        return self.converge(manifest, operation="deploy", services=services, route=False)

    def route(self, manifest: FleetManifest, operation: str = "route") -> RunSummary:
        allocation = allocate(manifest)
        summary = RunSummary(operation=operation)
        with self._lock.hold(operation):
            self._route(manifest, allocation, summary)
        summary.finished_at = datetime.now(timezone.utc)
        return summary

    def renew_certificates(self, manifest: FleetManifest) -> RunSummary:
        """Certificate pass outside a convergence run; routing follows any change."""
        return self.route(manifest, operation="renew")

    def cancel(self) -> None:
        """Services not yet started end CANCELLED; in-flight ones finish."""
        logger.warning("[engine] cancellation requested")
        self._cancel.set()

    # ============================================
    # Convergence
    # ============================================

    def converge(
        self,
        manifest: FleetManifest,
        *,
        operation: str,
        services: Optional[Iterable[str]] = None,
        route: bool = True,
    ) -> RunSummary:
        allocation = allocate(manifest)
        selected = self._select(manifest, services)

        summary = RunSummary(operation=operation)
        self._cancel.clear()

        with self._lock.hold(operation):
            logger.info(f"[engine] {operation}: {len(selected)} service(s), max_workers={self._max_workers}")
            summary.services = self._reconcile_all(manifest, allocation, selected)
            summary.cancelled = self._cancel.is_set()

            # Barrier: every service is terminal before routing starts
            if route and not summary.cancelled:
                self._route(manifest, allocation, summary)

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"[engine] {operation} finished: failed={summary.failed_services} "
            f"routing_error={summary.routing_error} exit={summary.exit_code}"
        )
        return summary

    def _select(self, manifest: FleetManifest, services: Optional[Iterable[str]]) -> List[ServiceSpec]:
        if not services:
            return list(manifest.services)

        wanted = list(dict.fromkeys(services))
        unknown = [name for name in wanted if manifest.service(name) is None]
        if unknown:
            raise ValidationError("services", f"unknown service(s): {', '.join(unknown)}")

        # Manifest order, not argument order
        return [svc for svc in manifest.services if svc.name in wanted]

    def _reconcile_all(
        self,
        manifest: FleetManifest,
        allocation: AllocationTable,
        selected: List[ServiceSpec],
    ) -> Dict[str, ServiceRuntimeState]:
        reconciler = self._reconciler_factory(manifest)
        results: Dict[str, ServiceRuntimeState] = {}

        def run_one(service: ServiceSpec) -> ServiceRuntimeState:
            if self._cancel.is_set():
                logger.info(f"[engine] {service.name}: cancelled before start")
                return reconciler.cancelled(service)
            return reconciler.reconcile(service, allocation[service.name])

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="reconcile") as pool:
            futures = {pool.submit(run_one, svc): svc.name for svc in selected}
            for future in as_completed(futures):
                runtime = future.result()
                results[runtime.name] = runtime

        return {svc.name: results[svc.name] for svc in selected}

    def _route(self, manifest: FleetManifest, allocation: AllocationTable, summary: RunSummary) -> Optional[RoutingPlan]:
        try:
            plan = self._router.reconcile_routing(
                allocation,
                domain_suffix=manifest.domain_suffix,
                tls_failure_policy=manifest.certificates.tls_failure_policy,
            )
        except RoutingError as e:
            logger.error(f"[engine] routing failed: {e}")
            summary.routing_error = str(e)
            return None

        summary.routing = plan
        summary.certificate_errors = [f"{h}: {msg}" for h, msg in sorted(plan.certificate_errors.items())]
        return plan
