# fleet_engine/routing/router.py
"""
Edge routing.

Hostnames are derived from the allocation table:
    api.<service>.<suffix>  -> backend port
    <service>.<suffix>      -> frontend port (only when the frontend is enabled)

Site files are rendered, diffed against what is on disk, syntax-checked and
only then activated with a graceful reload. A rejected configuration is rolled
back to the last-good files.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from fleet_engine.allocation.allocator import AllocationTable
from fleet_engine.core.capabilities import EdgeRouterController
from fleet_engine.core.errors import CommandError, RoutingError
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.domain.templates import (
    ACME_SERVER_TEMPLATE,
    PLAIN_SERVER_TEMPLATE,
    SITE_HEADER,
    TLS_SERVER_TEMPLATE,
    render_template,
)
from fleet_engine.infrastructure.systemd import write_file_atomic
from fleet_engine.routing.certificates import CertificateManager, CertificateRecord

logger = logging.getLogger(__name__)


SITE_PREFIX = "fleet-"
# Service names are DNS labels and never start with a hyphen
ACME_SITE = f"{SITE_PREFIX}-acme.conf"


def site_file_name(service: str) -> str:
    return f"{SITE_PREFIX}{service}.conf"


# ============================================
# Models
# ============================================

@dataclass(frozen=True)
class RoutedHost:
    hostname: str
    service: str
    role: str  # "backend" | "frontend"
    port: int


@dataclass(frozen=True)
class Route:
    hostname: str
    service: str
    role: str
    upstream_port: int
    tls: bool

    def to_dict(self) -> dict:
        return {
            "hostname": self.hostname,
            "service": self.service,
            "role": self.role,
            "upstream_port": self.upstream_port,
            "tls": self.tls,
        }


@dataclass
class RoutingPlan:
    routes: List[Route] = field(default_factory=list)
    unrouted: List[str] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)
    certificate_errors: Dict[str, str] = field(default_factory=dict)
    changed_files: List[str] = field(default_factory=list)
    removed_files: List[str] = field(default_factory=list)
    reloaded: bool = False

    def route_for(self, hostname: str) -> Optional[Route]:
        for route in self.routes:
            if route.hostname == hostname:
                return route
        return None

    def to_dict(self) -> dict:
        return {
            "routes": [r.to_dict() for r in self.routes],
            "unrouted": list(self.unrouted),
            "certificate_errors": dict(self.certificate_errors),
            "changed_files": list(self.changed_files),
            "removed_files": list(self.removed_files),
            "reloaded": self.reloaded,
        }


def derive_hostnames(allocation: AllocationTable, domain_suffix: str) -> List[RoutedHost]:
    hosts = []
    for entry in allocation:
        hosts.append(RoutedHost(
            hostname=f"api.{entry.name}.{domain_suffix}",
            service=entry.name,
            role="backend",
            port=entry.backend_port,
        ))
        if entry.frontend_port is not None:
            hosts.append(RoutedHost(
                hostname=f"{entry.name}.{domain_suffix}",
                service=entry.name,
                role="frontend",
                port=entry.frontend_port,
            ))
    return hosts


# ============================================
# Router
# ============================================

class EdgeRouter:

    def __init__(
        self,
        sites_dir: Path,
        acme_webroot: Path,
        controller: EdgeRouterController,
        certificates: CertificateManager,
        emitter: EventEmitter = None,
    ):
        self.sites_dir = Path(sites_dir)
        self.acme_webroot = Path(acme_webroot)
        self.controller = controller
        self.certificates = certificates
        self.emitter = emitter or NullEventEmitter()

    def reconcile_routing(
        self,
        allocation: AllocationTable,
        certificates: Optional[Mapping[str, CertificateRecord]] = None,
        *,
        domain_suffix: str,
        tls_failure_policy: str = "plain",
    ) -> RoutingPlan:
        """
        Bring certificates and site files in line with ``allocation``.
        Certificate failures are reported on the plan; router failures raise
        RoutingError with the previous files still active.
        """
        hosts = derive_hostnames(allocation, domain_suffix)

        # Challenges must be answerable before the first issuance
        self._apply_files({ACME_SITE: self._render_acme()}, prune=False)

        current = dict(certificates or {})
        records = {
            host.hostname: self.certificates.ensure(host.hostname, current.get(host.hostname))
            for host in hosts
        }

        plan = self.build_plan(hosts, records, tls_failure_policy)
        changed, removed = self._apply_files(plan.files, prune=True)
        plan.changed_files = changed
        plan.removed_files = removed
        plan.reloaded = bool(changed or removed)

        self.emitter.emit([FleetEvent.routing_applied(plan, plan.reloaded)])
        logger.info(
            f"[router] {len(plan.routes)} route(s), {len(plan.unrouted)} unrouted, "
            f"{len(changed)} changed, {len(removed)} removed"
        )
        return plan

    # -------------------------
    # Rendering
    # -------------------------

    def _render_acme(self) -> str:
        return SITE_HEADER + render_template(ACME_SERVER_TEMPLATE, {"acme_webroot": self.acme_webroot})

    def build_plan(
        self,
        hosts: List[RoutedHost],
        records: Mapping[str, CertificateRecord],
        tls_failure_policy: str,
    ) -> RoutingPlan:
        plan = RoutingPlan()
        blocks: Dict[str, List[str]] = {}

        for host in hosts:
            record = records.get(host.hostname) or CertificateRecord(hostname=host.hostname)
            if record.last_error:
                plan.certificate_errors[host.hostname] = record.last_error

            tls = record.usable
            if not tls and tls_failure_policy == "unrouted":
                plan.unrouted.append(host.hostname)
                blocks.setdefault(host.service, [])
                continue

            variables = {
                "hostname": host.hostname,
                "port": host.port,
                "acme_webroot": self.acme_webroot,
            }
            if tls:
                variables["certificate_path"] = record.certificate_path
                variables["key_path"] = record.key_path
                block = render_template(TLS_SERVER_TEMPLATE, variables)
            else:
                block = render_template(PLAIN_SERVER_TEMPLATE, variables)

            blocks.setdefault(host.service, []).append(block)
            plan.routes.append(Route(
                hostname=host.hostname,
                service=host.service,
                role=host.role,
                upstream_port=host.port,
                tls=tls,
            ))

        plan.files[ACME_SITE] = self._render_acme()
        for service in sorted(blocks):
            if blocks[service]:
                plan.files[site_file_name(service)] = SITE_HEADER + "\n".join(blocks[service])

        return plan

    # -------------------------
    # Applying
    # -------------------------

    def _managed_files(self) -> Dict[str, str]:
        if not self.sites_dir.is_dir():
            return {}
        return {
            p.name: p.read_text(encoding="utf-8")
            for p in sorted(self.sites_dir.glob(f"{SITE_PREFIX}*.conf"))
        }

    def _apply_files(self, desired: Mapping[str, str], prune: bool):
        existing = self._managed_files()

        changed = sorted(n for n, content in desired.items() if existing.get(n) != content)
        removed = sorted(n for n in existing if n not in desired) if prune else []

        if not changed and not removed:
            return [], []

        written: List[str] = []
        unlinked: List[str] = []
        try:
            for name in changed:
                write_file_atomic(self.sites_dir / name, desired[name])
                written.append(name)
            for name in removed:
                (self.sites_dir / name).unlink()
                unlinked.append(name)
        except OSError as e:
            self._roll_back(existing, written, unlinked, reason=f"writing site files failed: {e}")
            raise RoutingError(f"could not write site files, previous files restored: {e}")

        try:
            self.controller.test()
        except CommandError as e:
            self._roll_back(existing, changed, removed, reason="configuration test failed")
            raise RoutingError(f"edge router rejected configuration, previous files restored: {e.stderr or e}")

        try:
            self.controller.reload()
        except CommandError as e:
            raise RoutingError(f"edge router reload failed: {e.stderr or e}")

        return changed, removed

    def _roll_back(self, existing: Mapping[str, str], changed: List[str], removed: List[str], reason: str) -> None:
        logger.error(f"[router] {reason}, rolling back {changed + removed}")
        for name in changed:
            if name in existing:
                write_file_atomic(self.sites_dir / name, existing[name])
            else:
                (self.sites_dir / name).unlink(missing_ok=True)
        for name in removed:
            write_file_atomic(self.sites_dir / name, existing[name])
