"""Core runtime models for a convergence run."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fleet_engine.core.errors import EXIT_OK, EXIT_ROUTING, EXIT_SERVICE


class ServiceState(Enum):
    """Per-service reconciliation state machine."""

    ABSENT = "absent"
    FETCHING = "fetching"
    BUILDING = "building"
    MIGRATING = "migrating"
    UNITS_WRITTEN = "units-written"
    RUNNING = "running"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    ServiceState.RUNNING,
    ServiceState.FAILED,
    ServiceState.CANCELLED,
})


@dataclass
class ServiceRuntimeState:
    """Lifecycle of one service during one run. Never persisted."""

    name: str
    state: ServiceState = ServiceState.ABSENT

    # Results
    revision: Optional[str] = None
    working_directory: Optional[str] = None
    database_created: bool = False
    migrated: bool = False
    changed_units: List[str] = field(default_factory=list)
    restarted_units: List[str] = field(default_factory=list)
    healthy: Optional[bool] = None

    # Failure
    failed_phase: Optional[str] = None
    error_message: Optional[str] = None

    # Timestamps
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    history: List[ServiceState] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "revision": self.revision,
            "database_created": self.database_created,
            "migrated": self.migrated,
            "changed_units": list(self.changed_units),
            "restarted_units": list(self.restarted_units),
            "healthy": self.healthy,
            "failed_phase": self.failed_phase,
            "error": self.error_message,
        }


@dataclass
class RunSummary:
    """Structured end-of-run report."""

    operation: str
    services: Dict[str, ServiceRuntimeState] = field(default_factory=dict)
    routing: Optional[Any] = None
    routing_error: Optional[str] = None
    certificate_errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def failed_services(self) -> List[str]:
        return [name for name, s in self.services.items() if s.state == ServiceState.FAILED]

    @property
    def exit_code(self) -> int:
        if self.failed_services:
            return EXIT_SERVICE
        if self.routing_error:
            return EXIT_ROUTING
        return EXIT_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "services": {name: s.to_dict() for name, s in self.services.items()},
            "failed_services": self.failed_services,
            "routing": self.routing.to_dict() if self.routing is not None else None,
            "routing_error": self.routing_error,
            "certificate_errors": list(self.certificate_errors),
            "cancelled": self.cancelled,
            "exit_code": self.exit_code,
        }
