"""Event models for the fleet engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class FleetEvent:
    """Base fleet event."""

    event_type: str
    subject: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def service_transition(runtime, previous):
        """Service moved to a new reconciliation state."""
        return FleetEvent(
            event_type="service.transition",
            subject=runtime.name,
            timestamp=datetime.now(timezone.utc),
            metadata={
                "from": previous.value,
                "to": runtime.state.value,
                "revision": runtime.revision,
            }
        )

    @staticmethod
    def service_failed(runtime):
        """Service reconciliation failed."""
        return FleetEvent(
            event_type="service.failed",
            subject=runtime.name,
            timestamp=datetime.now(timezone.utc),
            metadata={
                "phase": runtime.failed_phase,
                "error_message": runtime.error_message,
            }
        )

    @staticmethod
    def routing_applied(plan, reloaded: bool):
        """Routing files written and router reloaded."""
        return FleetEvent(
            event_type="routing.applied",
            subject="edge-router",
            timestamp=datetime.now(timezone.utc),
            metadata={
                "routes": len(plan.routes),
                "changed_files": list(plan.changed_files),
                "reloaded": reloaded,
            }
        )

    @staticmethod
    def certificate_issued(record):
        return FleetEvent(
            event_type="certificate.issued",
            subject=record.hostname,
            timestamp=datetime.now(timezone.utc),
            metadata={
                "identifier": record.identifier,
                "not_after": record.not_after.isoformat() if record.not_after else None,
            }
        )

    @staticmethod
    def certificate_failed(hostname: str, reason: str):
        return FleetEvent(
            event_type="certificate.failed",
            subject=hostname,
            timestamp=datetime.now(timezone.utc),
            metadata={"error_message": reason}
        )

    @staticmethod
    def snapshot_created(snapshot):
        return FleetEvent(
            event_type="snapshot.created",
            subject=snapshot.snapshot_id,
            timestamp=datetime.now(timezone.utc),
            metadata={
                "resources": len(snapshot.resources),
                "encryption_key_id": snapshot.encryption_key_id,
            }
        )

    @staticmethod
    def snapshot_deleted(snapshot_id: str):
        return FleetEvent(
            event_type="snapshot.deleted",
            subject=snapshot_id,
            timestamp=datetime.now(timezone.utc),
        )

    @staticmethod
    def restore_completed(result, error: Optional[str] = None):
        return FleetEvent(
            event_type="restore.completed" if error is None else "restore.failed",
            subject=result.snapshot_id,
            timestamp=datetime.now(timezone.utc),
            metadata={
                "restored": list(result.restored),
                "not_restored": list(result.not_restored),
                "error_message": error,
            }
        )
