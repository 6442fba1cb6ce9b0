#fleet_engine\core\state_machine.py

from datetime import datetime, timezone

from fleet_engine.core.errors import InvalidStateTransition
from fleet_engine.core.models import ServiceRuntimeState, ServiceState


ALLOWED_TRANSITIONS = {
    ServiceState.ABSENT: {
        ServiceState.FETCHING,
        ServiceState.CANCELLED,
    },
    ServiceState.FETCHING: {
        ServiceState.BUILDING,
        ServiceState.FAILED,
    },
    ServiceState.BUILDING: {
        ServiceState.MIGRATING,
        ServiceState.UNITS_WRITTEN,
        ServiceState.FAILED,
    },
    ServiceState.MIGRATING: {
        ServiceState.UNITS_WRITTEN,
        ServiceState.FAILED,
    },
    ServiceState.UNITS_WRITTEN: {
        ServiceState.RUNNING,
        ServiceState.FAILED,
    },
}


class ServiceStateMachine:
    @staticmethod
    def transition(
        runtime: ServiceRuntimeState,
        new_state: ServiceState,
        *,
        now: datetime | None = None,
    ) -> ServiceRuntimeState:
        now = now or datetime.now(timezone.utc)

        current = runtime.state

        if current == new_state:
            return runtime

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_state not in allowed:
            raise InvalidStateTransition(
                f"[{runtime.name}] cannot transition from {current.value} to {new_state.value}"
            )

        # Timestamp semantics
        if current == ServiceState.ABSENT:
            runtime.started_at = now

        if new_state in (
            ServiceState.RUNNING,
            ServiceState.FAILED,
            ServiceState.CANCELLED,
        ):
            runtime.finished_at = now

        runtime.history.append(current)
        runtime.state = new_state
        return runtime
