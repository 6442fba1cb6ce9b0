# fleet_engine/reconciler/reconciler.py
"""
Per-service convergence.

fetch -> build -> (migrate) -> write units -> run

Every failure is contained to the service being reconciled. Units are only
rewritten when their rendered content differs and a unit is only restarted
when it changed or is not running, so a second run over an unchanged
manifest touches nothing.
"""

import logging
import shlex
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from fleet_engine.allocation.allocator import Allocation
from fleet_engine.core.capabilities import DatabaseAdmin, SourceFetcher, Supervisor
from fleet_engine.core.errors import CommandError, FetchError, PerServiceError
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.models import ServiceRuntimeState, ServiceState
from fleet_engine.core.retry import retry_call
from fleet_engine.core.state_machine import ServiceStateMachine
from fleet_engine.domain.templates import FRONTEND_DEFAULTS, KIND_DEFAULTS
from fleet_engine.infrastructure.config import FleetSettings
from fleet_engine.infrastructure.shell import CommandRunner, run_command
from fleet_engine.manifest.schema import FleetManifest, ServiceSpec
from fleet_engine.reconciler.units import ServiceUnits, UnitRenderer, service_environment

logger = logging.getLogger(__name__)


class ServiceReconciler:
    """
    Drives one service through its states. Safe to share between worker
    threads: all per-run state lives in the ServiceRuntimeState.
    """

    def __init__(
        self,
        *,
        manifest: FleetManifest,
        settings: FleetSettings,
        fetcher: SourceFetcher,
        supervisor: Supervisor,
        database_admin: Optional[DatabaseAdmin] = None,
        runner: CommandRunner = run_command,
        health_probe=None,
        emitter: EventEmitter = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.manifest = manifest
        self.settings = settings
        self.fetcher = fetcher
        self.supervisor = supervisor
        self.database_admin = database_admin
        self._run = runner
        self.health_probe = health_probe
        self.emitter = emitter or NullEventEmitter()
        self._sleep = sleep
        self.renderer = UnitRenderer(manifest, settings.service_user)

    # ============================================
    # Entry point
    # ============================================

    def reconcile(self, service: ServiceSpec, allocation: Allocation) -> ServiceRuntimeState:
        runtime = ServiceRuntimeState(name=service.name)
        working_directory = self.settings.services_root / service.name
        runtime.working_directory = str(working_directory)

        logger.info(f"[reconciler] {service.name}: starting")

        try:
            self._fetch(service, runtime, working_directory)
            self._build(service, allocation, runtime, working_directory)

            if service.database_enabled:
                self._provision_database(service, allocation, runtime)

            if service.run_migrations:
                self._migrate(service, allocation, runtime, working_directory)

            units = self._write_units(service, allocation, runtime, working_directory)
            self._start(service, allocation, units, runtime)

        except PerServiceError as e:
            self._fail(runtime, e.phase, e.message)

        except Exception as e:
            # Anything unexpected still only takes down this service
            logger.error(f"[reconciler] {service.name}: unexpected error: {e}", exc_info=True)
            self._fail(runtime, runtime.state.value, str(e))

        return runtime

    def cancelled(self, service: ServiceSpec) -> ServiceRuntimeState:
        """Record a service that never started because the run was cancelled."""
        runtime = ServiceRuntimeState(name=service.name)
        self._transition(runtime, ServiceState.CANCELLED)
        return runtime

    # ============================================
    # Phases
    # ============================================

    def _fetch(self, service: ServiceSpec, runtime: ServiceRuntimeState, working_directory: Path) -> None:
        self._transition(runtime, ServiceState.FETCHING)

        try:
            runtime.revision = retry_call(
                lambda: self.fetcher.fetch(service.source_locator, service.source_ref, working_directory),
                attempts=self.settings.fetch_attempts,
                base_delay=self.settings.fetch_backoff_seconds,
                retry_on=(FetchError,),
                sleep=self._sleep,
                label=f"fetch {service.name}",
            )
        except FetchError as e:
            raise PerServiceError(service.name, "fetch", str(e))

        logger.info(f"[reconciler] {service.name}: at revision {runtime.revision}")

    def _build(
        self,
        service: ServiceSpec,
        allocation: Allocation,
        runtime: ServiceRuntimeState,
        working_directory: Path,
    ) -> None:
        self._transition(runtime, ServiceState.BUILDING)
        env = service_environment(self.manifest, service, allocation)

        commands = service.build_commands
        if commands is None:
            commands = KIND_DEFAULTS[service.kind].build_commands
        self._run_commands(service, "build", commands, working_directory, env)

        if service.frontend_enabled:
            frontend_commands = service.frontend_build_commands
            if frontend_commands is None:
                frontend_commands = FRONTEND_DEFAULTS.build_commands
            self._run_commands(
                service, "build", frontend_commands, working_directory / service.frontend_dir, env
            )

    def _provision_database(self, service: ServiceSpec, allocation: Allocation, runtime: ServiceRuntimeState) -> None:
        """Create the allocated database if absent; still part of BUILDING."""
        if self.database_admin is None:
            raise PerServiceError(service.name, "database", "no database admin configured")
        try:
            runtime.database_created = self.database_admin.create_database_if_absent(allocation.database_name)
        except Exception as e:
            raise PerServiceError(service.name, "database", f"database provisioning: {e}")

    def _migrate(
        self,
        service: ServiceSpec,
        allocation: Allocation,
        runtime: ServiceRuntimeState,
        working_directory: Path,
    ) -> None:
        self._transition(runtime, ServiceState.MIGRATING)

        command = service.migrate_command or KIND_DEFAULTS[service.kind].migrate_for(service.name)
        env = service_environment(self.manifest, service, allocation)
        self._run_commands(service, "migrate", [command], working_directory, env)
        runtime.migrated = True

    def _write_units(
        self,
        service: ServiceSpec,
        allocation: Allocation,
        runtime: ServiceRuntimeState,
        working_directory: Path,
    ) -> ServiceUnits:
        try:
            units = self.renderer.render(
                service,
                allocation,
                runtime.revision,
                working_directory,
                self.supervisor.environment_path(service.name),
            )

            env_changed = self.supervisor.read_environment(service.name) != units.environment
            if env_changed:
                self.supervisor.write_environment(service.name, units.environment)

            for unit in units.units:
                unit_changed = self.supervisor.read_unit(unit.name) != unit.content
                if unit_changed:
                    self.supervisor.write_unit(unit.name, unit.content)
                # A new environment is only picked up on restart
                if unit_changed or env_changed:
                    runtime.changed_units.append(unit.name)

        except (OSError, ValueError, KeyError) as e:
            raise PerServiceError(service.name, "units", str(e))

        self._transition(runtime, ServiceState.UNITS_WRITTEN)
        return units

    def _start(
        self,
        service: ServiceSpec,
        allocation: Allocation,
        units: ServiceUnits,
        runtime: ServiceRuntimeState,
    ) -> None:
        try:
            if runtime.changed_units:
                self.supervisor.daemon_reload()

            for unit in units.unit_names:
                if unit in runtime.changed_units or not self.supervisor.is_active(unit):
                    self.supervisor.enable(unit)
                    self.supervisor.restart(unit)
                    runtime.restarted_units.append(unit)

        except CommandError as e:
            raise PerServiceError(service.name, "start", str(e))

        if runtime.restarted_units and service.health_check_path and self.health_probe is not None:
            url = f"http://127.0.0.1:{allocation.backend_port}{service.health_check_path}"
            runtime.healthy = self.health_probe.check(url)
            if not runtime.healthy:
                raise PerServiceError(service.name, "health", f"{url} did not become healthy")

        self._transition(runtime, ServiceState.RUNNING)
        logger.info(
            f"[reconciler] {service.name}: running "
            f"(changed={len(runtime.changed_units)}, restarted={len(runtime.restarted_units)})"
        )

    # ============================================
    # Helpers
    # ============================================

    def _run_commands(
        self,
        service: ServiceSpec,
        phase: str,
        commands: Sequence[str],
        cwd: Path,
        env: Dict[str, str],
    ) -> None:
        for command in commands:
            args: List[str] = shlex.split(command)
            logger.info(f"[reconciler] {service.name}: {phase}: {command}")
            try:
                self._run(args, cwd=cwd, env=env, timeout=self.settings.command_timeout_seconds)
            except CommandError as e:
                raise PerServiceError(service.name, phase, f"`{command}` exited {e.returncode}: {e.stderr}")

    def _transition(self, runtime: ServiceRuntimeState, new_state: ServiceState) -> None:
        previous = runtime.state
        ServiceStateMachine.transition(runtime, new_state)
        self.emitter.emit([FleetEvent.service_transition(runtime, previous)])

    def _fail(self, runtime: ServiceRuntimeState, phase: str, message: str) -> None:
        runtime.failed_phase = phase
        runtime.error_message = message
        logger.error(f"[reconciler] {runtime.name}: {phase} failed: {message}")

        self._transition(runtime, ServiceState.FAILED)
        self.emitter.emit([FleetEvent.service_failed(runtime)])
