# fleet_engine/reconciler/units.py
"""Deterministic rendering of unit files and environment files."""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote

from fleet_engine.allocation.allocator import Allocation
from fleet_engine.domain.templates import (
    FRONTEND_DEFAULTS,
    KIND_DEFAULTS,
    UNIT_TEMPLATE,
    render_template,
)
from fleet_engine.manifest.schema import FleetManifest, ServiceSpec


UNIT_PREFIX = "fleet-"


def backend_unit_name(service: str) -> str:
    return f"{UNIT_PREFIX}{service}-backend.service"


def frontend_unit_name(service: str) -> str:
    return f"{UNIT_PREFIX}{service}-frontend.service"


@dataclass(frozen=True)
class UnitFile:
    name: str
    content: str


@dataclass(frozen=True)
class ServiceUnits:
    """Everything the supervisor needs to run one service."""
    service: str
    environment: str
    units: List[UnitFile]

    @property
    def unit_names(self) -> List[str]:
        return [u.name for u in self.units]


# -------------------------
# Environment
# -------------------------

def database_url(manifest: FleetManifest, database_name: str) -> str:
    db = manifest.database
    user = quote(db.admin_user or "", safe="")
    password = quote(db.admin_password or "", safe="")
    return f"postgresql://{user}:{password}@{db.host}:{db.port}/{database_name}"


def cache_url(manifest: FleetManifest) -> str:
    cache = manifest.cache
    auth = f":{quote(cache.password, safe='')}@" if cache.password else ""
    return f"redis://{auth}{cache.host}:{cache.port}/0"


def service_environment(
    manifest: FleetManifest,
    service: ServiceSpec,
    allocation: Allocation,
) -> Dict[str, str]:
    """Variables shared by the backend, the frontend and migrations."""
    env = {
        "FLEET_SERVICE": service.name,
        "BACKEND_PORT": str(allocation.backend_port),
    }
    if allocation.frontend_port is not None:
        env["FRONTEND_PORT"] = str(allocation.frontend_port)

    if allocation.database_name is not None:
        env["DATABASE_NAME"] = allocation.database_name
        env["DATABASE_URL"] = database_url(manifest, allocation.database_name)

    if service.cache_enabled:
        env["REDIS_URL"] = cache_url(manifest)

    # Manifest-provided variables win
    env.update(service.environment)
    return env


def _quote_env_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def render_environment_file(env: Dict[str, str]) -> str:
    lines = ["# Managed by fleet-engine. Local edits are overwritten."]
    for key in sorted(env):
        lines.append(f"{key}={_quote_env_value(env[key])}")
    return "\n".join(lines) + "\n"


# -------------------------
# Units
# -------------------------

def resolve_exec_start(command: str, working_directory: Path) -> str:
    """Anchor relative executables (``bin/api``) to the working directory."""
    parts = shlex.split(command)
    if not parts:
        raise ValueError("empty start command")

    executable = parts[0]
    if not executable.startswith("/") and "/" in executable:
        parts[0] = str(working_directory / executable)

    return shlex.join(parts)


class UnitRenderer:
    """
    Renders unit files for a service.

    Output depends only on its inputs, so re-rendering an unchanged service
    produces byte-identical files and no restart.
    """

    def __init__(self, manifest: FleetManifest, service_user: str):
        self._manifest = manifest
        self._service_user = service_user

    def _after(self, service: ServiceSpec) -> str:
        after = ["network-online.target"]
        if service.database_enabled:
            after.append("postgresql.service")
        if service.cache_enabled:
            after.append("redis-server.service")
        return " ".join(after)

    def start_command(self, service: ServiceSpec) -> str:
        return service.start_command or KIND_DEFAULTS[service.kind].start_for(service.name)

    def frontend_start_command(self, service: ServiceSpec) -> str:
        return service.frontend_start_command or FRONTEND_DEFAULTS.start_command

    def render(
        self,
        service: ServiceSpec,
        allocation: Allocation,
        revision: str,
        working_directory: Path,
        environment_file: Path,
    ) -> ServiceUnits:
        env = service_environment(self._manifest, service, allocation)

        units = [
            UnitFile(
                name=backend_unit_name(service.name),
                content=self._render_unit(
                    description=f"fleet service {service.name} (backend)",
                    service=service,
                    port=allocation.backend_port,
                    revision=revision,
                    working_directory=working_directory,
                    environment_file=environment_file,
                    exec_start=resolve_exec_start(
                        self.start_command(service), working_directory
                    ),
                ),
            )
        ]

        if service.frontend_enabled and allocation.frontend_port is not None:
            frontend_dir = working_directory / service.frontend_dir
            units.append(
                UnitFile(
                    name=frontend_unit_name(service.name),
                    content=self._render_unit(
                        description=f"fleet service {service.name} (frontend)",
                        service=service,
                        port=allocation.frontend_port,
                        revision=revision,
                        working_directory=frontend_dir,
                        environment_file=environment_file,
                        exec_start=resolve_exec_start(
                            self.frontend_start_command(service), frontend_dir
                        ),
                    ),
                )
            )

        return ServiceUnits(
            service=service.name,
            environment=render_environment_file(env),
            units=units,
        )

    def _render_unit(
        self,
        *,
        description: str,
        service: ServiceSpec,
        port: int,
        revision: str,
        working_directory: Path,
        environment_file: Path,
        exec_start: str,
    ) -> str:
        return render_template(UNIT_TEMPLATE, {
            "description": description,
            "after": self._after(service),
            "user": self._service_user,
            "working_directory": working_directory,
            "environment_file": environment_file,
            "port": port,
            "revision": revision,
            "exec_start": exec_start,
        })

