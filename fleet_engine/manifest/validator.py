#fleet_engine\manifest\validator.py
import re
from typing import Any, Mapping, Sequence

from pydantic import ValidationError as SchemaError

from fleet_engine.allocation.allocator import find_conflict
from fleet_engine.core.errors import ValidationError
from fleet_engine.manifest.schema import FleetManifest


DNS_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
DATABASE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SYSTEM_PORT_CEILING = 1024


def format_field_path(loc: Sequence[Any]) -> str:
    """('services', 1, 'name') -> 'services[1].name'"""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "$"


def validate(raw: Any) -> FleetManifest:
    """
    Parse raw manifest input into a FleetManifest.

    Fails fast with the first violated invariant. Port and database-name
    collisions raise ConflictError; everything else raises ValidationError.
    """
    # -------------------------
    # Schema
    # -------------------------
    if not isinstance(raw, Mapping):
        raise ValidationError("$", "manifest must be a mapping")

    try:
        manifest = FleetManifest.model_validate(dict(raw))
    except SchemaError as e:
        first = e.errors()[0]
        raise ValidationError(format_field_path(first["loc"]), first["msg"])

    _validate_service_shapes(manifest)

    # -------------------------
    # Names
    # -------------------------
    seen: set[str] = set()
    for i, svc in enumerate(manifest.services):
        if svc.name in seen:
            raise ValidationError(f"services[{i}].name", f"duplicate service name '{svc.name}'")
        seen.add(svc.name)

    # -------------------------
    # Ports and database names
    # -------------------------
    _validate_port_ranges(manifest)
    find_conflict(manifest.services)

    # -------------------------
    # Global credentials
    # -------------------------
    _validate_credentials(manifest)

    return manifest


def _validate_service_shapes(manifest: FleetManifest) -> None:
    for i, svc in enumerate(manifest.services):
        prefix = f"services[{i}]"

        if not DNS_LABEL.match(svc.name):
            raise ValidationError(f"{prefix}.name", f"'{svc.name}' is not a DNS-label safe name")

        if svc.frontend_enabled and svc.frontend_port is None:
            raise ValidationError(f"{prefix}.frontend_port", "required when frontend_enabled is true")

        if svc.database_enabled:
            if not svc.database_name:
                raise ValidationError(f"{prefix}.database_name", "required when database_enabled is true")
            if not DATABASE_IDENTIFIER.match(svc.database_name):
                raise ValidationError(
                    f"{prefix}.database_name",
                    f"'{svc.database_name}' must be a lowercase SQL identifier",
                )

        if svc.run_migrations and not svc.database_enabled:
            raise ValidationError(f"{prefix}.run_migrations", "migrations require database_enabled")

        for key in svc.environment:
            if not ENV_KEY.match(key):
                raise ValidationError(f"{prefix}.environment.{key}", "invalid environment variable name")

        if svc.health_check_path is not None and not svc.health_check_path.startswith("/"):
            raise ValidationError(f"{prefix}.health_check_path", "must start with '/'")


def _validate_port_ranges(manifest: FleetManifest) -> None:
    ranges = manifest.port_ranges
    reserved = manifest.reserved_ports

    for field, (low, high) in (("backend", ranges.backend), ("frontend", ranges.frontend)):
        if low < SYSTEM_PORT_CEILING or high > 65535 or low > high:
            raise ValidationError(f"port_ranges.{field}", f"invalid range {low}-{high}")

    b_low, b_high = ranges.backend
    f_low, f_high = ranges.frontend
    if b_low <= f_high and f_low <= b_high:
        raise ValidationError("port_ranges", "backend and frontend ranges must be disjoint")

    for i, svc in enumerate(manifest.services):
        if not b_low <= svc.backend_port <= b_high or svc.backend_port in reserved:
            raise ValidationError(
                f"services[{i}].backend_port",
                f"{svc.backend_port} outside backend range {b_low}-{b_high} or reserved",
            )
        if svc.frontend_enabled:
            if not f_low <= svc.frontend_port <= f_high or svc.frontend_port in reserved:
                raise ValidationError(
                    f"services[{i}].frontend_port",
                    f"{svc.frontend_port} outside frontend range {f_low}-{f_high} or reserved",
                )


def _validate_credentials(manifest: FleetManifest) -> None:
    if not manifest.domain_suffix:
        raise ValidationError("domain_suffix", "required")

    if not manifest.certificates.email:
        raise ValidationError("certificates.email", "required for certificate issuance")

    if manifest.uses_database:
        if not manifest.database.admin_user:
            raise ValidationError("database.admin_user", "required when any service uses a database")
        if not manifest.database.admin_password:
            raise ValidationError("database.admin_password", "required when any service uses a database")

