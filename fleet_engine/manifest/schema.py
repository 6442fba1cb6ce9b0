#fleet_engine\manifest\schema.py
"""Pydantic models for the fleet manifest."""

from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ServiceKind(str, Enum):
    """How a service is built and started."""
    COMPILED_BINARY = "compiled-binary"
    INTERPRETED_RUNTIME = "interpreted-runtime"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ============================================
# SERVICES
# ============================================

class ServiceSpec(_Frozen):
    """One independently versioned network service."""
    name: str
    kind: ServiceKind = ServiceKind.COMPILED_BINARY

    # Source
    source_locator: Optional[str] = None
    source_ref: str = "main"

    # Ports
    backend_port: int
    frontend_enabled: bool = False
    frontend_port: Optional[int] = None

    # Bindings
    database_enabled: bool = False
    database_name: Optional[str] = None
    cache_enabled: bool = False
    run_migrations: bool = False

    # Command overrides (kind defaults apply when unset)
    build_commands: Optional[Tuple[str, ...]] = None
    start_command: Optional[str] = None
    migrate_command: Optional[str] = None
    frontend_dir: str = "frontend"
    frontend_build_commands: Optional[Tuple[str, ...]] = None
    frontend_start_command: Optional[str] = None

    environment: Dict[str, str] = Field(default_factory=dict)
    health_check_path: Optional[str] = None


# ============================================
# GLOBAL SETTINGS
# ============================================

class HostSettings(_Frozen):
    name: str = "localhost"
    public_ip: Optional[str] = None


class DatabaseSettings(_Frozen):
    """Relational database admin connection."""
    host: str = "127.0.0.1"
    port: int = 5432
    admin_user: Optional[str] = None
    admin_password: Optional[str] = None


class CacheSettings(_Frozen):
    host: str = "127.0.0.1"
    port: int = 6379
    password: Optional[str] = None


class CertificateSettings(_Frozen):
    email: Optional[str] = None
    renew_before_days: int = Field(default=30, ge=1)
    # What to do with a hostname that has no usable certificate
    tls_failure_policy: Literal["plain", "unrouted"] = "plain"


class BackupPolicy(_Frozen):
    retention_days: int = Field(default=7, ge=1)


class PortRanges(_Frozen):
    backend: Tuple[int, int] = (8000, 8999)
    frontend: Tuple[int, int] = (3000, 3999)


# ============================================
# MANIFEST
# ============================================

class FleetManifest(_Frozen):
    """Root manifest. Immutable for the duration of a run."""
    host: HostSettings = Field(default_factory=HostSettings)
    domain_suffix: Optional[str] = None
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    certificates: CertificateSettings = Field(default_factory=CertificateSettings)
    backup: BackupPolicy = Field(default_factory=BackupPolicy)
    port_ranges: PortRanges = Field(default_factory=PortRanges)
    services: Tuple[ServiceSpec, ...] = ()

    def service(self, name: str) -> Optional[ServiceSpec]:
        for svc in self.services:
            if svc.name == name:
                return svc
        return None

    def service_names(self) -> list[str]:
        return [svc.name for svc in self.services]

    @property
    def reserved_ports(self) -> frozenset[int]:
        """Ports owned by ssh, the edge router, the database and the cache."""
        return frozenset({22, 80, 443, self.database.port, self.cache.port})

    @property
    def uses_database(self) -> bool:
        return any(svc.database_enabled for svc in self.services)

    @property
    def uses_cache(self) -> bool:
        return any(svc.cache_enabled for svc in self.services)
