# fleet_engine/allocation/allocator.py
"""Resource allocator - derives the per-service port and database table."""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from fleet_engine.core.errors import ConflictError
from fleet_engine.manifest.schema import FleetManifest, ServiceSpec


@dataclass(frozen=True)
class Allocation:
    name: str
    backend_port: int
    frontend_port: Optional[int] = None
    database_name: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "backend_port": self.backend_port,
            "frontend_port": self.frontend_port,
            "database_name": self.database_name,
        }


@dataclass(frozen=True)
class AllocationTable:
    """Read-only projection of the manifest, rebuilt every run."""

    entries: Tuple[Allocation, ...] = ()

    def __iter__(self) -> Iterator[Allocation]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: object) -> bool:
        return any(a.name == name for a in self.entries)

    def __getitem__(self, name: str) -> Allocation:
        for allocation in self.entries:
            if allocation.name == name:
                return allocation
        raise KeyError(name)

    def get(self, name: str) -> Optional[Allocation]:
        try:
            return self[name]
        except KeyError:
            return None

    def names(self) -> list[str]:
        return [a.name for a in self.entries]

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {a.name: a.to_dict() for a in self.entries}


def find_conflict(services: Iterable[ServiceSpec]) -> None:
    """
    Single pass over services in manifest order.

    Raises ConflictError on the first duplicate name, port or database name.
    A frontend port also collides with any backend port and vice versa.
    """
    names: Dict[str, str] = {}
    backend_owner: Dict[int, str] = {}
    frontend_owner: Dict[int, str] = {}
    database_owner: Dict[str, str] = {}

    for svc in services:
        if svc.name in names:
            raise ConflictError("name", [names[svc.name], svc.name], svc.name)
        names[svc.name] = svc.name

        port = svc.backend_port
        owner = backend_owner.get(port) or frontend_owner.get(port)
        if owner is not None:
            raise ConflictError("port", [owner, svc.name], port)
        backend_owner[port] = svc.name

        if svc.frontend_enabled and svc.frontend_port is not None:
            port = svc.frontend_port
            owner = frontend_owner.get(port) or backend_owner.get(port)
            if owner is not None:
                raise ConflictError("port", [owner, svc.name], port)
            frontend_owner[port] = svc.name

        if svc.database_enabled and svc.database_name:
            owner = database_owner.get(svc.database_name)
            if owner is not None:
                raise ConflictError("database", [owner, svc.name], svc.database_name)
            database_owner[svc.database_name] = svc.name


def allocate(manifest: FleetManifest) -> AllocationTable:
    """Validate cross-service invariants and return the allocation table."""
    find_conflict(manifest.services)

    return AllocationTable(entries=tuple(
        Allocation(
            name=svc.name,
            backend_port=svc.backend_port,
            frontend_port=svc.frontend_port if svc.frontend_enabled else None,
            database_name=svc.database_name if svc.database_enabled else None,
        )
        for svc in manifest.services
    ))
