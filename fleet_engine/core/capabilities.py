# fleet_engine/core/capabilities.py

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional


class SourceFetcher(ABC):
    """
    Source-retrieval contract.
    """

    @abstractmethod
    def fetch(self, locator: Optional[str], ref: str, dest: Path) -> str:
        """
        Materialize ``locator`` at ``ref`` into ``dest``.
        Returns the resolved revision. Raises FetchError.
        """
        raise NotImplementedError


class Supervisor(ABC):
    """
    Process-supervisor contract (unit files + lifecycle commands).
    """

    @abstractmethod
    def read_unit(self, unit: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def write_unit(self, unit: str, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def read_environment(self, service: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def write_environment(self, service: str, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def environment_path(self, service: str) -> Path:
        raise NotImplementedError

    @abstractmethod
    def daemon_reload(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_active(self, unit: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def enable(self, unit: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def restart(self, unit: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def start(self, unit: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self, unit: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_managed_units(self) -> List[str]:
        """Unit names this engine owns."""
        raise NotImplementedError


class DatabaseAdmin(ABC):
    """
    Relational database admin capability.
    """

    @abstractmethod
    def create_database_if_absent(self, name: str) -> bool:
        """
        Returns True if the database was created, False if it already existed.
        Must never fail because the database exists.
        """
        raise NotImplementedError

    @abstractmethod
    def export(self, name: str, dest: Path) -> None:
        """Consistent point-in-time export of one database."""
        raise NotImplementedError

    @abstractmethod
    def restore(self, name: str, source: Path) -> None:
        raise NotImplementedError


class CacheAdmin(ABC):
    """
    In-memory cache admin capability.
    """

    @abstractmethod
    def export(self, dest: Path) -> None:
        raise NotImplementedError

    @abstractmethod
    def restore(self, source: Path) -> None:
        raise NotImplementedError


class EdgeRouterController(ABC):
    """
    Edge-router control: syntax check and graceful reload.
    """

    @abstractmethod
    def test(self) -> None:
        """Raise CommandError if the current configuration is invalid."""
        raise NotImplementedError

    @abstractmethod
    def reload(self) -> None:
        """Reload without dropping in-flight connections."""
        raise NotImplementedError


class CertificateAuthority(ABC):
    """
    Certificate issuance contract.
    """

    @abstractmethod
    def issue(self, hostname: str, *, renew: bool = False) -> None:
        """
        Obtain or renew a certificate for ``hostname``.
        Raises CertificateError with ``retryable`` set for transient failures.
        """
        raise NotImplementedError
