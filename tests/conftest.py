#tests\conftest.py

"""Pytest configuration and fixtures."""

import subprocess
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from fleet_engine.container import FleetContainer
from fleet_engine.core.capabilities import (
    CacheAdmin,
    CertificateAuthority,
    DatabaseAdmin,
    EdgeRouterController,
    SourceFetcher,
    Supervisor,
)
from fleet_engine.core.errors import CertificateError, CommandError, FetchError
from fleet_engine.core.events import LogEventEmitter
from fleet_engine.core.locking import HostLock
from fleet_engine.infrastructure.config import FleetSettings
from fleet_engine.manifest.validator import validate


# ============================================
# Manifests
# ============================================

def service(name: str, backend_port: int, **overrides) -> dict:
    return {"name": name, "backend_port": backend_port, **overrides}


def manifest_dict(*services: dict, **overrides) -> dict:
    raw = {
        "domain_suffix": "example.test",
        "database": {"admin_user": "fleet", "admin_password": "secret"},
        "certificates": {"email": "ops@example.test"},
        "services": list(services),
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def make_manifest():
    def _make(*services: dict, **overrides):
        return validate(manifest_dict(*services, **overrides))
    return _make


# ============================================
# Settings
# ============================================

@pytest.fixture
def settings(tmp_path):
    return FleetSettings(
        manifest_path=tmp_path / "manifest.yaml",
        services_root=tmp_path / "srv",
        unit_dir=tmp_path / "units",
        env_dir=tmp_path / "env",
        nginx_sites_dir=tmp_path / "nginx",
        acme_webroot=tmp_path / "acme",
        letsencrypt_dir=tmp_path / "letsencrypt",
        backup_root=tmp_path / "backups",
        backup_encryption_key="Hn3Cq9a7m0tq9nqJZx5gK3Pp2yq0Dq8fWm9nV7r1b2Q=",
        lock_path=tmp_path / "fleet.lock",
        lock_timeout_seconds=1.0,
        fetch_backoff_seconds=0,
        certificate_backoff_seconds=0,
        max_workers=2,
    )


@pytest.fixture
def emitter():
    return LogEventEmitter()


@pytest.fixture
def host_lock(settings):
    return HostLock(settings.lock_path, timeout_seconds=0.5, poll_interval=0.05)


# ============================================
# Command runner
# ============================================

class FakeRunner:
    """Records commands; fails the ones matching a registered predicate."""

    def __init__(self):
        self.calls: List[dict] = []
        self._failures: List[Callable[[List[str], Optional[Path]], bool]] = []
        self._lock = threading.Lock()

    def fail_when(self, predicate: Callable[[List[str], Optional[Path]], bool]) -> None:
        self._failures.append(predicate)

    def __call__(self, args, *, cwd=None, env=None, timeout=None, check=True):
        args = [str(a) for a in args]
        with self._lock:
            self.calls.append({"args": args, "cwd": cwd, "env": dict(env or {})})
        for predicate in self._failures:
            if predicate(args, cwd):
                if check:
                    raise CommandError(args, 1, "simulated failure")
                return subprocess.CompletedProcess(args, 1, "", "simulated failure")
        return subprocess.CompletedProcess(args, 0, "", "")

    def commands(self) -> List[str]:
        return [" ".join(c["args"]) for c in self.calls]


@pytest.fixture
def runner():
    return FakeRunner()


# ============================================
# Capabilities
# ============================================

class FakeFetcher(SourceFetcher):

    def __init__(self):
        self.revisions: Dict[str, str] = {}
        self.failures: Dict[str, int] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, locator, ref, dest):
        name = Path(dest).name
        with self._lock:
            self.calls.append(name)
            remaining = self.failures.get(name, 0)
            if remaining:
                self.failures[name] = remaining - 1
                raise FetchError(f"remote unreachable for {name}")
        Path(dest).mkdir(parents=True, exist_ok=True)
        return self.revisions.get(name, "a" * 40)


class FakeSupervisor(Supervisor):

    def __init__(self, env_dir: Path = Path("/etc/fleet/env")):
        self.env_dir = env_dir
        self.units: Dict[str, str] = {}
        self.environments: Dict[str, str] = {}
        self.active: set = set()
        self.actions: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, *action):
        with self._lock:
            self.actions.append(action)

    def read_unit(self, unit):
        return self.units.get(unit)

    def write_unit(self, unit, content):
        self._record("write_unit", unit)
        self.units[unit] = content

    def read_environment(self, service):
        return self.environments.get(service)

    def write_environment(self, service, content):
        self._record("write_environment", service)
        self.environments[service] = content

    def environment_path(self, service):
        return self.env_dir / f"{service}.env"

    def daemon_reload(self):
        self._record("daemon_reload")

    def is_active(self, unit):
        return unit in self.active

    def enable(self, unit):
        self._record("enable", unit)

    def restart(self, unit):
        self._record("restart", unit)
        self.active.add(unit)

    def start(self, unit):
        self._record("start", unit)
        self.active.add(unit)

    def stop(self, unit):
        self._record("stop", unit)
        self.active.discard(unit)

    def list_managed_units(self):
        return sorted(u for u in self.units if u.startswith("fleet-"))

    def restarts(self) -> List[str]:
        return [a[1] for a in self.actions if a[0] == "restart"]


class FakeDatabaseAdmin(DatabaseAdmin):

    def __init__(self):
        self.databases: Dict[str, bytes] = {}
        self.created: List[str] = []
        self.restored: List[str] = []
        self.fail_restore: set = set()

    def create_database_if_absent(self, name):
        if name in self.databases:
            return False
        self.databases[name] = b""
        self.created.append(name)
        return True

    def export(self, name, dest):
        Path(dest).write_bytes(b"PGDMP" + name.encode() + self.databases.get(name, b""))

    def restore(self, name, source):
        if name in self.fail_restore:
            raise CommandError(["pg_restore", name], 1, "simulated restore failure")
        self.databases[name] = Path(source).read_bytes()
        self.restored.append(name)


class FakeCacheAdmin(CacheAdmin):

    def __init__(self):
        self.data = b"REDIS0011"
        self.restored = False

    def export(self, dest):
        Path(dest).write_bytes(self.data)

    def restore(self, source):
        self.data = Path(source).read_bytes()
        self.restored = True


class FakeController(EdgeRouterController):

    def __init__(self):
        self.tests = 0
        self.reloads = 0
        self.reject = False

    def test(self):
        self.tests += 1
        if self.reject:
            raise CommandError(["nginx", "-t"], 1, "nginx: [emerg] unexpected end of file")

    def reload(self):
        self.reloads += 1


def write_certificate(root: Path, hostname: str, not_after: datetime) -> None:
    """Self-signed certificate in the live/<hostname> layout."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    live = Path(root) / "live" / hostname
    live.mkdir(parents=True, exist_ok=True)
    (live / "fullchain.pem").write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    (live / "privkey.pem").write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))


class FakeAuthority(CertificateAuthority):
    """Issues 90-day certificates unless a hostname is told to fail."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.calls: List[tuple] = []
        self.failing: Dict[str, bool] = {}  # hostname -> retryable

    def issue(self, hostname, *, renew=False):
        self.calls.append((hostname, renew))
        if hostname in self.failing:
            raise CertificateError(hostname, "rate limited", retryable=self.failing[hostname])
        write_certificate(self.root, hostname, datetime.now(timezone.utc) + timedelta(days=90))


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def supervisor(settings):
    return FakeSupervisor(settings.env_dir)


@pytest.fixture
def database_admin():
    return FakeDatabaseAdmin()


@pytest.fixture
def cache_admin():
    return FakeCacheAdmin()


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def authority(settings):
    return FakeAuthority(settings.letsencrypt_dir)


# ============================================
# Container
# ============================================

class FakeContainer(FleetContainer):
    """Real wiring with every host adapter replaced by a fake."""

    def __init__(self, settings, *, runner, fetcher, supervisor, database_admin, cache_admin,
                 controller, authority):
        super().__init__(settings)
        self.runner = runner
        self.fetcher = fetcher
        self.supervisor = supervisor
        self.nginx = controller
        self.health_probe = None
        self.lock = HostLock(settings.lock_path, timeout_seconds=0.5, poll_interval=0.05)
        self._database_admin = database_admin
        self._cache_admin = cache_admin
        self._authority = authority

    def database_admin(self, manifest):
        return self._database_admin

    def cache_admin(self, manifest):
        return self._cache_admin

    def certificate_authority(self, manifest):
        return self._authority


@pytest.fixture
def container(settings, runner, fetcher, supervisor, database_admin, cache_admin, controller, authority):
    return FakeContainer(
        settings.model_copy(update={"certificate_attempts": 1}),
        runner=runner,
        fetcher=fetcher,
        supervisor=supervisor,
        database_admin=database_admin,
        cache_admin=cache_admin,
        controller=controller,
        authority=authority,
    )


@pytest.fixture
def write_manifest(settings):
    """Write a manifest where the container loads it from."""
    def _write(*services: dict, **overrides):
        settings.manifest_path.write_text(yaml.safe_dump(manifest_dict(*services, **overrides)))
        return settings.manifest_path
    return _write
