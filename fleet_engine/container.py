#fleet_engine\container.py

"""Dependency injection container - wires adapters and coordinators together."""

from functools import lru_cache
from typing import List, Optional

from fleet_engine.backup.coordinator import BackupCoordinator
from fleet_engine.backup.crypto import SnapshotCipher
from fleet_engine.backup.exporters import (
    CacheExporter,
    DatabaseExporter,
    DirectoryExporter,
    ResourceExporter,
)
from fleet_engine.backup.restore import RestoreCoordinator
from fleet_engine.backup.snapshot import SnapshotStore
from fleet_engine.core.errors import BackupError
from fleet_engine.core.events import EventEmitter, LogEventEmitter, MultiEventEmitter
from fleet_engine.core.locking import HostLock
from fleet_engine.engine.engine import ConvergenceEngine
from fleet_engine.infrastructure.certbot import CertbotAuthority
from fleet_engine.infrastructure.config import FleetSettings
from fleet_engine.infrastructure.git import GitSourceFetcher
from fleet_engine.infrastructure.health import HttpHealthProbe
from fleet_engine.infrastructure.nginx import NginxController
from fleet_engine.infrastructure.postgres.admin import PostgresAdmin
from fleet_engine.infrastructure.redis.admin import RedisAdmin
from fleet_engine.infrastructure.shell import run_command
from fleet_engine.infrastructure.systemd import SystemdSupervisor
from fleet_engine.manifest.loader import load_manifest
from fleet_engine.manifest.schema import FleetManifest
from fleet_engine.reconciler.reconciler import ServiceReconciler
from fleet_engine.routing.certificates import CertificateManager, CertificateStore
from fleet_engine.routing.router import EdgeRouter


class FleetContainer:
    """
    Host-level adapters are built once from settings. Anything that depends
    on manifest content (credentials, database list, renewal threshold) is
    built per manifest because every run loads the manifest afresh.
    """

    def __init__(self, settings: FleetSettings, emitter: Optional[EventEmitter] = None):
        self.settings = settings

        # ============================================
        # EVENTS
        # ============================================
        self.event_log = LogEventEmitter()
        self.emitter = MultiEventEmitter([self.event_log] + ([emitter] if emitter else []))

        # ============================================
        # HOST ADAPTERS
        # ============================================
        self.runner = run_command
        self.lock = HostLock(settings.lock_path, timeout_seconds=settings.lock_timeout_seconds)
        self.supervisor = SystemdSupervisor(settings.unit_dir, settings.env_dir, settings.systemctl_bin)
        self.nginx = NginxController(settings.nginx_bin)
        self.fetcher = GitSourceFetcher(settings.git_bin)
        self.health_probe = HttpHealthProbe(
            timeout_seconds=settings.health_check_timeout_seconds,
            retries=settings.health_check_retries,
        )
        self.certificate_store = CertificateStore(settings.letsencrypt_dir)
        self.snapshot_store = SnapshotStore(settings.snapshot_dir)

    def load_manifest(self) -> FleetManifest:
        return load_manifest(self.settings.manifest_path)

    # ============================================
    # PER-MANIFEST SERVICES
    # ============================================

    def database_admin(self, manifest: FleetManifest) -> PostgresAdmin:
        return PostgresAdmin(
            manifest.database,
            pg_dump_bin=self.settings.pg_dump_bin,
            pg_restore_bin=self.settings.pg_restore_bin,
        )

    def reconciler(self, manifest: FleetManifest) -> ServiceReconciler:
        return ServiceReconciler(
            manifest=manifest,
            settings=self.settings,
            fetcher=self.fetcher,
            supervisor=self.supervisor,
            database_admin=self.database_admin(manifest) if manifest.uses_database else None,
            runner=self.runner,
            health_probe=self.health_probe,
            emitter=self.emitter,
        )

    def cache_admin(self, manifest: FleetManifest) -> RedisAdmin:
        return RedisAdmin(
            manifest.cache,
            self.supervisor,
            self.settings.redis_dump_path,
            unit=self.settings.redis_unit,
            redis_cli_bin=self.settings.redis_cli_bin,
        )

    def certificate_authority(self, manifest: FleetManifest) -> CertbotAuthority:
        return CertbotAuthority(
            email=manifest.certificates.email,
            webroot=self.settings.acme_webroot,
            certbot_bin=self.settings.certbot_bin,
        )

    def router(self, manifest: FleetManifest) -> EdgeRouter:
        certificates = CertificateManager(
            self.certificate_authority(manifest),
            self.certificate_store,
            renew_before_days=manifest.certificates.renew_before_days,
            attempts=self.settings.certificate_attempts,
            backoff_seconds=self.settings.certificate_backoff_seconds,
            emitter=self.emitter,
        )
        return EdgeRouter(
            self.settings.nginx_sites_dir,
            self.settings.acme_webroot,
            self.nginx,
            certificates,
            emitter=self.emitter,
        )

    def engine(self, manifest: FleetManifest) -> ConvergenceEngine:
        return ConvergenceEngine(
            reconciler_factory=self.reconciler,
            router=self.router(manifest),
            lock=self.lock,
            max_workers=self.settings.max_workers,
        )

    def exporters(self, manifest: FleetManifest) -> List[ResourceExporter]:
        exporters: List[ResourceExporter] = []
        databases = [s.database_name for s in manifest.services if s.database_enabled]
        if databases:
            exporters.append(DatabaseExporter(self.database_admin(manifest), databases))
        if manifest.uses_cache:
            exporters.append(CacheExporter(self.cache_admin(manifest)))
        exporters.append(DirectoryExporter(
            "router_config", "nginx",
            {"sites": (self.settings.nginx_sites_dir, "fleet-*.conf")},
        ))
        exporters.append(DirectoryExporter(
            "service_config", "systemd",
            {
                "units": (self.settings.unit_dir, "fleet-*.service"),
                "env": (self.settings.env_dir, "*.env"),
            },
        ))
        return exporters

    def cipher(self) -> SnapshotCipher:
        if not self.settings.backup_encryption_key:
            raise BackupError("FLEET_BACKUP_ENCRYPTION_KEY is not set")
        return SnapshotCipher(self.settings.backup_encryption_key)

    def backup_coordinator(self, manifest: FleetManifest) -> BackupCoordinator:
        return BackupCoordinator(
            store=self.snapshot_store,
            exporters=self.exporters(manifest),
            cipher=self.cipher(),
            lock=self.lock,
            emitter=self.emitter,
        )

    def restore_coordinator(self, manifest: FleetManifest) -> RestoreCoordinator:
        return RestoreCoordinator(
            store=self.snapshot_store,
            exporters=self.exporters(manifest),
            cipher=self.cipher(),
            supervisor=self.supervisor,
            router=self.nginx,
            lock=self.lock,
            emitter=self.emitter,
        )


@lru_cache(maxsize=1)
def get_container() -> FleetContainer:
    return FleetContainer(FleetSettings())
