# fleet_engine/backup/coordinator.py
"""Encrypted point-in-time snapshots with retention."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Sequence

from fleet_engine.backup.crypto import SnapshotCipher, sha256_hex
from fleet_engine.backup.exporters import ResourceExporter
from fleet_engine.backup.snapshot import BackupSnapshot, SnapshotResource, SnapshotStore
from fleet_engine.core.errors import BackupError
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.locking import HostLock
from fleet_engine.manifest.schema import BackupPolicy

logger = logging.getLogger(__name__)


# Restore applies resources in this order; snapshots are written in it too
RESTORE_ORDER = ("database", "cache", "router_config", "service_config")


def order_exporters(exporters: Sequence[ResourceExporter]) -> List[ResourceExporter]:
    return sorted(exporters, key=lambda e: RESTORE_ORDER.index(e.kind))


class BackupCoordinator:

    def __init__(
        self,
        *,
        store: SnapshotStore,
        exporters: Sequence[ResourceExporter],
        cipher: SnapshotCipher,
        lock: HostLock,
        emitter: EventEmitter = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.exporters = order_exporters(exporters)
        self.cipher = cipher
        self.lock = lock
        self.emitter = emitter or NullEventEmitter()
        self._clock = clock

    def create_snapshot(self, policy: BackupPolicy) -> BackupSnapshot:
        """
        Export, digest, encrypt, publish atomically, then apply retention.

        Any failure discards the staging directory and raises BackupError;
        nothing becomes visible and existing snapshots are untouched.
        """
        with self.lock.hold("backup"):
            self.store.remove_stale_staging()

            now = self._clock()
            snapshot_id = self.store.new_snapshot_id(now)
            staging = self.store.begin(snapshot_id)
            logger.info(f"[backup] creating snapshot {snapshot_id}")

            try:
                resources = self._export_all(staging)
                snapshot = BackupSnapshot(
                    snapshot_id=snapshot_id,
                    created_at=now,
                    encryption_key_id=self.cipher.key_id,
                    resources=resources,
                )
                self.store.commit(staging, snapshot)
            except Exception as e:
                self.store.discard(staging)
                logger.error(f"[backup] snapshot {snapshot_id} failed: {e}", exc_info=True)
                raise BackupError(f"snapshot {snapshot_id} failed: {e}") from e

            self.emitter.emit([FleetEvent.snapshot_created(snapshot)])
            self.apply_retention(policy, now, keep=snapshot_id)
            return snapshot

    def _export_all(self, staging: Path) -> List[SnapshotResource]:
        resources = []
        for exporter in self.exporters:
            for logical_name in exporter.logical_names():
                plain_path = staging / f".{exporter.kind}__{logical_name}.plain"
                exporter.export(logical_name, plain_path)

                plaintext = plain_path.read_bytes()
                ciphertext = self.cipher.encrypt(plaintext)
                plain_path.unlink()

                filename = f"{exporter.kind}__{logical_name}.enc"
                (staging / filename).write_bytes(ciphertext)

                resources.append(SnapshotResource(
                    resource_kind=exporter.kind,
                    logical_name=logical_name,
                    content_digest=sha256_hex(plaintext),
                    ciphertext_digest=sha256_hex(ciphertext),
                    filename=filename,
                    size_bytes=len(ciphertext),
                ))
                logger.info(f"[backup] exported {exporter.kind}:{logical_name} ({len(plaintext)} bytes)")
        return resources

    def apply_retention(self, policy: BackupPolicy, now: datetime, keep: str) -> List[str]:
        """Delete snapshots older than the retention window, oldest first."""
        cutoff = now - timedelta(days=policy.retention_days)
        deleted = []
        for snapshot in self.store.list():
            if snapshot.snapshot_id == keep:
                continue
            if snapshot.created_at < cutoff:
                try:
                    self.store.delete(snapshot.snapshot_id)
                except OSError as e:
                    logger.warning(f"[backup] retention could not delete {snapshot.snapshot_id}: {e}")
                    continue
                self.emitter.emit([FleetEvent.snapshot_deleted(snapshot.snapshot_id)])
                deleted.append(snapshot.snapshot_id)
        if deleted:
            logger.info(f"[backup] retention removed {len(deleted)} snapshot(s)")
        return deleted
