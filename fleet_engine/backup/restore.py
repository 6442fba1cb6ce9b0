# fleet_engine/backup/restore.py
"""
Restore a snapshot onto the host.

Nothing is mutated until every resource has passed its ciphertext digest,
decrypted with the configured key and passed its content digest.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from fleet_engine.backup.coordinator import RESTORE_ORDER
from fleet_engine.backup.crypto import InvalidToken, SnapshotCipher, sha256_hex
from fleet_engine.backup.exporters import ResourceExporter
from fleet_engine.backup.snapshot import BackupSnapshot, SnapshotResource, SnapshotStore
from fleet_engine.core.capabilities import EdgeRouterController, Supervisor
from fleet_engine.core.errors import (
    CommandError,
    RestoreError,
    RestoreVerificationError,
    SnapshotNotFound,
)
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.locking import HostLock

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    snapshot_id: str
    restored: List[str] = field(default_factory=list)
    not_restored: List[str] = field(default_factory=list)
    stopped_units: List[str] = field(default_factory=list)
    resumed_units: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.not_restored

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "restored": list(self.restored),
            "not_restored": list(self.not_restored),
            "stopped_units": list(self.stopped_units),
            "resumed_units": list(self.resumed_units),
            "error": self.error,
        }


def restore_sequence(resources: Sequence[SnapshotResource]) -> List[SnapshotResource]:
    return sorted(resources, key=lambda r: (RESTORE_ORDER.index(r.resource_kind), r.logical_name))


class RestoreCoordinator:

    def __init__(
        self,
        *,
        store: SnapshotStore,
        exporters: Sequence[ResourceExporter],
        cipher: SnapshotCipher,
        supervisor: Supervisor,
        router: EdgeRouterController,
        lock: HostLock,
        emitter: EventEmitter = None,
    ):
        self.store = store
        self.exporters: Dict[str, ResourceExporter] = {e.kind: e for e in exporters}
        self.cipher = cipher
        self.supervisor = supervisor
        self.router = router
        self.lock = lock
        self.emitter = emitter or NullEventEmitter()

    def restore(self, snapshot_id: str, confirmation_token: str) -> RestoreResult:
        if confirmation_token != snapshot_id:
            raise RestoreError("confirmation token does not match the snapshot id; nothing was restored")

        with self.lock.hold("restore"):
            snapshot = self.store.get(snapshot_id)
            if snapshot is None:
                raise SnapshotNotFound(f"snapshot {snapshot_id} not found")

            staging = Path(tempfile.mkdtemp(prefix=".restore-", dir=str(self.store.root)))
            try:
                plaintexts = self._verify(snapshot, staging)
                return self._apply(snapshot, plaintexts)
            finally:
                shutil.rmtree(staging, ignore_errors=True)

    # -------------------------
    # Verification (read-only)
    # -------------------------

    def _verify(self, snapshot: BackupSnapshot, staging: Path) -> Dict[str, Path]:
        if snapshot.encryption_key_id != self.cipher.key_id:
            raise RestoreVerificationError(
                f"snapshot {snapshot.snapshot_id} was encrypted with key {snapshot.encryption_key_id}, "
                f"configured key is {self.cipher.key_id}"
            )

        plaintexts = {}
        for resource in snapshot.resources:
            if resource.resource_kind not in self.exporters:
                raise RestoreVerificationError(f"{resource.label}: no exporter for this resource kind")

            try:
                ciphertext = self.store.read_resource(snapshot.snapshot_id, resource)
            except FileNotFoundError:
                raise RestoreVerificationError(f"{resource.label}: missing {resource.filename}")

            if sha256_hex(ciphertext) != resource.ciphertext_digest:
                raise RestoreVerificationError(f"{resource.label}: ciphertext digest mismatch")

            try:
                plaintext = self.cipher.decrypt(ciphertext)
            except InvalidToken:
                raise RestoreVerificationError(f"{resource.label}: decryption failed")

            if sha256_hex(plaintext) != resource.content_digest:
                raise RestoreVerificationError(f"{resource.label}: content digest mismatch")

            path = staging / resource.filename.replace(".enc", ".plain")
            path.write_bytes(plaintext)
            plaintexts[resource.label] = path

        logger.info(f"[restore] snapshot {snapshot.snapshot_id} verified ({len(plaintexts)} resource(s))")
        return plaintexts

    # -------------------------
    # Mutation
    # -------------------------

    def _apply(self, snapshot: BackupSnapshot, plaintexts: Dict[str, Path]) -> RestoreResult:
        result = RestoreResult(snapshot_id=snapshot.snapshot_id)
        sequence = restore_sequence(snapshot.resources)

        try:
            self._quiesce(result)
        except CommandError as e:
            result.not_restored = [r.label for r in sequence]
            result.error = f"quiesce: {e}"
            logger.error(
                f"[restore] stopping services failed, nothing restored; "
                f"services left stopped: {result.stopped_units}"
            )
            self.emitter.emit([FleetEvent.restore_completed(result, error=result.error)])
            raise RestoreError(
                f"restore of {snapshot.snapshot_id} aborted while stopping services "
                f"(stopped: {', '.join(result.stopped_units) or 'none'}): {e}",
                not_restored=result.not_restored,
            ) from e

        for index, resource in enumerate(sequence):
            exporter = self.exporters[resource.resource_kind]
            try:
                exporter.restore(resource.logical_name, plaintexts[resource.label])
            except Exception as e:
                result.not_restored = [r.label for r in sequence[index:]]
                result.error = f"{resource.label}: {e}"
                logger.error(
                    f"[restore] {resource.label} failed, stopping. "
                    f"restored={result.restored} not_restored={result.not_restored}; "
                    f"services left stopped: {result.stopped_units}",
                    exc_info=True,
                )
                self.emitter.emit([FleetEvent.restore_completed(result, error=result.error)])
                raise RestoreError(
                    f"restore of {snapshot.snapshot_id} stopped at {resource.label}: {e}",
                    restored=result.restored,
                    not_restored=result.not_restored,
                ) from e

            result.restored.append(resource.label)
            logger.info(f"[restore] restored {resource.label}")

        try:
            self._resume(result, restored_kinds={r.resource_kind for r in sequence})
        except CommandError as e:
            result.error = f"resume: {e}"
            self.emitter.emit([FleetEvent.restore_completed(result, error=result.error)])
            raise RestoreError(
                f"restore of {snapshot.snapshot_id} applied but services did not resume: {e}",
                restored=result.restored,
            ) from e

        self.emitter.emit([FleetEvent.restore_completed(result)])
        logger.info(f"[restore] snapshot {snapshot.snapshot_id} restored")
        return result

    def _quiesce(self, result: RestoreResult) -> None:
        for unit in self.supervisor.list_managed_units():
            self.supervisor.stop(unit)
            result.stopped_units.append(unit)

    def _resume(self, result: RestoreResult, restored_kinds) -> None:
        if "service_config" in restored_kinds:
            self.supervisor.daemon_reload()

        # Restored unit files may differ from the set that was stopped
        for unit in self.supervisor.list_managed_units():
            self.supervisor.start(unit)
            result.resumed_units.append(unit)

        if "router_config" in restored_kinds:
            self.router.test()
            self.router.reload()
