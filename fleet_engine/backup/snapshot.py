# fleet_engine/backup/snapshot.py
"""
Snapshot catalog on local disk.

    <root>/<snapshot_id>/snapshot.json
    <root>/<snapshot_id>/<resource files>.enc

A snapshot is assembled in a hidden staging directory and renamed into the
catalog only after its manifest is written and every file verifies, so a
snapshot is either fully listed or absent.
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fleet_engine.backup.crypto import sha256_hex

logger = logging.getLogger(__name__)

MANIFEST_NAME = "snapshot.json"
STAGING_PREFIX = ".staging-"


@dataclass(frozen=True)
class SnapshotResource:
    resource_kind: str
    logical_name: str
    content_digest: str
    ciphertext_digest: str
    filename: str
    size_bytes: int

    @property
    def label(self) -> str:
        return f"{self.resource_kind}:{self.logical_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_kind": self.resource_kind,
            "logical_name": self.logical_name,
            "content_digest": self.content_digest,
            "ciphertext_digest": self.ciphertext_digest,
            "filename": self.filename,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotResource":
        return cls(
            resource_kind=data["resource_kind"],
            logical_name=data["logical_name"],
            content_digest=data["content_digest"],
            ciphertext_digest=data["ciphertext_digest"],
            filename=data["filename"],
            size_bytes=int(data["size_bytes"]),
        )


@dataclass
class BackupSnapshot:
    snapshot_id: str
    created_at: datetime
    encryption_key_id: str
    resources: List[SnapshotResource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "created_at": self.created_at.isoformat(),
            "encryption_key_id": self.encryption_key_id,
            "resources": [r.to_dict() for r in self.resources],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSnapshot":
        return cls(
            snapshot_id=data["snapshot_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            encryption_key_id=data["encryption_key_id"],
            resources=[SnapshotResource.from_dict(r) for r in data["resources"]],
        )


class SnapshotStore:

    def __init__(self, root: Path):
        self.root = Path(root)

    # -------------------------
    # Writing
    # -------------------------

    def new_snapshot_id(self, now: datetime) -> str:
        base = now.strftime("%Y%m%dT%H%M%SZ")
        candidate, n = base, 1
        while (self.root / candidate).exists():
            candidate = f"{base}-{n}"
            n += 1
        return candidate

    def begin(self, snapshot_id: str) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{snapshot_id}-", dir=str(self.root)))

    def commit(self, staging: Path, snapshot: BackupSnapshot) -> Path:
        """Write the manifest last, verify, then publish atomically."""
        manifest_tmp = staging / f".{MANIFEST_NAME}.tmp"
        manifest_tmp.write_text(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        os.replace(manifest_tmp, staging / MANIFEST_NAME)

        problems = self.verify_directory(staging, snapshot)
        if problems:
            raise ValueError(f"snapshot {snapshot.snapshot_id} failed verification: {'; '.join(problems)}")

        final = self.root / snapshot.snapshot_id
        os.rename(staging, final)
        logger.info(f"[backup] snapshot {snapshot.snapshot_id} committed")
        return final

    def discard(self, staging: Path) -> None:
        shutil.rmtree(staging, ignore_errors=True)

    def remove_stale_staging(self) -> List[str]:
        """Staging directories left behind by an interrupted run."""
        if not self.root.is_dir():
            return []
        removed = []
        for path in self.root.iterdir():
            if path.is_dir() and path.name.startswith(STAGING_PREFIX):
                shutil.rmtree(path, ignore_errors=True)
                removed.append(path.name)
        if removed:
            logger.warning(f"[backup] removed stale staging directories: {removed}")
        return removed

    # -------------------------
    # Reading
    # -------------------------

    def path_for(self, snapshot_id: str) -> Path:
        return self.root / snapshot_id

    def get(self, snapshot_id: str) -> Optional[BackupSnapshot]:
        if snapshot_id.startswith(".") or "/" in snapshot_id:
            return None
        manifest = self.root / snapshot_id / MANIFEST_NAME
        if not manifest.is_file():
            return None
        try:
            return BackupSnapshot.from_dict(json.loads(manifest.read_text(encoding="utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[backup] unreadable manifest for {snapshot_id}: {e}")
            return None

    def list(self) -> List[BackupSnapshot]:
        """Committed snapshots, oldest first."""
        if not self.root.is_dir():
            return []
        snapshots = []
        for path in self.root.iterdir():
            if not path.is_dir() or path.name.startswith("."):
                continue
            snapshot = self.get(path.name)
            if snapshot is not None:
                snapshots.append(snapshot)
        return sorted(snapshots, key=lambda s: (s.created_at, s.snapshot_id))

    def read_resource(self, snapshot_id: str, resource: SnapshotResource) -> bytes:
        return (self.root / snapshot_id / resource.filename).read_bytes()

    # -------------------------
    # Verification
    # -------------------------

    def verify_directory(self, directory: Path, snapshot: BackupSnapshot) -> List[str]:
        problems = []
        for resource in snapshot.resources:
            path = directory / resource.filename
            if not path.is_file():
                problems.append(f"{resource.label}: missing {resource.filename}")
                continue
            if sha256_hex(path.read_bytes()) != resource.ciphertext_digest:
                problems.append(f"{resource.label}: ciphertext digest mismatch")
        return problems

    def verify(self, snapshot_id: str) -> List[str]:
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            return [f"snapshot {snapshot_id} not found"]
        return self.verify_directory(self.root / snapshot_id, snapshot)

    def delete(self, snapshot_id: str) -> None:
        # Drop the manifest first so a partial delete is never listed
        path = self.root / snapshot_id
        (path / MANIFEST_NAME).unlink(missing_ok=True)
        shutil.rmtree(path)
        logger.info(f"[backup] deleted snapshot {snapshot_id}")
