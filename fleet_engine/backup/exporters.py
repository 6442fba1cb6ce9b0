# fleet_engine/backup/exporters.py
"""One exporter per resource kind. Exporters write plaintext; the coordinator encrypts."""

import fnmatch
import io
import logging
import os
import tarfile
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from fleet_engine.core.capabilities import CacheAdmin, DatabaseAdmin

logger = logging.getLogger(__name__)


class ResourceExporter(ABC):
    kind: str

    @abstractmethod
    def logical_names(self) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def export(self, logical_name: str, dest: Path) -> None:
        raise NotImplementedError

    @abstractmethod
    def restore(self, logical_name: str, source: Path) -> None:
        raise NotImplementedError


class DatabaseExporter(ResourceExporter):
    kind = "database"

    def __init__(self, admin: DatabaseAdmin, databases: Sequence[str]):
        self.admin = admin
        self.databases = list(databases)

    def logical_names(self) -> List[str]:
        return list(self.databases)

    def export(self, logical_name: str, dest: Path) -> None:
        self.admin.export(logical_name, dest)

    def restore(self, logical_name: str, source: Path) -> None:
        self.admin.restore(logical_name, source)


class CacheExporter(ResourceExporter):
    kind = "cache"

    def __init__(self, admin: CacheAdmin):
        self.admin = admin

    def logical_names(self) -> List[str]:
        return ["redis"]

    def export(self, logical_name: str, dest: Path) -> None:
        self.admin.export(dest)

    def restore(self, logical_name: str, source: Path) -> None:
        self.admin.restore(source)


class DirectoryExporter(ResourceExporter):
    """
    Archives managed files from one or more directories.

    ``sources`` maps an archive label to ``(directory, glob)``. Restoring
    replaces the managed set: files matching the glob that are not in the
    archive are removed.
    """

    def __init__(self, kind: str, logical_name: str, sources: Dict[str, Tuple[Path, str]]):
        self.kind = kind
        self.logical_name = logical_name
        self.sources = {label: (Path(d), pattern) for label, (d, pattern) in sources.items()}

    def logical_names(self) -> List[str]:
        return [self.logical_name]

    def _managed(self, directory: Path, pattern: str) -> List[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file() and fnmatch.fnmatch(p.name, pattern))

    def export(self, logical_name: str, dest: Path) -> None:
        with tarfile.open(dest, "w:gz") as tar:
            for label, (directory, pattern) in sorted(self.sources.items()):
                for path in self._managed(directory, pattern):
                    tar.add(str(path), arcname=f"{label}/{path.name}", recursive=False)

    def restore(self, logical_name: str, source: Path) -> None:
        restored: Dict[str, List[str]] = {label: [] for label in self.sources}

        with tarfile.open(source, "r:gz") as tar:
            for member in tar.getmembers():
                label, name = self._check_member(member)
                directory, _ = self.sources[label]
                data = tar.extractfile(member).read()
                _write_bytes_atomic(directory / name, data, member.mode & 0o777)
                restored[label].append(name)

        for label, (directory, pattern) in self.sources.items():
            for path in self._managed(directory, pattern):
                if path.name not in restored[label]:
                    path.unlink()
                    logger.info(f"[backup] removed {path} (not in snapshot)")

        logger.info(f"[backup] restored {self.kind}: {sum(len(v) for v in restored.values())} file(s)")

    def _check_member(self, member: tarfile.TarInfo) -> Tuple[str, str]:
        parts = member.name.split("/")
        if (
            not member.isfile()
            or len(parts) != 2
            or parts[0] not in self.sources
            or parts[1] in ("", ".", "..")
            or not fnmatch.fnmatch(parts[1], self.sources[parts[0]][1])
        ):
            raise ValueError(f"unexpected archive member {member.name!r}")
        return parts[0], parts[1]


def _write_bytes_atomic(path: Path, data: bytes, mode: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with io.open(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
