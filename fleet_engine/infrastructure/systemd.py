# fleet_engine/infrastructure/systemd.py
"""systemd supervisor adapter."""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from fleet_engine.core.capabilities import Supervisor
from fleet_engine.infrastructure.shell import CommandRunner, run_command
from fleet_engine.reconciler.units import UNIT_PREFIX

logger = logging.getLogger(__name__)


def write_file_atomic(path: Path, content: str, mode: int = 0o644) -> None:
    """Write via a temp file in the same directory and rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_file(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


class SystemdSupervisor(Supervisor):

    def __init__(
        self,
        unit_dir: Path,
        env_dir: Path,
        systemctl_bin: str = "systemctl",
        runner: CommandRunner = run_command,
    ):
        self.unit_dir = Path(unit_dir)
        self.env_dir = Path(env_dir)
        self.systemctl_bin = systemctl_bin
        self._run = runner

    # -------------------------
    # Files
    # -------------------------

    def read_unit(self, unit: str) -> Optional[str]:
        return read_file(self.unit_dir / unit)

    def write_unit(self, unit: str, content: str) -> None:
        write_file_atomic(self.unit_dir / unit, content)
        logger.info(f"[systemd] wrote {unit}")

    def environment_path(self, service: str) -> Path:
        return self.env_dir / f"{service}.env"

    def read_environment(self, service: str) -> Optional[str]:
        return read_file(self.environment_path(service))

    def write_environment(self, service: str, content: str) -> None:
        # Holds credentials
        write_file_atomic(self.environment_path(service), content, mode=0o600)
        logger.info(f"[systemd] wrote environment for {service}")

    def list_managed_units(self) -> List[str]:
        if not self.unit_dir.is_dir():
            return []
        return sorted(p.name for p in self.unit_dir.glob(f"{UNIT_PREFIX}*.service"))

    # -------------------------
    # Lifecycle
    # -------------------------

    def _systemctl(self, *args: str, check: bool = True):
        return self._run([self.systemctl_bin, *args], check=check)

    def daemon_reload(self) -> None:
        self._systemctl("daemon-reload")

    def is_active(self, unit: str) -> bool:
        result = self._systemctl("is-active", "--quiet", unit, check=False)
        return result.returncode == 0

    def enable(self, unit: str) -> None:
        self._systemctl("enable", unit)

    def restart(self, unit: str) -> None:
        logger.info(f"[systemd] restarting {unit}")
        self._systemctl("restart", unit)

    def start(self, unit: str) -> None:
        self._systemctl("start", unit)

    def stop(self, unit: str) -> None:
        logger.info(f"[systemd] stopping {unit}")
        self._systemctl("stop", unit)
