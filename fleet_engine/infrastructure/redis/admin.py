# fleet_engine/infrastructure/redis/admin.py
"""Redis snapshot export and restore."""

import logging
import os
import shutil
from pathlib import Path

from fleet_engine.core.capabilities import CacheAdmin, Supervisor
from fleet_engine.infrastructure.shell import CommandRunner, run_command
from fleet_engine.manifest.schema import CacheSettings

logger = logging.getLogger(__name__)


class RedisAdmin(CacheAdmin):
    """
    Export pulls an RDB over the replication protocol, which is a consistent
    point-in-time image. Restore swaps the dump file while the server is down.
    """

    def __init__(
        self,
        settings: CacheSettings,
        supervisor: Supervisor,
        dump_path: Path,
        unit: str = "redis-server.service",
        redis_cli_bin: str = "redis-cli",
        runner: CommandRunner = run_command,
        timeout: int = 1800,
    ):
        self.settings = settings
        self.supervisor = supervisor
        self.dump_path = Path(dump_path)
        self.unit = unit
        self.redis_cli_bin = redis_cli_bin
        self._run = runner
        self.timeout = timeout

    def _env(self) -> dict:
        # REDISCLI_AUTH keeps the password off the command line
        return {"REDISCLI_AUTH": self.settings.password} if self.settings.password else {}

    def export(self, dest: Path) -> None:
        self._run(
            [
                self.redis_cli_bin,
                "-h", self.settings.host,
                "-p", str(self.settings.port),
                "--rdb", str(dest),
            ],
            env=self._env(),
            timeout=self.timeout,
        )
        logger.info("[redis] exported RDB snapshot")

    def restore(self, source: Path) -> None:
        self.supervisor.stop(self.unit)

        tmp = self.dump_path.with_name(f".{self.dump_path.name}.restore")
        shutil.copyfile(source, tmp)
        stat = self.dump_path.stat() if self.dump_path.exists() else None
        if stat is not None:
            os.chown(tmp, stat.st_uid, stat.st_gid)
            os.chmod(tmp, stat.st_mode & 0o777)
        os.replace(tmp, self.dump_path)

        self.supervisor.start(self.unit)
        logger.info("[redis] restored RDB snapshot")
