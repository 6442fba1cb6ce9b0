#fleet_engine\infrastructure\postgres\admin.py

"""PostgreSQL administration: database creation, dump and restore."""

import logging
import re
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import ProgrammingError

from fleet_engine.core.capabilities import DatabaseAdmin
from fleet_engine.core.errors import CommandError
from fleet_engine.infrastructure.shell import CommandRunner, run_command
from fleet_engine.manifest.schema import DatabaseSettings

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


# ============================================
# Engine configuration
# ============================================
def create_admin_engine(settings: DatabaseSettings, database: str = "postgres") -> Engine:
    """Engine for server-level statements. CREATE DATABASE needs autocommit."""
    url = URL.create(
        "postgresql+psycopg2",
        username=settings.admin_user,
        password=settings.admin_password,
        host=settings.host,
        port=settings.port,
        database=database,
    )
    return create_engine(
        url,
        isolation_level="AUTOCOMMIT",
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=2,
    )


class PostgresAdmin(DatabaseAdmin):

    def __init__(
        self,
        settings: DatabaseSettings,
        pg_dump_bin: str = "pg_dump",
        pg_restore_bin: str = "pg_restore",
        runner: CommandRunner = run_command,
        engine: Optional[Engine] = None,
        timeout: int = 3600,
    ):
        self.settings = settings
        self.pg_dump_bin = pg_dump_bin
        self.pg_restore_bin = pg_restore_bin
        self._run = runner
        self._engine = engine
        self.timeout = timeout

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_admin_engine(self.settings)
        return self._engine

    # ============================================
    # Provisioning
    # ============================================
    def database_exists(self, name: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": name},
            ).first()
        return row is not None

    def create_database_if_absent(self, name: str) -> bool:
        if not _IDENTIFIER.match(name):
            raise ValueError(f"invalid database name {name!r}")

        if self.database_exists(name):
            logger.debug(f"[postgres] database {name} already exists")
            return False

        try:
            with self.engine.connect() as conn:
                conn.execute(text(f'CREATE DATABASE "{name}"'))
        except ProgrammingError as e:
            # Lost a race with another creator
            if "already exists" in str(e.orig):
                return False
            raise

        logger.info(f"[postgres] created database {name}")
        return True

    # ============================================
    # Dump / restore
    # ============================================
    def _connection_args(self, name: str) -> list:
        s = self.settings
        return ["-h", s.host, "-p", str(s.port), "-U", s.admin_user or "postgres", "-d", name]

    def _env(self) -> dict:
        return {"PGPASSWORD": self.settings.admin_password or ""}

    def export(self, name: str, dest: Path) -> None:
        # pg_dump runs in a single repeatable-read snapshot
        self._run(
            [self.pg_dump_bin, *self._connection_args(name), "--format=custom", "--no-owner", "-f", str(dest)],
            env=self._env(),
            timeout=self.timeout,
        )
        logger.info(f"[postgres] exported {name}")

    def restore(self, name: str, source: Path) -> None:
        self.create_database_if_absent(name)
        try:
            self._run(
                [
                    self.pg_restore_bin,
                    *self._connection_args(name),
                    "--clean",
                    "--if-exists",
                    "--no-owner",
                    "--single-transaction",
                    str(source),
                ],
                env=self._env(),
                timeout=self.timeout,
            )
        except CommandError:
            logger.error(f"[postgres] restore of {name} failed")
            raise
        logger.info(f"[postgres] restored {name}")
