#fleet_engine\infrastructure\config.py

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Host configuration from environment variables (FLEET_*)."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    manifest_path: Path = Path("/etc/fleet/manifest.yaml")

    # Service working trees and rendered units
    services_root: Path = Path("/srv/fleet")
    unit_dir: Path = Path("/etc/systemd/system")
    env_dir: Path = Path("/etc/fleet/env")
    service_user: str = "fleet"

    # Edge router
    nginx_sites_dir: Path = Path("/etc/nginx/conf.d")
    acme_webroot: Path = Path("/var/www/acme")
    letsencrypt_dir: Path = Path("/etc/letsencrypt")

    # Backups
    backup_root: Path = Path("/var/backups/fleet")
    backup_encryption_key: Optional[str] = None
    redis_dump_path: Path = Path("/var/lib/redis/dump.rdb")
    redis_unit: str = "redis-server.service"

    # Locking
    lock_path: Path = Path("/run/lock/fleet.lock")
    lock_timeout_seconds: float = 300.0

    # Reconciliation
    max_workers: int = 2
    fetch_attempts: int = 3
    fetch_backoff_seconds: float = 2.0
    command_timeout_seconds: int = 1800
    health_check_timeout_seconds: float = 5.0
    health_check_retries: int = 5

    # Certificates
    certificate_attempts: int = 3
    certificate_backoff_seconds: float = 30.0
    renewal_interval_seconds: int = 12 * 3600

    # Binaries
    systemctl_bin: str = "systemctl"
    nginx_bin: str = "nginx"
    git_bin: str = "git"
    certbot_bin: str = "certbot"
    pg_dump_bin: str = "pg_dump"
    pg_restore_bin: str = "pg_restore"
    redis_cli_bin: str = "redis-cli"

    log_level: str = "INFO"

    @property
    def snapshot_dir(self) -> Path:
        return self.backup_root / "snapshots"

