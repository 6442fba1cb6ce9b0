# fleet_engine/routing/certificates.py
"""Certificate inspection and issue/renew decisions."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from cryptography import x509

from fleet_engine.core.capabilities import CertificateAuthority
from fleet_engine.core.errors import CertificateError
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.retry import retry_call

logger = logging.getLogger(__name__)


class CertificateStatus(Enum):
    ABSENT = "absent"
    PENDING = "pending"
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"


@dataclass
class CertificateRecord:
    hostname: str
    status: CertificateStatus = CertificateStatus.ABSENT
    certificate_path: Optional[Path] = None
    key_path: Optional[Path] = None
    not_after: Optional[datetime] = None
    identifier: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def usable(self) -> bool:
        """An expiring certificate still serves until it has actually expired."""
        return self.status in (CertificateStatus.VALID, CertificateStatus.EXPIRING)

    def to_dict(self) -> dict:
        return {
            "hostname": self.hostname,
            "status": self.status.value,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "identifier": self.identifier,
            "last_error": self.last_error,
        }


def classify(not_after: Optional[datetime], now: datetime, renew_before: timedelta) -> CertificateStatus:
    if not_after is None:
        return CertificateStatus.ABSENT
    if not_after <= now:
        return CertificateStatus.EXPIRED
    if not_after - now <= renew_before:
        return CertificateStatus.EXPIRING
    return CertificateStatus.VALID


# ============================================
# Store
# ============================================

class CertificateStore:
    """Reads issued certificates from the ``live/<hostname>`` layout."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def paths(self, hostname: str):
        live = self.root / "live" / hostname
        return live / "fullchain.pem", live / "privkey.pem"

    def inspect(self, hostname: str, now: datetime, renew_before: timedelta) -> CertificateRecord:
        cert_path, key_path = self.paths(hostname)
        if not cert_path.is_file() or not key_path.is_file():
            return CertificateRecord(hostname=hostname)

        try:
            cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        except ValueError as e:
            logger.warning(f"[certificates] unreadable certificate for {hostname}: {e}")
            return CertificateRecord(hostname=hostname, last_error=f"unreadable certificate: {e}")

        not_after = cert.not_valid_after_utc
        return CertificateRecord(
            hostname=hostname,
            status=classify(not_after, now, renew_before),
            certificate_path=cert_path,
            key_path=key_path,
            not_after=not_after,
            identifier=format(cert.serial_number, "x"),
        )


# ============================================
# Manager
# ============================================

class CertificateManager:
    """
    Issues, renews or reuses certificates.

    Failures never propagate: they are retried with backoff when transient,
    then recorded on the returned record so routing can apply its fallback.
    """

    def __init__(
        self,
        authority: CertificateAuthority,
        store: CertificateStore,
        *,
        renew_before_days: int = 30,
        attempts: int = 3,
        backoff_seconds: float = 30.0,
        emitter: EventEmitter = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.authority = authority
        self.store = store
        self.renew_before = timedelta(days=renew_before_days)
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.emitter = emitter or NullEventEmitter()
        self._clock = clock
        self._sleep = sleep

    def inspect(self, hostname: str) -> CertificateRecord:
        return self.store.inspect(hostname, self._clock(), self.renew_before)

    def ensure(self, hostname: str, current: Optional[CertificateRecord] = None) -> CertificateRecord:
        record = current or self.inspect(hostname)

        if record.status == CertificateStatus.VALID:
            return record

        renew = record.status in (CertificateStatus.EXPIRING, CertificateStatus.EXPIRED)
        previous = record.status
        record.status = CertificateStatus.PENDING

        try:
            retry_call(
                lambda: self.authority.issue(hostname, renew=renew),
                attempts=self.attempts,
                base_delay=self.backoff_seconds,
                retry_on=(CertificateError,),
                is_transient=lambda e: getattr(e, "retryable", False),
                sleep=self._sleep,
                label=f"certificate {hostname}",
            )
        except CertificateError as e:
            record.status = previous
            logger.warning(f"[certificates] {hostname}: {e.message} (status stays {record.status.value})")
            record.last_error = e.message
            self.emitter.emit([FleetEvent.certificate_failed(hostname, e.message)])
            return record

        issued = self.inspect(hostname)
        if not issued.usable:
            issued.last_error = "authority reported success but no usable certificate was found"
            self.emitter.emit([FleetEvent.certificate_failed(hostname, issued.last_error)])
            return issued

        logger.info(f"[certificates] {hostname}: {'renewed' if renew else 'issued'} (until {issued.not_after})")
        self.emitter.emit([FleetEvent.certificate_issued(issued)])
        return issued
