# fleet_engine/core/errors.py

from typing import List, Optional, Sequence


# -----------------------------
# Exit codes (one per failure class)
# -----------------------------

EXIT_OK = 0
EXIT_VALIDATION = 2
EXIT_CONFLICT = 3
EXIT_SERVICE = 4
EXIT_ROUTING = 5
EXIT_LOCK_TIMEOUT = 6
EXIT_RESTORE_VERIFICATION = 7
EXIT_BACKUP = 8
EXIT_RESTORE = 9


# -----------------------------
# Base Errors
# -----------------------------

class FleetError(Exception):
    """Base class for all fleet engine errors."""
    exit_code = 1

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": str(self)}


# -----------------------------
# Manifest / Allocation Errors
# -----------------------------

class ValidationError(FleetError):
    """Malformed manifest. Raised before any mutation."""
    exit_code = EXIT_VALIDATION

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"error": "validation", "field": self.field, "message": self.message}


class ConflictError(FleetError):
    """Two services claim the same port or database name."""
    exit_code = EXIT_CONFLICT

    def __init__(self, kind: str, names: Sequence[str], value=None):
        self.kind = kind
        self.names = list(names)
        self.value = value
        super().__init__(
            f"{kind} conflict between {', '.join(self.names)}"
            + (f" on {value}" if value is not None else "")
        )

    def to_dict(self) -> dict:
        return {"error": "conflict", "kind": self.kind, "names": self.names, "value": self.value}


# -----------------------------
# Reconciliation Errors
# -----------------------------

class InvalidStateTransition(FleetError):
    """Illegal service state transition attempted."""
    pass


class CommandError(FleetError):
    """External command exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.args_list = [str(a) for a in args]
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        self.stdout = (stdout or "").strip()
        detail = self.stderr or self.stdout
        super().__init__(
            f"command={' '.join(self.args_list)} rc={returncode}" + (f" stderr={detail}" if detail else "")
        )


class FetchError(FleetError):
    """Source retrieval failed (unreachable remote, auth failure)."""
    pass


class PerServiceError(FleetError):
    """Fetch/build/migrate/unit failure isolated to one service."""
    exit_code = EXIT_SERVICE

    def __init__(self, service: str, phase: str, message: str):
        super().__init__(f"[{service}] {phase} failed: {message}")
        self.service = service
        self.phase = phase
        self.message = message


# -----------------------------
# Routing Errors
# -----------------------------

class CertificateError(FleetError):
    """Issuance or renewal failed for a hostname. Never fatal to a run."""

    def __init__(self, hostname: str, message: str, retryable: bool = True):
        super().__init__(f"{hostname}: {message}")
        self.hostname = hostname
        self.message = message
        self.retryable = retryable


class RoutingError(FleetError):
    """Routing step failed; the last-good routing files stay active."""
    exit_code = EXIT_ROUTING


# -----------------------------
# Backup / Restore Errors
# -----------------------------

class BackupError(FleetError):
    exit_code = EXIT_BACKUP


class RestoreError(FleetError):
    exit_code = EXIT_RESTORE

    def __init__(
        self,
        message: str,
        restored: Optional[List[str]] = None,
        not_restored: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.restored = list(restored or [])
        self.not_restored = list(not_restored or [])

    def to_dict(self) -> dict:
        return {
            "error": "restore",
            "message": str(self),
            "restored": self.restored,
            "not_restored": self.not_restored,
        }


class RestoreVerificationError(RestoreError):
    """Snapshot failed digest or decryption checks. Nothing was mutated."""
    exit_code = EXIT_RESTORE_VERIFICATION


class SnapshotNotFound(RestoreError):
    exit_code = EXIT_RESTORE_VERIFICATION


# -----------------------------
# Locking Errors
# -----------------------------

class LockTimeoutError(FleetError):
    """Host lock not acquired in time. No mutation attempted."""
    exit_code = EXIT_LOCK_TIMEOUT
