from fastapi import HTTPException

from fleet_engine.core.errors import (
    BackupError,
    ConflictError,
    FleetError,
    LockTimeoutError,
    RestoreVerificationError,
    SnapshotNotFound,
    ValidationError,
)

_STATUS = [
    (ValidationError, 422),
    (ConflictError, 409),
    (LockTimeoutError, 423),
    (SnapshotNotFound, 404),
    (RestoreVerificationError, 422),
    (BackupError, 500),
]


def to_http_error(error: FleetError) -> HTTPException:
    for error_type, status_code in _STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.to_dict())
    return HTTPException(status_code=409, detail=error.to_dict())
