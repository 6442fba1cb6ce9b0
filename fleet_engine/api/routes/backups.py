from typing import List

from fastapi import APIRouter, Depends

from fleet_engine.api.container import get_fleet_container
from fleet_engine.api.routes.errors import to_http_error
from fleet_engine.api.schemas.operations import (
    RestoreRequest,
    RestoreResponse,
    SnapshotResponse,
)
from fleet_engine.core.errors import FleetError

router = APIRouter(prefix="/backups", tags=["backups"])


@router.post("", response_model=SnapshotResponse, status_code=201)
def create_backup(container=Depends(get_fleet_container)):
    try:
        manifest = container.load_manifest()
        snapshot = container.backup_coordinator(manifest).create_snapshot(manifest.backup)
    except FleetError as e:
        raise to_http_error(e)

    return SnapshotResponse(**snapshot.to_dict())


@router.get("", response_model=List[SnapshotResponse])
def list_backups(container=Depends(get_fleet_container)):
    return [SnapshotResponse(**s.to_dict()) for s in container.snapshot_store.list()]


@router.post("/{snapshot_id}/restore", response_model=RestoreResponse)
def restore_backup(
    snapshot_id: str,
    request: RestoreRequest,
    container=Depends(get_fleet_container),
):
    try:
        manifest = container.load_manifest()
        result = container.restore_coordinator(manifest).restore(
            snapshot_id, request.confirmation_token
        )
    except FleetError as e:
        raise to_http_error(e)

    return RestoreResponse(**result.to_dict())
