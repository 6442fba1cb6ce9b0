from fastapi import APIRouter, Depends

from fleet_engine.allocation.allocator import allocate
from fleet_engine.api.container import get_fleet_container
from fleet_engine.api.routes.errors import to_http_error
from fleet_engine.api.schemas.operations import (
    DeployRequest,
    PlanResponse,
    RunSummaryResponse,
)
from fleet_engine.core.errors import FleetError

router = APIRouter(tags=["operations"])


@router.get("/plan", response_model=PlanResponse)
def get_plan(container=Depends(get_fleet_container)):
    try:
        allocation = allocate(container.load_manifest())
    except FleetError as e:
        raise to_http_error(e)

    return PlanResponse(services=allocation.to_dict())


@router.post("/deploy", response_model=RunSummaryResponse)
def deploy(
    request: DeployRequest,
    container=Depends(get_fleet_container),
):
    try:
        manifest = container.load_manifest()
        summary = container.engine(manifest).deploy(manifest, request.services)
    except FleetError as e:
        raise to_http_error(e)

    return RunSummaryResponse(**summary.to_dict())


@router.post("/route", response_model=RunSummaryResponse)
def route(container=Depends(get_fleet_container)):
    try:
        manifest = container.load_manifest()
        summary = container.engine(manifest).route(manifest)
    except FleetError as e:
        raise to_http_error(e)

    return RunSummaryResponse(**summary.to_dict())
