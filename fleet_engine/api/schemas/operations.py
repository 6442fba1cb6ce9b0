from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class DeployRequest(BaseModel):
    services: Optional[List[str]] = None


class AllocationEntry(BaseModel):
    backend_port: int
    frontend_port: Optional[int] = None
    database_name: Optional[str] = None


class PlanResponse(BaseModel):
    services: Dict[str, AllocationEntry]


class RunSummaryResponse(BaseModel):
    operation: str
    services: Dict[str, Dict[str, Any]]
    failed_services: List[str]
    routing: Optional[Dict[str, Any]] = None
    routing_error: Optional[str] = None
    certificate_errors: List[str]
    cancelled: bool
    exit_code: int


class RestoreRequest(BaseModel):
    confirmation_token: str


class SnapshotResourceResponse(BaseModel):
    resource_kind: str
    logical_name: str
    content_digest: str
    ciphertext_digest: str
    filename: str
    size_bytes: int


class SnapshotResponse(BaseModel):
    snapshot_id: str
    created_at: datetime
    encryption_key_id: str
    resources: List[SnapshotResourceResponse]


class RestoreResponse(BaseModel):
    snapshot_id: str
    restored: List[str]
    not_restored: List[str]
    stopped_units: List[str]
    resumed_units: List[str]
    error: Optional[str] = None
