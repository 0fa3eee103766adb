from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime

class DeployRequest(BaseModel):
    custom_path: Optional[str] = Field(default=None, description="explicit repository path on the host")
    branch: Optional[str] = None

class DeployResponse(BaseModel):
    deploy_id: str
    output: str
    repo_path: str
    detected_path: Optional[str] = None
    log_file: str
    branch: Optional[str] = None
    commit_sha: Optional[str] = None

class ProjectDeployResultRead(BaseModel):
    project_id: str
    project_name: str
    success: bool
    deploy_id: Optional[str] = None
    log_file: Optional[str] = None
    error: Optional[str] = None

class DeployStatusResponse(BaseModel):
    log: str
    is_complete: bool
    status: Optional[str] = None

class DeploymentRead(BaseModel):
    id: str
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    commit_sha: Optional[str] = None
    logs_pointer: Optional[str] = None
    error_message: Optional[str] = None
    triggered_by: str

    model_config = {
        "from_attributes": True
    }

    @classmethod
    def from_orm_safe(cls, deploy):
        service = getattr(deploy, "service", None)
        return cls(
            id=deploy.id,
            service_id=deploy.service_id,
            service_name=service.name if service is not None else None,
            status=deploy.status,
            started_at=deploy.started_at,
            completed_at=deploy.completed_at,
            commit_sha=deploy.commit_sha,
            logs_pointer=deploy.logs_pointer,
            error_message=deploy.error_message,
            triggered_by=deploy.triggered_by,
        )

class DeployStats(BaseModel):
    pending: int = 0
    running: int = 0
    success: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0

class CancelAbandonedRequest(BaseModel):
    older_than_minutes: int = Field(default=60, ge=1)

class BulkResult(BaseModel):
    affected: int

class RefreshResult(BaseModel):
    transitioned: int
