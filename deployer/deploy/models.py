# deployer/deploy/models.py
from typing import Optional, Literal, Dict, Any
from pydantic import AliasChoices, BaseModel, Field

ProcessManagerName = Literal["systemd", "pm2"]
DeployStatus = Literal["configured", "deploying", "running", "failed"]


class DeploymentConfig(BaseModel):
    service_name: str
    source_repo: str = Field(validation_alias=AliasChoices("source_repo", "github_repo"))
    branch: str = "main"
    port: int = Field(ge=1, le=65535)
    build_command: str
    start_command: str
    deploy_path: str
    webhook_secret: str
    auto_deploy: bool = True
    process_manager: ProcessManagerName = "systemd"
    created_at: str

    def public_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["webhook_secret"] = "***"
        return data


class DeploymentCreate(BaseModel):
    service_name: str
    source_repo: str = Field(validation_alias=AliasChoices("source_repo", "github_repo"))
    branch: Optional[str] = None
    port: int = Field(ge=1, le=65535)
    build_command: Optional[str] = None
    start_command: Optional[str] = None
    auto_deploy: bool = True
    process_manager: Optional[ProcessManagerName] = None


class DeploymentStatusRecord(BaseModel):
    status: DeployStatus
    message: str = ""
    last_updated: str
    last_deployment: Optional[str] = None


class DeploymentView(BaseModel):
    config: Dict[str, Any]
    status: str = "unknown"
    message: str = ""
    last_updated: Optional[str] = None
    last_deployment: Optional[str] = None
    system_running: bool = False


class TriggerResult(BaseModel):
    service_name: str
    attempt_id: Optional[str] = None
    queued: bool = False
