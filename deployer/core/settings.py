# deployer/core/settings.py
import os
import json
from typing import List, Optional
from pydantic import BaseModel, Field

DEFAULT_CONFIG_FILE = "/etc/api-gateway/deployer.json"


class Settings(BaseModel):
    config_dir: str = "/etc/api-gateway/deployments"
    state_dir: str = "/var/lib/api-gateway"
    log_dir: str = "/var/log/api-gateway"
    deploy_root: str = "/opt/deployments"
    apis_config: str = "/etc/api-gateway/apis.json"
    keys_dir: str = "/etc/api-gateway/keys"
    systemd_unit_dir: str = "/etc/systemd/system"
    service_user: str = "www-data"
    route_generators: List[str] = Field(default_factory=lambda: [
        "/usr/local/bin/generate-nginx-config",
        "/usr/local/bin/generate-fluentbit-config",
    ])

    default_branch: str = "main"
    default_build_command: str = "npm install && npm run build"
    default_start_command: str = "npm start"

    settle_seconds: float = 2.0
    snapshot_interval_seconds: int = 5
    log_tail_lines: int = 100
    supervisor_log_lines: int = 50
    log_wait_seconds: int = 30

    queue_followup: bool = True
    encrypt_secrets: bool = True

    webhook_port: int = 9876
    dashboard_port: int = 8080
    public_host: Optional[str] = None

    @property
    def status_file(self) -> str:
        return os.path.join(self.state_dir, "deployment-status.json")

    @property
    def lock_dir(self) -> str:
        return os.path.join(self.state_dir, "locks")

    @property
    def deploy_log_dir(self) -> str:
        return os.path.join(self.log_dir, "deployments")

    @property
    def service_log_dir(self) -> str:
        return os.path.join(self.log_dir, "services")

    def deploy_path(self, service_name: str) -> str:
        return os.path.join(self.deploy_root, service_name)

    def ensure_dirs(self):
        for d in (self.config_dir, self.state_dir, self.lock_dir, self.deploy_log_dir,
                  self.service_log_dir, self.deploy_root, self.keys_dir):
            os.makedirs(d, exist_ok=True)


def load_settings(path: Optional[str] = None) -> Settings:
    path = path or os.environ.get("DEPLOYER_CONFIG") or DEFAULT_CONFIG_FILE
    if not os.path.exists(path):
        return Settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return Settings(**data)
    except Exception as e:
        # imported lazily, logging depends on settings for its directory
        from deployer.core.logging import log
        log("startup", f"Invalid settings file {path}: {type(e).__name__}: {str(e)[:200]}")
        return Settings()
