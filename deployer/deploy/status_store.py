# deployer/deploy/status_store.py
import os
from datetime import datetime
from typing import Dict, Optional

from deployer.core.json_store import read_json, write_json
from deployer.core.locks import file_lock
from deployer.deploy.models import DeploymentStatusRecord


def now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


class StatusStore:
    """Shared ``{"deployments": {name: record}}`` document.

    Every mutation is a locked read-modify-write followed by an atomic replace,
    so the dashboard, the webhook server and the CLI can share one file.
    """

    def __init__(self, path: str, lock_dir: str):
        self.path = path
        self._lock_path = os.path.join(lock_dir, "deployment-status.lock")

    def _load(self) -> Dict:
        data = read_json(self.path) or {}
        if not isinstance(data.get("deployments"), dict):
            data["deployments"] = {}
        return data

    def get(self, service_name: str) -> Optional[DeploymentStatusRecord]:
        rec = self._load()["deployments"].get(service_name)
        return DeploymentStatusRecord(**rec) if rec else None

    def all(self) -> Dict[str, DeploymentStatusRecord]:
        return {k: DeploymentStatusRecord(**v) for k, v in self._load()["deployments"].items()}

    def transition(self, service_name: str, status: str, message: str) -> DeploymentStatusRecord:
        ts = now_iso()
        with file_lock(self._lock_path):
            data = self._load()
            prev = data["deployments"].get(service_name) or {}
            rec = DeploymentStatusRecord(
                status=status,
                message=message,
                last_updated=ts,
                last_deployment=ts if status == "running" else prev.get("last_deployment"),
            )
            data["deployments"][service_name] = rec.model_dump()
            write_json(self.path, data)
        return rec

    def delete(self, service_name: str) -> bool:
        with file_lock(self._lock_path):
            data = self._load()
            if service_name not in data["deployments"]:
                return False
            del data["deployments"][service_name]
            write_json(self.path, data)
        return True
