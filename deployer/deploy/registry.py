# deployer/deploy/registry.py
import os
import re
import secrets
from typing import List, Optional

from deployer.core.json_store import read_json, write_json, remove_file
from deployer.core.locks import file_lock
from deployer.core.logging import log
from deployer.core.secret_store import encrypt_value, decrypt_value, delete_key
from deployer.core.settings import Settings
from deployer.deploy.errors import AlreadyExists, ConfigNotFound, InvalidConfig, InvalidServiceName
from deployer.deploy.models import DeploymentConfig, DeploymentCreate
from deployer.deploy.status_store import StatusStore, now_iso

SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
_HTTPS_RE = re.compile(r"^https://github\.com/[^/\s]+/[^/\s]+/?$")
_SSH_RE = re.compile(r"^git@github\.com:([^/\s]+/[^/\s]+?)\.git$")
_SHORT_RE = re.compile(r"^[^/\s:]+/[^/\s:]+$")


def is_valid_service_name(name: str) -> bool:
    return bool(name) and bool(SERVICE_NAME_RE.match(name)) and name not in (".", "..")


def normalize_repo(repo: str) -> str:
    repo = (repo or "").strip()
    if _HTTPS_RE.match(repo):
        return repo.rstrip("/")
    m = _SSH_RE.match(repo)
    if m:
        return f"https://github.com/{m.group(1)}"
    if _SHORT_RE.match(repo):
        return f"https://github.com/{repo}"
    raise InvalidConfig(f"Invalid GitHub repository: {repo}")


def generate_secret() -> str:
    return secrets.token_hex(32)


class Registry:
    def __init__(self, settings: Settings, status_store: StatusStore):
        self.settings = settings
        self.status_store = status_store
        self._lock_path = os.path.join(settings.lock_dir, "registry.lock")

    def _path(self, service_name: str) -> str:
        return os.path.join(self.settings.config_dir, f"{service_name}.json")

    def _save(self, cfg: DeploymentConfig):
        data = cfg.model_dump()
        if self.settings.encrypt_secrets:
            data["webhook_secret"] = encrypt_value(self.settings.keys_dir, cfg.service_name, cfg.webhook_secret)
        write_json(self._path(cfg.service_name), data)

    def _load(self, path: str) -> Optional[DeploymentConfig]:
        data = read_json(path)
        if not data:
            return None
        name = data.get("service_name") or os.path.basename(path)[:-5]
        data["webhook_secret"] = decrypt_value(self.settings.keys_dir, name, data.get("webhook_secret", ""))
        data.setdefault("deploy_path", self.settings.deploy_path(name))
        return DeploymentConfig(**data)

    def add(self, req: DeploymentCreate, process_manager: str) -> DeploymentConfig:
        name = req.service_name.strip()
        if not is_valid_service_name(name):
            raise InvalidServiceName(req.service_name)
        cfg = DeploymentConfig(
            service_name=name,
            source_repo=normalize_repo(req.source_repo),
            branch=(req.branch or self.settings.default_branch).strip(),
            port=req.port,
            build_command=req.build_command or self.settings.default_build_command,
            start_command=req.start_command or self.settings.default_start_command,
            deploy_path=self.settings.deploy_path(name),
            webhook_secret=generate_secret(),
            auto_deploy=req.auto_deploy,
            process_manager=process_manager,
            created_at=now_iso(),
        )
        with file_lock(self._lock_path):
            if os.path.exists(self._path(name)):
                raise AlreadyExists(name)
            self._save(cfg)
        self.status_store.transition(name, "configured", "Deployment configuration created")
        log("deployer", f"Deployment configuration created for {name} ({cfg.process_manager})")
        return cfg

    def get(self, service_name: str) -> Optional[DeploymentConfig]:
        if not is_valid_service_name(service_name):
            return None
        return self._load(self._path(service_name))

    def require(self, service_name: str) -> DeploymentConfig:
        cfg = self.get(service_name)
        if cfg is None:
            raise ConfigNotFound(service_name)
        return cfg

    def list(self) -> List[DeploymentConfig]:
        if not os.path.isdir(self.settings.config_dir):
            return []
        res = []
        for name in sorted(os.listdir(self.settings.config_dir)):
            if not name.endswith(".json"):
                continue
            try:
                cfg = self._load(os.path.join(self.settings.config_dir, name))
            except Exception as e:
                log("deployer", f"Skipping unreadable config {name}: {type(e).__name__}: {str(e)[:200]}")
                continue
            if cfg:
                res.append(cfg)
        return res

    def remove(self, service_name: str):
        if not is_valid_service_name(service_name):
            raise ConfigNotFound(service_name)
        with file_lock(self._lock_path):
            if not remove_file(self._path(service_name)):
                raise ConfigNotFound(service_name)
            delete_key(self.settings.keys_dir, service_name)
        self.status_store.delete(service_name)
        log("deployer", f"Deployment configuration removed for {service_name}")
