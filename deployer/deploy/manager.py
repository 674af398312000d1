# deployer/deploy/manager.py
import os
import shutil
import socket
import threading
from typing import Any, Dict, Optional

from deployer.core.logging import log
from deployer.core.settings import Settings, load_settings
from deployer.deploy.distributor import StatusDistributor
from deployer.deploy.engine import DeployEngine
from deployer.deploy.errors import ConcurrentDeployRejected, StartFailed
from deployer.deploy.gateway_routes import GatewayRoutes
from deployer.deploy.models import DeploymentConfig, DeploymentCreate, DeploymentStatusRecord, TriggerResult
from deployer.deploy.process_manager import build_process_managers, resolve_process_manager
from deployer.deploy.registry import Registry
from deployer.deploy.shell import CommandRunner
from deployer.deploy.status_store import StatusStore
from deployer.deploy.webhook import WebhookReceiver


class DeploymentManager:
    """Wires the registry, status store, engine and read side around one ``Settings``."""

    def __init__(self, settings: Settings, runner: Optional[CommandRunner] = None):
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.status_store = StatusStore(settings.status_file, settings.lock_dir)
        self.registry = Registry(settings, self.status_store)
        self.managers = build_process_managers(settings, self.runner)
        self.engine = DeployEngine(settings, self.registry, self.status_store, self.managers, self.runner)
        self.gateway = GatewayRoutes(settings, self.runner)
        self.distributor = StatusDistributor(settings, self.registry, self.status_store,
                                             self.engine, self.managers, self.runner)
        self.webhooks = WebhookReceiver(self.registry, self.engine)

    def add_deployment(self, req: DeploymentCreate) -> DeploymentConfig:
        pm_name = resolve_process_manager(self.managers, req.process_manager)
        cfg = self.registry.add(req, pm_name)
        try:
            self.gateway.upsert(cfg.service_name, cfg.port)
        except Exception as e:
            log("deployer", f"Gateway route for {cfg.service_name} not written: {type(e).__name__}: {str(e)[:200]}")
        return cfg

    def remove_deployment(self, service_name: str):
        cfg = self.registry.require(service_name)
        if self.engine.is_deploying(service_name):
            raise ConcurrentDeployRejected(service_name)
        lock = self.engine.service_lock(service_name)
        if not lock.acquire():
            raise ConcurrentDeployRejected(service_name)
        try:
            pm = self.managers[cfg.process_manager]
            pm.remove(service_name)
            log("deployer", f"{pm.label} process for {service_name} removed")
            if os.path.isdir(cfg.deploy_path):
                shutil.rmtree(cfg.deploy_path)
            self.gateway.remove(service_name)
            self.registry.remove(service_name)
        finally:
            lock.release()
        log("deployer", f"Deployment removed: {service_name}")

    def list_deployments(self):
        return self.distributor.list_views()

    def get_deployment(self, service_name: str):
        return self.distributor.get_view(service_name)

    def trigger(self, service_name: str, force: bool = False) -> TriggerResult:
        return self.engine.trigger(service_name, force=force)

    def deploy(self, service_name: str, force: bool = False) -> DeploymentStatusRecord:
        return self.engine.deploy(service_name, force=force)

    def restart(self, service_name: str):
        cfg = self.registry.require(service_name)
        pm = self.managers[cfg.process_manager]
        if not pm.restart(service_name):
            raise StartFailed(pm.label)
        log("deployer", f"Service {service_name} restarted ({pm.label})")

    def webhook_url(self, service_name: str) -> str:
        host = self.settings.public_host or socket.gethostname()
        return f"http://{host}:{self.settings.webhook_port}/webhook/{service_name}"

    def webhook_info(self, service_name: str) -> Dict[str, Any]:
        cfg = self.registry.require(service_name)
        url = self.webhook_url(service_name)
        return {
            "service_name": service_name,
            "payload_url": url,
            "content_type": "application/json",
            "secret": cfg.webhook_secret,
            "events": ["push"],
            "branch": cfg.branch,
            "instructions": [
                "Open the repository settings on GitHub",
                "Navigate to Settings > Webhooks and click 'Add webhook'",
                f"Payload URL: {url}",
                "Content type: application/json",
                "Secret: the value shown above",
                "Events: Just the push event",
                f"Pushes to '{cfg.branch}' will trigger a deployment",
            ],
        }


_manager: Optional[DeploymentManager] = None
_manager_lock = threading.Lock()


def get_manager() -> DeploymentManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = DeploymentManager(load_settings())
        return _manager


def set_manager(manager: Optional[DeploymentManager]):
    global _manager
    with _manager_lock:
        _manager = manager
