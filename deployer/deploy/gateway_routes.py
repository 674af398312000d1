# deployer/deploy/gateway_routes.py
import os
from typing import Dict, List

from deployer.core.json_store import read_json, write_json
from deployer.core.locks import file_lock
from deployer.core.logging import log
from deployer.core.settings import Settings
from deployer.deploy.shell import CommandRunner


class GatewayRoutes:
    """Keeps the shared ``apis.json`` route list in step with deployments."""

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner
        self._lock_path = os.path.join(settings.lock_dir, "apis.lock")

    def _apis(self, data: Dict) -> List[Dict]:
        apis = data.get("apis")
        if not isinstance(apis, list):
            apis = []
            data["apis"] = apis
        return apis

    def upsert(self, service_name: str, port: int) -> bool:
        path = self.settings.apis_config
        if not os.path.exists(path):
            log("deployer", f"{path} not found; expose {service_name} manually (port {port})")
            return False
        with file_lock(self._lock_path):
            data = read_json(path) or {}
            apis = self._apis(data)
            for api in apis:
                if api.get("name") == service_name:
                    api["port"] = port
                    log("deployer", f"Gateway route already exists for {service_name} (port set to {port})")
                    break
            else:
                apis.append({
                    "name": service_name,
                    "path": f"/{service_name}",
                    "port": port,
                    "description": "Deployed from GitHub",
                    "enabled": True,
                })
                log("deployer", f"Gateway route added: /{service_name}/ -> localhost:{port}")
            write_json(path, data)
        self.regenerate()
        return True

    def remove(self, service_name: str) -> bool:
        path = self.settings.apis_config
        if not os.path.exists(path):
            return False
        with file_lock(self._lock_path):
            data = read_json(path) or {}
            apis = self._apis(data)
            kept = [a for a in apis if a.get("name") != service_name]
            if len(kept) == len(apis):
                return False
            data["apis"] = kept
            write_json(path, data)
        log("deployer", f"Gateway route removed for {service_name}")
        self.regenerate()
        return True

    def regenerate(self):
        for gen in self.settings.route_generators:
            if not (os.path.isfile(gen) and os.access(gen, os.X_OK)):
                continue
            res = self.runner.run([gen])
            if not res.ok:
                log("deployer", f"{gen} exited with {res.returncode}: {res.output.strip()[:200]}")
