# deployer/deploy/process_manager.py
import os
import json
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, TextIO

from deployer.core.settings import Settings
from deployer.deploy.errors import SupervisorUnavailable
from deployer.deploy.shell import CommandRunner


def runtime_env(port: int) -> Dict[str, str]:
    return {"PORT": str(port), "NODE_ENV": "production"}


class ProcessManager(ABC):
    name = ""
    label = ""
    # systemd units are stopped before the unit file is rewritten; pm2 restarts in place
    stop_before_start = False

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner

    @abstractmethod
    def ensure_stopped(self, service: str, sink: Optional[TextIO] = None) -> None:
        pass

    @abstractmethod
    def start_or_restart(self, service: str, working_dir: str, start_command: str, port: int,
                         sink: Optional[TextIO] = None) -> bool:
        pass

    @abstractmethod
    def is_running(self, service: str) -> bool:
        pass

    @abstractmethod
    def remove(self, service: str) -> None:
        pass

    @abstractmethod
    def restart(self, service: str) -> bool:
        pass

    @abstractmethod
    def log_command(self, service: str, lines: int, follow: bool) -> List[str]:
        pass

    def is_available(self) -> bool:
        return self.runner.which(self.binary) is not None

    @property
    @abstractmethod
    def binary(self) -> str:
        pass


def _systemd_quote(command: str) -> str:
    escaped = (
        command.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("%", "%%")
        .replace("$", "$$")
    )
    return f'"{escaped}"'


class SystemdManager(ProcessManager):
    name = "systemd"
    label = "systemd"
    stop_before_start = True

    @property
    def binary(self) -> str:
        return "systemctl"

    def unit_path(self, service: str) -> str:
        return os.path.join(self.settings.systemd_unit_dir, f"{service}.service")

    def render_unit(self, service: str, working_dir: str, start_command: str, port: int) -> str:
        log_dir = self.settings.service_log_dir
        env_lines = "".join(f"Environment={k}={v}\n" for k, v in runtime_env(port).items())
        return f"""[Unit]
Description={service} API Service
After=network.target

[Service]
Type=simple
User={self.settings.service_user}
WorkingDirectory={working_dir}
ExecStart=/bin/bash -c {_systemd_quote(start_command)}
Restart=always
RestartSec=10
{env_lines}
# Logging
StandardOutput=append:{log_dir}/{service}.log
StandardError=append:{log_dir}/{service}.error.log

# Security
NoNewPrivileges=true
ProtectSystem=strict
ProtectHome=true
ReadWritePaths={working_dir} /tmp {self.settings.log_dir}

[Install]
WantedBy=multi-user.target
"""

    def ensure_stopped(self, service: str, sink: Optional[TextIO] = None) -> None:
        if self.is_running(service):
            if sink is not None:
                sink.write("Stopping existing service...\n")
            self.runner.run(["systemctl", "stop", service], sink=sink)

    def start_or_restart(self, service: str, working_dir: str, start_command: str, port: int,
                         sink: Optional[TextIO] = None) -> bool:
        os.makedirs(self.settings.service_log_dir, exist_ok=True)
        os.makedirs(self.settings.systemd_unit_dir, exist_ok=True)
        with open(self.unit_path(service), "w", encoding="utf-8") as f:
            f.write(self.render_unit(service, working_dir, start_command, port))
        if sink is not None:
            sink.write("Starting service...\n")
        for args in (["systemctl", "daemon-reload"],
                     ["systemctl", "enable", service],
                     ["systemctl", "restart", service]):
            res = self.runner.run(args, sink=sink)
            if not res.ok:
                return False
        return True

    def is_running(self, service: str) -> bool:
        return self.runner.run(["systemctl", "is-active", "--quiet", service]).ok

    def remove(self, service: str) -> None:
        if self.is_running(service):
            self.runner.run(["systemctl", "stop", service])
        if self.runner.run(["systemctl", "is-enabled", "--quiet", service]).ok:
            self.runner.run(["systemctl", "disable", service])
        unit = self.unit_path(service)
        if os.path.exists(unit):
            os.remove(unit)
            self.runner.run(["systemctl", "daemon-reload"])

    def restart(self, service: str) -> bool:
        return self.runner.run(["systemctl", "restart", service]).ok

    def log_command(self, service: str, lines: int, follow: bool) -> List[str]:
        if follow:
            return ["journalctl", "-u", service, "-f", "-n", str(lines)]
        return ["journalctl", "-u", service, "--no-pager", "-n", str(lines)]


class Pm2Manager(ProcessManager):
    name = "pm2"
    label = "PM2"

    @property
    def binary(self) -> str:
        return "pm2"

    def _known(self, service: str) -> bool:
        return self.runner.run(["pm2", "describe", service]).ok

    def _save(self, sink: Optional[TextIO] = None):
        self.runner.run(["pm2", "save"], sink=sink)

    def ensure_stopped(self, service: str, sink: Optional[TextIO] = None) -> None:
        if self.is_running(service):
            self.runner.run(["pm2", "stop", service], sink=sink)
            self._save(sink)

    def start_or_restart(self, service: str, working_dir: str, start_command: str, port: int,
                         sink: Optional[TextIO] = None) -> bool:
        if sink is not None:
            sink.write("Starting service with PM2...\n")
        env = runtime_env(port)
        if self._known(service):
            res = self.runner.run(["pm2", "restart", service, "--update-env"], cwd=working_dir, env=env, sink=sink)
        else:
            res = self.runner.run(
                ["pm2", "start", "/bin/bash", "--name", service, "--cwd", working_dir, "--", "-c", start_command],
                cwd=working_dir,
                env=env,
                sink=sink,
            )
        self._save(sink)
        return res.ok

    def is_running(self, service: str) -> bool:
        res = self.runner.run(["pm2", "jlist"])
        if not res.ok:
            return False
        try:
            procs = json.loads(res.output.strip() or "[]")
        except ValueError:
            return False
        for p in procs:
            if p.get("name") == service and (p.get("pm2_env") or {}).get("status") == "online":
                return True
        return False

    def remove(self, service: str) -> None:
        if self._known(service):
            self.runner.run(["pm2", "delete", service])
            self._save()

    def restart(self, service: str) -> bool:
        return self.runner.run(["pm2", "restart", service]).ok

    def log_command(self, service: str, lines: int, follow: bool) -> List[str]:
        if follow:
            return ["pm2", "logs", service, "--raw", "--lines", str(lines)]
        return ["pm2", "logs", service, "--raw", "--lines", str(lines), "--nostream"]


_MANAGERS = {"systemd": SystemdManager, "pm2": Pm2Manager}


def build_process_managers(settings: Settings, runner: CommandRunner) -> Dict[str, ProcessManager]:
    return {name: cls(settings, runner) for name, cls in _MANAGERS.items()}


def detect_process_manager(managers: Dict[str, ProcessManager]) -> str:
    return "pm2" if managers["pm2"].is_available() else "systemd"


def resolve_process_manager(managers: Dict[str, ProcessManager], requested: Optional[str] = None) -> str:
    name = requested or detect_process_manager(managers)
    pm = managers.get(name)
    if pm is None or not pm.is_available():
        raise SupervisorUnavailable(name)
    return name
