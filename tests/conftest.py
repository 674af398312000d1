import os
import threading
from typing import List, Optional

import pytest

from deployer.core.logging import configure_logging
from deployer.core.settings import Settings
from deployer.deploy.manager import DeploymentManager, set_manager
from deployer.deploy.models import DeploymentCreate
from deployer.deploy.process_manager import ProcessManager
from deployer.deploy.shell import CommandResult, CommandRunner


class _Stdout(list):
    def close(self):
        pass


class FakeProc:
    def __init__(self, lines: List[str]):
        self.stdout = _Stdout(lines)
        self.terminated = False
        self.returncode = None

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def wait(self):
        return self.returncode


class FakeRunner(CommandRunner):
    """Scripted stand-in for git, npm, systemctl and pm2.

    Rules are matched by substring against the space-joined command line; the
    most recently added rule wins. Unmatched commands succeed silently, and a
    ``git clone`` creates a ``.git`` directory in its working directory.
    """

    def __init__(self):
        self.calls: List[str] = []
        self.rules = []
        self.available = {"systemctl"}
        self.spawned: List[List[str]] = []
        self.spawn_lines: List[str] = []
        self.spawn_proc = None
        self._lock = threading.Lock()

    def on(self, needle: str, returncode: int = 0, output: str = "", hook=None):
        self.rules.append((needle, returncode, output, hook))
        return self

    def run(self, args, cwd=None, env=None, sink=None):
        cmd = " ".join(args)
        with self._lock:
            self.calls.append(cmd)
        for needle, rc, out, hook in reversed(self.rules):
            if needle in cmd:
                if hook is not None:
                    hook(args, cwd)
                if sink is not None:
                    sink.write(out)
                    return CommandResult(rc, "")
                return CommandResult(rc, out)
        if cmd.startswith("git clone") and cwd:
            os.makedirs(os.path.join(cwd, ".git"), exist_ok=True)
        return CommandResult(0, "")

    def called(self, needle: str) -> List[str]:
        with self._lock:
            return [c for c in self.calls if needle in c]

    def spawn(self, args):
        self.spawned.append(list(args))
        if self.spawn_proc is not None:
            return self.spawn_proc
        return FakeProc(list(self.spawn_lines))

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.available else None


class FakeProcessManager(ProcessManager):
    name = "systemd"
    label = "systemd"
    stop_before_start = True

    def __init__(self, settings, runner):
        super().__init__(settings, runner)
        self.starts = []
        self.stops = []
        self.removed = []
        self.restarts = []
        self.running = set()
        self.start_ok = True
        self.stays_up = True

    @property
    def binary(self) -> str:
        return "systemctl"

    def is_available(self) -> bool:
        return True

    def ensure_stopped(self, service, sink=None):
        self.stops.append(service)
        self.running.discard(service)

    def start_or_restart(self, service, working_dir, start_command, port, sink=None):
        self.starts.append((service, working_dir, start_command, port))
        if self.start_ok and self.stays_up:
            self.running.add(service)
        return self.start_ok

    def is_running(self, service):
        return service in self.running

    def remove(self, service):
        self.removed.append(service)
        self.running.discard(service)

    def restart(self, service):
        self.restarts.append(service)
        return self.start_ok

    def log_command(self, service, lines, follow):
        return ["journalctl", "-u", service, "-f" if follow else "--no-pager", "-n", str(lines)]


class FakePm2Manager(FakeProcessManager):
    name = "pm2"
    label = "PM2"
    stop_before_start = False

    @property
    def binary(self) -> str:
        return "pm2"

    def log_command(self, service, lines, follow):
        return ["pm2", "logs", service, "--raw", "--lines", str(lines)]


@pytest.fixture(autouse=True)
def _log_dir(tmp_path):
    configure_logging(str(tmp_path / "app-logs"))
    yield


@pytest.fixture
def settings(tmp_path):
    s = Settings(
        config_dir=str(tmp_path / "etc" / "deployments"),
        state_dir=str(tmp_path / "state"),
        log_dir=str(tmp_path / "log"),
        deploy_root=str(tmp_path / "opt"),
        apis_config=str(tmp_path / "etc" / "apis.json"),
        keys_dir=str(tmp_path / "etc" / "keys"),
        systemd_unit_dir=str(tmp_path / "systemd"),
        route_generators=[],
        settle_seconds=0,
        log_wait_seconds=0,
        snapshot_interval_seconds=0,
        public_host="deploy.example.com",
    )
    s.ensure_dirs()
    return s


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def manager(settings, runner):
    mgr = DeploymentManager(settings, runner=runner)
    mgr.managers["systemd"] = FakeProcessManager(settings, runner)
    mgr.engine._sleep = lambda s: None
    mgr.distributor._sleep = lambda s: None
    set_manager(mgr)
    yield mgr
    for name in list(mgr.engine._threads):
        mgr.engine.wait(name, timeout=10)
    set_manager(None)


@pytest.fixture
def fake_pm(manager):
    return manager.managers["systemd"]


@pytest.fixture
def demo(manager):
    return manager.add_deployment(DeploymentCreate(
        service_name="demo",
        source_repo="https://github.com/x/y",
        branch="main",
        port=3000,
    ))
