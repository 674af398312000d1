import json

import pytest

from conftest import FakeRunner
from deployer.deploy.errors import SupervisorUnavailable
from deployer.deploy.process_manager import (
    Pm2Manager,
    SystemdManager,
    build_process_managers,
    resolve_process_manager,
)


def test_systemd_unit_rendering(settings):
    unit = SystemdManager(settings, FakeRunner()).render_unit(
        "demo", "/opt/deployments/demo", 'node server.js --name "x" 100%', 3000)
    assert "Description=demo API Service" in unit
    assert "User=www-data" in unit
    assert "WorkingDirectory=/opt/deployments/demo" in unit
    assert 'ExecStart=/bin/bash -c "node server.js --name \\"x\\" 100%%"' in unit
    assert "Restart=always" in unit
    assert "Environment=PORT=3000" in unit
    assert "Environment=NODE_ENV=production" in unit
    assert f"StandardOutput=append:{settings.service_log_dir}/demo.log" in unit
    assert f"StandardError=append:{settings.service_log_dir}/demo.error.log" in unit


def test_systemd_start_writes_unit_and_restarts(settings):
    runner = FakeRunner()
    pm = SystemdManager(settings, runner)
    assert pm.start_or_restart("demo", "/opt/deployments/demo", "npm start", 3000)
    with open(pm.unit_path("demo")) as f:
        assert "ExecStart=/bin/bash -c \"npm start\"" in f.read()
    assert runner.calls == [
        "systemctl daemon-reload",
        "systemctl enable demo",
        "systemctl restart demo",
    ]


def test_systemd_start_reports_failure(settings):
    runner = FakeRunner().on("systemctl restart", returncode=1)
    assert not SystemdManager(settings, runner).start_or_restart("demo", "/tmp", "npm start", 3000)


def test_systemd_remove(settings):
    runner = FakeRunner()
    pm = SystemdManager(settings, runner)
    pm.start_or_restart("demo", "/tmp", "npm start", 3000)
    runner.calls.clear()
    pm.remove("demo")
    assert "systemctl stop demo" in runner.calls
    assert "systemctl disable demo" in runner.calls
    assert runner.calls[-1] == "systemctl daemon-reload"


def _jlist(*procs):
    return json.dumps([{"name": n, "pm2_env": {"status": s}} for n, s in procs])


def test_pm2_is_running_parses_jlist(settings):
    runner = FakeRunner().on("pm2 jlist", output=_jlist(("demo", "online"), ("other", "stopped")))
    pm = Pm2Manager(settings, runner)
    assert pm.is_running("demo")
    assert not pm.is_running("other")
    assert not pm.is_running("missing")


def test_pm2_is_running_tolerates_garbage(settings):
    runner = FakeRunner().on("pm2 jlist", output="[PM2] Spawning daemon\nnot json")
    assert not Pm2Manager(settings, runner).is_running("demo")


def test_pm2_start_new_process_runs_start_command(settings):
    runner = FakeRunner().on("pm2 describe", returncode=1)
    pm = Pm2Manager(settings, runner)
    assert pm.start_or_restart("demo", "/opt/deployments/demo", "npm run serve", 3000)
    assert runner.called("pm2 start /bin/bash --name demo --cwd /opt/deployments/demo -- -c npm run serve")
    assert runner.calls[-1] == "pm2 save"


def test_pm2_restart_known_process(settings):
    runner = FakeRunner()
    pm = Pm2Manager(settings, runner)
    assert pm.start_or_restart("demo", "/opt/deployments/demo", "npm start", 3000)
    assert runner.called("pm2 restart demo --update-env")
    assert not runner.called("pm2 start")


def test_log_commands(settings):
    runner = FakeRunner()
    assert SystemdManager(settings, runner).log_command("demo", 50, follow=True) == \
        ["journalctl", "-u", "demo", "-f", "-n", "50"]
    assert Pm2Manager(settings, runner).log_command("demo", 50, follow=False)[-1] == "--nostream"


def test_resolve_prefers_pm2_when_installed(settings):
    runner = FakeRunner()
    runner.available = {"pm2", "systemctl"}
    managers = build_process_managers(settings, runner)
    assert resolve_process_manager(managers) == "pm2"
    assert resolve_process_manager(managers, "systemd") == "systemd"


def test_resolve_falls_back_to_systemd(settings):
    managers = build_process_managers(settings, FakeRunner())
    assert resolve_process_manager(managers) == "systemd"


def test_requested_manager_must_be_installed(settings):
    managers = build_process_managers(settings, FakeRunner())
    with pytest.raises(SupervisorUnavailable):
        resolve_process_manager(managers, "pm2")


def test_no_supervisor_at_all(settings):
    runner = FakeRunner()
    runner.available = set()
    with pytest.raises(SupervisorUnavailable):
        resolve_process_manager(build_process_managers(settings, runner))
