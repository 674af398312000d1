import os
import time
import threading

from deployer.deploy.distributor import format_sse


def test_format_sse_splits_multiline_payload():
    assert format_sse("log", "line one\nline two\n") == \
        "event: log\ndata: line one\ndata: line two\ndata: \n\n"
    assert format_sse("done", {}) == "event: done\ndata: {}\n\n"


def test_views_join_config_status_and_liveness(manager, demo, fake_pm):
    views = manager.list_deployments()
    assert list(views) == ["demo"]
    v = views["demo"]
    assert v.status == "configured"
    assert v.system_running is False
    assert v.config["webhook_secret"] == "***"

    manager.deploy("demo")
    v = manager.get_deployment("demo")
    assert v.status == "running"
    assert v.system_running is True
    assert v.last_deployment is not None


def test_snapshot_stream(manager, demo):
    stream = manager.distributor.snapshots()
    event, data = next(stream)
    assert event == "deployments"
    assert data["success"] is True
    assert data["deployments"]["demo"]["status"] == "configured"
    assert "timestamp" in data
    assert next(stream)[0] == "deployments"
    stream.close()


def _write_artifact(settings, name, text, mtime):
    os.makedirs(settings.deploy_log_dir, exist_ok=True)
    p = os.path.join(settings.deploy_log_dir, name)
    with open(p, "w") as f:
        f.write(text)
    os.utime(p, (mtime, mtime))
    return p


def test_latest_artifact_ignores_other_services(manager, demo, settings):
    now = time.time()
    _write_artifact(settings, "demo-20240101-120000.log", "old", now - 100)
    newest = _write_artifact(settings, "demo-20240102-120000.log", "new", now - 10)
    _write_artifact(settings, "demo-api-20240103-120000.log", "other service", now)
    assert manager.distributor.latest_artifact("demo") == newest
    assert manager.distributor.read_latest_artifact("demo")["logs"] == "new"


def test_follow_artifact_finishes_when_idle(manager, demo):
    manager.deploy("demo")
    events = list(manager.distributor.follow_artifact("demo"))
    assert events[0][0] == "log"
    assert "=== Deployment started at " in events[0][1]
    assert events[-1] == ("done", {})


def test_follow_artifact_without_any_log(manager, demo):
    events = list(manager.distributor.follow_artifact("demo"))
    assert events == [("log", "Waiting for deployment log (start deploy if not started)...\n")]


def test_recent_logs_fall_back_to_artifact(manager, demo, runner):
    assert manager.distributor.recent_supervisor_logs("demo")["logs"] == "No logs available"
    manager.deploy("demo")
    res = manager.distributor.recent_supervisor_logs("demo")
    assert res["source"] == "deployment"
    assert "=== Deployment completed at " in res["logs"]

    runner.on("journalctl", output="Started demo API Service.\n")
    res = manager.distributor.recent_supervisor_logs("demo")
    assert res == {"success": True, "logs": "Started demo API Service.\n", "source": "systemd"}


def test_follow_supervisor_streams_and_stops_reader(manager, demo, runner):
    runner.spawn_lines = ["listening on 3000\n", "GET / 200\n"]
    events = list(manager.distributor.follow_supervisor("demo"))
    assert events == [("log", "listening on 3000\n"), ("log", "GET / 200\n"), ("done", {})]
    assert runner.spawned == [["journalctl", "-u", "demo", "-f", "-n", "50"]]


def test_follow_artifact_moves_on_to_queued_attempt(manager, demo, runner):
    started, release = threading.Event(), threading.Event()
    def block(args, cwd):
        started.set()
        release.wait(10)

    runner.on("npm run build", hook=block)
    manager.distributor._sleep = lambda s: time.sleep(0.01)

    manager.trigger("demo")
    assert started.wait(5)
    assert manager.trigger("demo").queued

    events, following = [], threading.Event()

    def consume():
        for ev in manager.distributor.follow_artifact("demo"):
            events.append(ev)
            following.set()

    reader = threading.Thread(target=consume, daemon=True)
    reader.start()
    assert following.wait(5)

    release.set()
    assert manager.engine.wait("demo", timeout=10)
    reader.join(10)
    assert not reader.is_alive()

    streamed = "".join(data for event, data in events if event == "log")
    assert len(manager.distributor.artifacts("demo")) == 2
    assert streamed.count("=== Deployment started at ") == 2
    assert streamed.count("=== Deployment completed at ") == 2
    assert events[-1] == ("done", {})


class _IdleStdout:
    """A journal that prints nothing until its process is terminated."""

    def __init__(self):
        self.closed = threading.Event()

    def __iter__(self):
        self.closed.wait(10)
        return iter(())

    def close(self):
        self.closed.set()


class _IdleProc:
    def __init__(self):
        self.stdout = _IdleStdout()
        self.returncode = None

    def poll(self):
        return self.returncode

    def terminate(self):
        self.returncode = -15
        self.stdout.close()

    def wait(self):
        return self.returncode


def test_idle_supervisor_stream_pings_and_closes_child(manager, demo, runner):
    proc = _IdleProc()
    runner.spawn_proc = proc
    manager.distributor.heartbeat_seconds = 0.05

    stream = manager.distributor.follow_supervisor("demo")
    assert next(stream) == ("ping", {})
    assert proc.returncode is None

    stream.close()
    assert proc.returncode == -15
    assert proc.stdout.closed.is_set()
