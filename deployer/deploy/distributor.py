# deployer/deploy/distributor.py
import os
import json
import time
import queue
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from deployer.core.logging import log
from deployer.core.settings import Settings
from deployer.deploy.engine import DeployEngine, artifact_pattern
from deployer.deploy.models import DeploymentConfig, DeploymentView
from deployer.deploy.process_manager import ProcessManager
from deployer.deploy.registry import Registry
from deployer.deploy.shell import CommandRunner
from deployer.deploy.status_store import StatusStore

Event = Tuple[str, Any]

POLL_SECONDS = 0.5
HEARTBEAT_SECONDS = 15


def format_sse(event: str, data: Any) -> str:
    """Frame one server-sent event; multi-line payloads become repeated ``data:`` lines."""
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    lines = payload.split("\n")
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


def _tail(path: str, lines: int) -> Tuple[str, int]:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        last = deque(f, maxlen=lines)
        return "".join(last), f.tell()


class StatusDistributor:
    def __init__(self, settings: Settings, registry: Registry, status_store: StatusStore,
                 engine: DeployEngine, managers: Dict[str, ProcessManager], runner: CommandRunner):
        self.settings = settings
        self.registry = registry
        self.status_store = status_store
        self.engine = engine
        self.managers = managers
        self.runner = runner
        self._sleep = time.sleep
        self.heartbeat_seconds = HEARTBEAT_SECONDS

    # ---------- status ----------
    def view(self, cfg: DeploymentConfig) -> DeploymentView:
        rec = self.status_store.get(cfg.service_name)
        pm = self.managers.get(cfg.process_manager)
        try:
            running = bool(pm and pm.is_running(cfg.service_name))
        except Exception as e:
            log("deployer", f"Liveness check for {cfg.service_name} failed: {type(e).__name__}: {str(e)[:200]}")
            running = False
        view = DeploymentView(config=cfg.public_dict(), system_running=running)
        if rec is not None:
            view.status = rec.status
            view.message = rec.message
            view.last_updated = rec.last_updated
            view.last_deployment = rec.last_deployment
        return view

    def list_views(self) -> Dict[str, DeploymentView]:
        return {cfg.service_name: self.view(cfg) for cfg in self.registry.list()}

    def get_view(self, service_name: str) -> DeploymentView:
        return self.view(self.registry.require(service_name))

    def snapshot(self) -> Dict[str, Any]:
        return {
            "success": True,
            "deployments": {k: v.model_dump() for k, v in self.list_views().items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def snapshots(self, interval: Optional[float] = None) -> Iterator[Event]:
        interval = self.settings.snapshot_interval_seconds if interval is None else interval
        while True:
            try:
                yield "deployments", self.snapshot()
            except Exception as e:
                log("deployer", f"Snapshot failed: {type(e).__name__}: {str(e)[:200]}")
                yield "error", {"message": str(e)}
            self._sleep(interval)

    # ---------- deployment artifacts ----------
    def artifacts(self, service_name: str) -> List[str]:
        d = self.settings.deploy_log_dir
        if not os.path.isdir(d):
            return []
        pat = artifact_pattern(service_name)
        return [os.path.join(d, f) for f in os.listdir(d) if pat.match(f)]

    def latest_artifact(self, service_name: str) -> Optional[str]:
        files = self.artifacts(service_name)
        if not files:
            return None
        return max(files, key=lambda p: (os.path.getmtime(p), p))

    def read_latest_artifact(self, service_name: str) -> Dict[str, Any]:
        self.registry.require(service_name)
        path = self.latest_artifact(service_name)
        if path is None:
            return {"success": True, "logs": "No deployment logs yet", "file": None}
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return {"success": True, "logs": f.read(), "file": os.path.basename(path)}

    def _still_deploying(self, service_name: str) -> bool:
        if self.engine.is_deploying(service_name):
            return True
        # a deployment started from the CLI runs in another process
        rec = self.status_store.get(service_name)
        return rec is not None and rec.status == "deploying"

    def current_artifact(self, service_name: str) -> Optional[str]:
        attempt_id = self.engine.active_attempt(service_name)
        if attempt_id:
            path = self.engine.artifact_path(attempt_id)
            if os.path.exists(path):
                return path
        return self.latest_artifact(service_name)

    def follow_artifact(self, service_name: str) -> Iterator[Event]:
        """Tail the running attempt's log, moving on to each newer attempt until deployments go idle."""
        self.registry.require(service_name)
        path = None
        for attempt in range(self.settings.log_wait_seconds + 1):
            path = self.current_artifact(service_name)
            if path is not None:
                break
            if attempt < self.settings.log_wait_seconds:
                self._sleep(1)
        if path is None:
            yield "log", "Waiting for deployment log (start deploy if not started)...\n"
            return

        text, pos = _tail(path, self.settings.log_tail_lines)
        if text:
            yield "log", text
        idle_since = time.monotonic()
        while True:
            chunk, pos = _read_from(path, pos)
            if chunk:
                yield "log", chunk
                idle_since = time.monotonic()
                continue
            current = self.current_artifact(service_name)
            if current is not None and current != path:
                path, pos = current, 0
                continue
            if not self._still_deploying(service_name):
                # the closing banner can land after the status flips
                chunk, pos = _read_from(path, pos)
                if chunk:
                    yield "log", chunk
                yield "done", {}
                return
            if time.monotonic() - idle_since >= self.heartbeat_seconds:
                yield "ping", {}
                idle_since = time.monotonic()
            self._sleep(POLL_SECONDS)

    # ---------- supervisor logs ----------
    def recent_supervisor_logs(self, service_name: str) -> Dict[str, Any]:
        cfg = self.registry.require(service_name)
        pm = self.managers[cfg.process_manager]
        res = self.runner.run(pm.log_command(service_name, self.settings.supervisor_log_lines, follow=False))
        if res.ok and res.output.strip():
            return {"success": True, "logs": res.output, "source": pm.name}
        path = self.latest_artifact(service_name)
        if path is not None:
            text, _ = _tail(path, self.settings.log_tail_lines)
            return {"success": True, "logs": text, "source": "deployment"}
        return {"success": True, "logs": "No logs available", "source": None}

    def follow_supervisor(self, service_name: str) -> Iterator[Event]:
        """Follow journal/PM2 output.

        Lines are pumped through a queue so an idle reader still yields a
        ``ping`` every ``heartbeat_seconds``; that gives the server a chance to
        close the stream after the client has gone, which terminates the child.
        """
        cfg = self.registry.require(service_name)
        pm = self.managers[cfg.process_manager]
        try:
            proc = self.runner.spawn(pm.log_command(service_name, self.settings.supervisor_log_lines, follow=True))
        except OSError as e:
            yield "error", {"message": f"Cannot read {pm.label} logs: {e}"}
            return

        lines: "queue.Queue[Optional[str]]" = queue.Queue()
        reader = threading.Thread(target=_pump, args=(proc.stdout, lines),
                                  name=f"logs-{service_name}", daemon=True)
        reader.start()
        try:
            while True:
                try:
                    line = lines.get(timeout=self.heartbeat_seconds)
                except queue.Empty:
                    yield "ping", {}
                    continue
                if line is None:
                    break
                yield "log", line
            yield "done", {}
        finally:
            if proc.poll() is None:
                proc.terminate()
            reader.join(timeout=5)
            proc.stdout.close()
            proc.wait()


def _read_from(path: str, pos: int) -> Tuple[str, int]:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        f.seek(pos)
        chunk = f.read()
        return chunk, f.tell()


def _pump(stream, lines: queue.Queue):
    try:
        for line in stream:
            lines.put(line)
    except (OSError, ValueError) as e:
        log("deployer", f"Log reader stopped: {type(e).__name__}: {e}")
    finally:
        lines.put(None)
