# deployer/deploy/engine.py
import os
import re
import time
import shutil
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional, TextIO

from deployer.core.locks import TryLock
from deployer.core.logging import log
from deployer.core.settings import Settings
from deployer.deploy.errors import (
    BuildFailed,
    ConcurrentDeployRejected,
    DeployError,
    SourceFetchFailed,
    StartFailed,
)
from deployer.deploy.models import DeploymentConfig, DeploymentStatusRecord, TriggerResult
from deployer.deploy.process_manager import ProcessManager
from deployer.deploy.registry import Registry
from deployer.deploy.runtime import RuntimeSelector
from deployer.deploy.shell import CommandRunner
from deployer.deploy.status_store import StatusStore

_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


def _ts() -> str:
    return datetime.now().astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")


def artifact_pattern(service_name: str):
    return re.compile(rf"^{re.escape(service_name)}-\d{{8}}-\d{{6}}(?:-\d+)?\.log$")


class DeployEngine:
    def __init__(self, settings: Settings, registry: Registry, status_store: StatusStore,
                 managers: Dict[str, ProcessManager], runner: CommandRunner):
        self.settings = settings
        self.registry = registry
        self.status_store = status_store
        self.managers = managers
        self.runner = runner
        self.runtime = RuntimeSelector(runner)
        self._sleep = time.sleep

        self._lock = threading.Lock()
        self._active: Dict[str, str] = {}
        self._pending: Dict[str, bool] = {}
        self._threads: Dict[str, threading.Thread] = {}

    # ---------- attempts ----------
    def service_lock(self, service_name: str) -> TryLock:
        return TryLock(os.path.join(self.settings.lock_dir, f"deploy-{service_name}.lock"))

    def artifact_path(self, attempt_id: str) -> str:
        return os.path.join(self.settings.deploy_log_dir, f"{attempt_id}.log")

    def _next_attempt_id(self, service_name: str, issued) -> str:
        base = f"{service_name}-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
        attempt_id, n = base, 1
        while attempt_id in issued or os.path.exists(self.artifact_path(attempt_id)):
            n += 1
            attempt_id = f"{base}-{n}"
        return attempt_id

    def new_attempt_id(self, service_name: str) -> str:
        with self._lock:
            return self._next_attempt_id(service_name, set(self._active.values()))

    def is_deploying(self, service_name: str) -> bool:
        with self._lock:
            return service_name in self._active

    def active_attempt(self, service_name: str) -> Optional[str]:
        with self._lock:
            return self._active.get(service_name)

    # ---------- async hand-off ----------
    def trigger(self, service_name: str, force: bool = False) -> TriggerResult:
        self.registry.require(service_name)
        with self._lock:
            if service_name in self._active:
                if not self.settings.queue_followup:
                    raise ConcurrentDeployRejected(service_name)
                coalesced = service_name in self._pending
                self._pending[service_name] = self._pending.get(service_name, False) or force
                log("deployer", f"Deployment of {service_name} in progress; follow-up "
                                f"{'already queued' if coalesced else 'queued'}")
                return TriggerResult(service_name=service_name, queued=True)
            # another process (CLI deploy, remove) holds the service
            held = self.service_lock(service_name)
            if not held.acquire():
                log("deployer", f"Deployment of {service_name} is locked by another process; trigger rejected")
                raise ConcurrentDeployRejected(service_name)
            held.release()
            attempt_id = self._reserve(service_name)
        t = threading.Thread(target=self._worker, args=(service_name, force, attempt_id),
                             name=f"deploy-{service_name}", daemon=True)
        with self._lock:
            self._threads[service_name] = t
        t.start()
        return TriggerResult(service_name=service_name, attempt_id=attempt_id)

    def _reserve(self, service_name: str) -> str:
        # caller holds self._lock
        attempt_id = self._next_attempt_id(service_name, set(self._active.values()))
        self._active[service_name] = attempt_id
        return attempt_id

    def _worker(self, service_name: str, force: bool, attempt_id: str):
        while True:
            try:
                self.deploy(service_name, force=force, attempt_id=attempt_id)
            except DeployError as e:
                log("deployer", f"Deployment of {service_name} not run: {e.message}")
            except Exception as e:
                log("deployer", f"Deployment worker for {service_name} crashed: {type(e).__name__}: {str(e)[:300]}")
            with self._lock:
                if service_name not in self._pending:
                    self._active.pop(service_name, None)
                    self._threads.pop(service_name, None)
                    return
                force = self._pending.pop(service_name)
                self._active.pop(service_name, None)
                attempt_id = self._reserve(service_name)
            log("deployer", f"Running queued follow-up deployment {attempt_id}")

    def wait(self, service_name: str, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight worker (and its follow-ups) for a service finishes."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                t = self._threads.get(service_name)
            if t is None:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            t.join(remaining)
            if t.is_alive():
                return False

    # ---------- pipeline ----------
    def deploy(self, service_name: str, force: bool = False, attempt_id: Optional[str] = None) -> DeploymentStatusRecord:
        cfg = self.registry.require(service_name)
        lock = self.service_lock(service_name)
        if not lock.acquire():
            raise ConcurrentDeployRejected(service_name)
        try:
            return self._run_pipeline(cfg, force, attempt_id or self.new_attempt_id(service_name))
        finally:
            lock.release()

    def _run_pipeline(self, cfg: DeploymentConfig, force: bool, attempt_id: str) -> DeploymentStatusRecord:
        name = cfg.service_name
        self.status_store.transition(name, "deploying", "Starting deployment process")
        log("deployer", f"Deploying {name} (attempt {attempt_id}, force={force})")
        try:
            os.makedirs(self.settings.deploy_log_dir, exist_ok=True)
            sink = open(self.artifact_path(attempt_id), "a", encoding="utf-8")
        except OSError as e:
            return self._fail(name, f"Deployment error: {e}")

        outcome = "failed"
        with sink:
            sink.write(f"=== Deployment started at {_ts()} ===\n")
            sink.write(f"Service: {name}\nRepository: {cfg.source_repo}\nBranch: {cfg.branch}\n"
                       f"Deploy path: {cfg.deploy_path}\nProcess manager: {cfg.process_manager}\n\n")
            sink.flush()
            try:
                with self._stage(sink, "fetch"):
                    self._fetch(cfg, force, sink)
                with self._stage(sink, "runtime"):
                    prefix = self.runtime.select(cfg.deploy_path, sink)
                with self._stage(sink, "build"):
                    self._build(cfg, prefix, sink)
                with self._stage(sink, "start"):
                    self._start(cfg, prefix, sink)
                rec = self.status_store.transition(name, "running", "Deployment completed successfully")
                outcome = "completed"
                log("deployer", f"Deployment of {name} completed successfully")
            except (SourceFetchFailed, BuildFailed, StartFailed) as e:
                sink.write(f"{e.message}\n")
                rec = self._fail(name, e.message)
            except Exception as e:
                sink.write(f"Unexpected error: {type(e).__name__}: {e}\n")
                rec = self._fail(name, f"Deployment error: {e}")
            finally:
                sink.write(f"=== Deployment {outcome} at {_ts()} ===\n")
        return rec

    def _fail(self, name: str, message: str) -> DeploymentStatusRecord:
        log("deployer", f"Deployment of {name} failed: {message}")
        return self.status_store.transition(name, "failed", message)

    @contextmanager
    def _stage(self, sink: TextIO, stage: str):
        sink.write(f"--- {stage} started at {_ts()} ---\n")
        sink.flush()
        ok = False
        try:
            yield
            ok = True
        finally:
            sink.write(f"--- {stage} {'finished' if ok else 'aborted'} at {_ts()} ---\n\n")
            sink.flush()

    def _fetch(self, cfg: DeploymentConfig, force: bool, sink: TextIO):
        path = cfg.deploy_path
        os.makedirs(path, exist_ok=True)
        if os.path.isdir(os.path.join(path, ".git")) and not force:
            sink.write("Updating existing repository...\n")
            steps = [
                ["git", "fetch", "origin", cfg.branch],
                ["git", "reset", "--hard", f"origin/{cfg.branch}"],
            ]
        else:
            sink.write("Cloning repository...\n")
            _wipe_dir(path)
            steps = [["git", "clone", "-b", cfg.branch, cfg.source_repo, "."]]
        sink.flush()
        for args in steps:
            if not self.runner.run(args, cwd=path, env=_GIT_ENV, sink=sink).ok:
                raise SourceFetchFailed()

    def _build(self, cfg: DeploymentConfig, prefix: str, sink: TextIO):
        sink.write(f"Running build command: {cfg.build_command}\n")
        sink.flush()
        command = f"{prefix} && {cfg.build_command}" if prefix else cfg.build_command
        if not self.runner.run_shell(command, cwd=cfg.deploy_path, sink=sink).ok:
            sink.write("Build failed\n")
            raise BuildFailed()
        sink.write("Build completed successfully\n")

    def _start(self, cfg: DeploymentConfig, prefix: str, sink: TextIO):
        pm = self.managers[cfg.process_manager]
        name = cfg.service_name
        if pm.stop_before_start:
            pm.ensure_stopped(name, sink)
        start_command = cfg.start_command
        if prefix and not pm.stop_before_start:
            start_command = f"{prefix} && {start_command}"
        started = pm.start_or_restart(name, cfg.deploy_path, start_command, cfg.port, sink)
        self._sleep(self.settings.settle_seconds)
        if not (started and pm.is_running(name)):
            sink.write(f"Failed to start service ({pm.label})\n")
            raise StartFailed(pm.label)
        sink.write(f"Service started successfully ({pm.label})\n")


def _wipe_dir(path: str):
    for entry in os.listdir(path):
        p = os.path.join(path, entry)
        if os.path.isdir(p) and not os.path.islink(p):
            shutil.rmtree(p)
        else:
            os.remove(p)
