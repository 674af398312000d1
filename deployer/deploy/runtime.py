# deployer/deploy/runtime.py
import os
import re
from typing import Optional, TextIO, Tuple

from deployer.deploy.shell import CommandRunner

VERSION_FILES = (".nvmrc", ".node-version")
_VERSION_RE = re.compile(r"^[A-Za-z0-9._/*-]+$")


def read_pinned_version(deploy_path: str) -> Optional[Tuple[str, str]]:
    for fname in VERSION_FILES:
        p = os.path.join(deploy_path, fname)
        if not os.path.isfile(p):
            continue
        with open(p, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    return line, fname
        return None
    return None


class RuntimeSelector:
    """Honors a pinned Node version through nvm, fnm or asdf, in that order.

    ``select`` returns a shell prefix that activates the version for later
    commands, or an empty string when the host default runtime is used.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def select(self, deploy_path: str, sink: TextIO) -> str:
        pinned = read_pinned_version(deploy_path)
        if not pinned:
            return ""
        version, fname = pinned
        sink.write(f"Project requires Node: {version} (from {fname})\n")
        if not _VERSION_RE.match(version):
            sink.write(f"Warning: ignoring unsupported version spec {version!r}\n")
            return ""

        for name, attempt in (("nvm", self._nvm), ("fnm", self._fnm), ("asdf", self._asdf)):
            prefix = attempt(version, deploy_path, sink)
            if prefix:
                res = self.runner.run_shell(f"{prefix} && node -v", cwd=deploy_path)
                sink.write(f"Using Node {res.output.strip()} via {name}\n")
                return prefix

        current = self.runner.run_shell("node -v", cwd=deploy_path).output.strip() or "unknown"
        sink.write(f"Warning: no nvm/fnm/asdf could provide Node {version}. Using system Node {current}.\n")
        return ""

    def _nvm(self, version: str, cwd: str, sink: TextIO) -> str:
        nvm_dir = os.environ.get("NVM_DIR") or os.path.expanduser("~/.nvm")
        nvm_sh = os.path.join(nvm_dir, "nvm.sh")
        if not os.path.isfile(nvm_sh):
            return ""
        prefix = f'export NVM_DIR="{nvm_dir}" && . "{nvm_sh}" && nvm use {version} >/dev/null'
        res = self.runner.run_shell(f'. "{nvm_sh}" && nvm install {version}', cwd=cwd, sink=sink)
        if res.ok or self.runner.run_shell(prefix, cwd=cwd).ok:
            return prefix
        return ""

    def _fnm(self, version: str, cwd: str, sink: TextIO) -> str:
        if not self.runner.which("fnm"):
            return ""
        if not self.runner.run(["fnm", "install", version], cwd=cwd, sink=sink).ok:
            return ""
        prefix = f'eval "$(fnm env)" && fnm use {version} >/dev/null'
        return prefix if self.runner.run_shell(prefix, cwd=cwd).ok else ""

    def _asdf(self, version: str, cwd: str, sink: TextIO) -> str:
        if not self.runner.which("asdf"):
            return ""
        plugins = self.runner.run(["asdf", "plugin", "list"], cwd=cwd)
        if "nodejs" not in plugins.output:
            return ""
        self.runner.run(["asdf", "install", "nodejs", version], cwd=cwd, sink=sink)
        if not self.runner.run(["asdf", "local", "nodejs", version], cwd=cwd, sink=sink).ok:
            return ""
        return f"asdf local nodejs {version}"
