# deployer/deploy/shell.py
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, TextIO


@dataclass
class CommandResult:
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands with stderr folded into stdout.

    When a ``sink`` is given each output line is appended to it as it arrives
    (the deployment log artifact); otherwise the output is returned.
    """

    def run(self, args: List[str], cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None,
            sink: Optional[TextIO] = None) -> CommandResult:
        full_env = dict(os.environ)
        if env:
            full_env.update(env)
        try:
            proc = subprocess.Popen(
                args,
                cwd=cwd,
                env=full_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            msg = f"{args[0]}: {e.strerror or e}\n"
            if sink is not None:
                sink.write(msg)
                sink.flush()
            return CommandResult(127, msg)

        chunks = []
        with proc.stdout:
            for line in proc.stdout:
                if sink is not None:
                    sink.write(line)
                    sink.flush()
                else:
                    chunks.append(line)
        return CommandResult(proc.wait(), "".join(chunks))

    def run_shell(self, command: str, cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None,
                  sink: Optional[TextIO] = None) -> CommandResult:
        return self.run(["/bin/bash", "-c", command], cwd=cwd, env=env, sink=sink)

    def spawn(self, args: List[str]) -> subprocess.Popen:
        return subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,
        )

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)
