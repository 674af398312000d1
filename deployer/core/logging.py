# deployer/core/logging.py
import os
import threading
from datetime import datetime

_lock = threading.Lock()
_log_dir = "logs"


def configure_logging(log_dir: str):
    global _log_dir
    _log_dir = log_dir


def log(scope: str, msg: str):
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = f"[{ts}] [{scope}] {msg}"
    print(line, flush=True)

    # Try to write to {log_dir}/{scope}.log
    try:
        with _lock:
            os.makedirs(_log_dir, exist_ok=True)
            with open(os.path.join(_log_dir, f"{scope}.log"), "a", encoding="utf-8") as f:
                f.write(line + "\n")
    except OSError:
        pass
