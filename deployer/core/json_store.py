# deployer/core/json_store.py
import os
import json
import threading
from typing import Any, Dict, Optional


def write_json(path: str, data: Dict[str, Any]):
    """Write ``data`` to ``path`` via a temp file and rename, so readers never
    see a half-written document."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def read_json(path: str) -> Optional[Dict[str, Any]]:
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def remove_file(path: str) -> bool:
    if os.path.exists(path):
        os.remove(path)
        return True
    return False
