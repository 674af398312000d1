# deployer/core/secret_store.py
import os
import base64
import time
from typing import Any, Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_AAD = b"deployment-secret"


def _key_path(keys_dir: str, name: str) -> str:
    return os.path.join(keys_dir, f"{name}.key")


def _read_key(keys_dir: str, name: str) -> bytes:
    p = _key_path(keys_dir, name)
    if os.path.exists(p):
        with open(p, "rb") as f:
            kb = base64.b64decode(f.read().decode("ascii"))
            if len(kb) in (16, 24, 32):
                return kb
    return b""


def _write_key(keys_dir: str, name: str, kb: bytes):
    os.makedirs(keys_dir, exist_ok=True)
    p = _key_path(keys_dir, name)
    fd = os.open(p, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(base64.b64encode(kb))


def get_or_create_key(keys_dir: str, name: str) -> bytes:
    kb = _read_key(keys_dir, name)
    if kb:
        return kb
    kb = AESGCM.generate_key(bit_length=256)
    _write_key(keys_dir, name, kb)
    return kb


def delete_key(keys_dir: str, name: str):
    p = _key_path(keys_dir, name)
    if os.path.exists(p):
        os.remove(p)


def is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and value.get("enc") is True and value.get("alg") == "AES-GCM"


def encrypt_value(keys_dir: str, name: str, value: str) -> Dict[str, Any]:
    aesgcm = AESGCM(get_or_create_key(keys_dir, name))
    nonce = os.urandom(12)
    ct = aesgcm.encrypt(nonce, value.encode("utf-8"), _AAD)
    return {
        "enc": True,
        "alg": "AES-GCM",
        "ts": int(time.time()),
        "nonce_b64": base64.b64encode(nonce).decode("ascii"),
        "ct_b64": base64.b64encode(ct).decode("ascii"),
    }


def decrypt_value(keys_dir: str, name: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    if not is_envelope(value):
        raise RuntimeError(f"Invalid secret content for {name}")
    kb = _read_key(keys_dir, name)
    if not kb:
        raise RuntimeError(f"Missing secret key for {name}")
    nonce = base64.b64decode(value["nonce_b64"])
    ct = base64.b64decode(value["ct_b64"])
    return AESGCM(kb).decrypt(nonce, ct, _AAD).decode("utf-8")
