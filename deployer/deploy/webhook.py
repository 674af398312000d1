# deployer/deploy/webhook.py
import hmac
import json
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from deployer.core.logging import log
from deployer.deploy.engine import DeployEngine
from deployer.deploy.errors import ConcurrentDeployRejected, ConfigNotFound, InvalidSignature, MalformedPayload
from deployer.deploy.registry import Registry

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"


def compute_signature(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: Optional[str]) -> bool:
    """Constant-time check of ``X-Hub-Signature-256`` over the raw request body."""
    if not signature or not signature.startswith("sha256=") or not secret:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


@dataclass
class WebhookOutcome:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _ok(message: str, **extra) -> WebhookOutcome:
    return WebhookOutcome(200, {"success": True, "message": message, **extra})


def _reject(status_code: int, error: str) -> WebhookOutcome:
    return WebhookOutcome(status_code, {"success": False, "error": error})


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class WebhookReceiver:
    def __init__(self, registry: Registry, engine: DeployEngine):
        self.registry = registry
        self.engine = engine

    def handle(self, service_name: str, body: bytes, signature: Optional[str], event: Optional[str]) -> WebhookOutcome:
        log("webhook", f"Received {event} webhook for {service_name}")
        try:
            return self._handle(service_name, body, signature, event)
        except Exception as e:
            log("webhook", f"Error handling webhook for {service_name}: {type(e).__name__}: {str(e)[:300]}")
            return _reject(500, str(e) or "Internal server error")

    def _handle(self, service_name: str, body: bytes, signature: Optional[str], event: Optional[str]) -> WebhookOutcome:
        cfg = self.registry.get(service_name)
        if cfg is None:
            log("webhook", f"Service configuration not found: {service_name} (event={event}) -> 404")
            return _reject(404, ConfigNotFound(service_name).message)

        if not verify_signature(body, cfg.webhook_secret, signature):
            log("webhook", f"Invalid webhook signature for {service_name} (event={event}) -> 403")
            return _reject(403, InvalidSignature().message)

        try:
            payload = json.loads(body.decode("utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("payload is not an object")
        except ValueError:
            log("webhook", f"Invalid JSON payload for {service_name} (event={event}) -> 400")
            return _reject(400, MalformedPayload().message)

        ref = payload.get("ref")
        if event != "push":
            log("webhook", f"Ignoring {event} event for {service_name} (ref={ref})")
            return _ok(f"Ignoring {event} event", ignored=True)

        target = f"refs/heads/{cfg.branch}"
        if ref != target:
            log("webhook", f"Ignoring push to {ref} for {service_name}, expected {target}")
            return _ok(f"Ignoring push to different branch: {ref}", ignored=True)

        if not cfg.auto_deploy:
            log("webhook", f"Auto-deploy disabled for {service_name}; push to {ref} ignored")
            return _ok("Auto-deploy disabled", ignored=True)

        head = _obj(payload.get("head_commit"))
        commit = head.get("id") or "unknown"
        commit_message = head.get("message") or "No message"
        pusher = _obj(payload.get("pusher")).get("name") or "unknown"

        try:
            result = self.engine.trigger(service_name)
        except ConcurrentDeployRejected as e:
            log("webhook", f"Push {commit} for {service_name} rejected: {e.message}")
            return _reject(409, e.message)
        except ConfigNotFound as e:
            return _reject(404, e.message)

        if result.queued:
            log("webhook", f"Deployment of {service_name} in progress; push {commit} by {pusher} queued")
            return _ok(f"Deployment already in progress for {service_name}; follow-up queued",
                       service=service_name, commit=commit, pusher=pusher, queued=True)

        log("webhook", f"Deployment triggered for {service_name} (attempt {result.attempt_id})")
        log("webhook", f"Commit: {commit} by {pusher} - {commit_message}")
        return _ok(f"Deployment triggered for {service_name}",
                   service=service_name, commit=commit, pusher=pusher, attempt_id=result.attempt_id)
