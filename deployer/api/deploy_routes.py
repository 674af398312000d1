from fastapi import APIRouter, Depends

from deployer.deploy.manager import DeploymentManager, get_manager
from deployer.deploy.models import DeploymentCreate

router = APIRouter(prefix="/api")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/deployments")
def list_deployments(mgr: DeploymentManager = Depends(get_manager)):
    views = mgr.list_deployments()
    return {"success": True, "deployments": {k: v.model_dump() for k, v in views.items()}}


@router.post("/deployments", status_code=201)
def add_deployment(req: DeploymentCreate, mgr: DeploymentManager = Depends(get_manager)):
    cfg = mgr.add_deployment(req)
    return {
        "success": True,
        "message": f"Deployment {cfg.service_name} configured",
        "config": cfg.public_dict(),
        "webhook": mgr.webhook_info(cfg.service_name),
    }


@router.get("/deployments/{service_name}")
def get_deployment(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    return {"success": True, "deployment": mgr.get_deployment(service_name).model_dump()}


@router.delete("/deployments/{service_name}")
def remove_deployment(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    mgr.remove_deployment(service_name)
    return {"success": True, "message": f"Deployment {service_name} removed"}


@router.post("/deployments/{service_name}/deploy", status_code=202)
def deploy(service_name: str, force: bool = False, mgr: DeploymentManager = Depends(get_manager)):
    res = mgr.trigger(service_name, force=force)
    if res.queued:
        message = f"Deployment already in progress for {service_name}; follow-up queued"
    else:
        message = f"Deployment started for {service_name}"
    return {"success": True, "message": message, **res.model_dump()}


@router.post("/deployments/{service_name}/restart")
def restart(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    mgr.restart(service_name)
    return {"success": True, "message": f"Service {service_name} restarted"}


@router.get("/deployments/{service_name}/deploy-log")
def deploy_log(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    return mgr.distributor.read_latest_artifact(service_name)


@router.get("/deployments/{service_name}/logs")
def service_logs(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    return mgr.distributor.recent_supervisor_logs(service_name)


@router.get("/deployments/{service_name}/webhook")
def webhook_info(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    return {"success": True, **mgr.webhook_info(service_name)}
