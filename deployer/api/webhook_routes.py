from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from deployer.deploy.manager import DeploymentManager, get_manager
from deployer.deploy.webhook import EVENT_HEADER, SIGNATURE_HEADER

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "service": "webhook-server"}


@router.post("/webhook/{service_name}")
async def github_webhook(service_name: str, request: Request, mgr: DeploymentManager = Depends(get_manager)):
    # the signature covers the raw bytes, so the body is never parsed before verification
    body = await request.body()
    outcome = await run_in_threadpool(
        mgr.webhooks.handle,
        service_name,
        body,
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(EVENT_HEADER),
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
