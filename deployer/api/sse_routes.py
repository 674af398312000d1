from typing import Iterator, Tuple, Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from deployer.deploy.distributor import format_sse
from deployer.deploy.manager import DeploymentManager, get_manager

router = APIRouter(prefix="/api/sse")

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # nginx would otherwise buffer the stream
    "X-Accel-Buffering": "no",
}


def _stream(events: Iterator[Tuple[str, Any]]) -> StreamingResponse:
    def gen():
        try:
            for event, data in events:
                yield format_sse(event, data)
        finally:
            events.close()

    return StreamingResponse(gen(), media_type="text/event-stream", headers=_SSE_HEADERS)


@router.get("/deployments")
def stream_deployments(mgr: DeploymentManager = Depends(get_manager)):
    return _stream(mgr.distributor.snapshots())


@router.get("/deploy-log/{service_name}")
def stream_deploy_log(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    mgr.registry.require(service_name)
    return _stream(mgr.distributor.follow_artifact(service_name))


@router.get("/logs/{service_name}")
def stream_service_logs(service_name: str, mgr: DeploymentManager = Depends(get_manager)):
    mgr.registry.require(service_name)
    return _stream(mgr.distributor.follow_supervisor(service_name))
