from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from deployer.api.deploy_routes import router as deploy_router
from deployer.api.sse_routes import router as sse_router
from deployer.api.webhook_routes import router as webhook_router
from deployer.core.logging import configure_logging, log
from deployer.deploy.errors import DeployError
from deployer.deploy.manager import get_manager


def _install_handlers(app: FastAPI):
    @app.exception_handler(DeployError)
    async def deploy_error_handler(request: Request, exc: DeployError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in exc.errors()
        )
        return JSONResponse(status_code=400, content={"success": False, "error": errors or "Invalid request"})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log("deployer", f"{request.method} {request.url.path} failed: {type(exc).__name__}: {str(exc)[:300]}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    @app.on_event("startup")
    def startup_prepare_dirs():
        settings = get_manager().settings
        configure_logging(settings.log_dir)
        try:
            settings.ensure_dirs()
        except OSError as e:
            log("startup", f"Cannot create state directories: {e}")
        log("startup", f"{app.title} ready")


def create_app() -> FastAPI:
    """Dashboard API, event streams and the webhook receiver on one app."""
    app = FastAPI(title="API Gateway Deployment Manager")
    app.include_router(deploy_router)
    app.include_router(sse_router)
    app.include_router(webhook_router)
    _install_handlers(app)
    return app


def create_webhook_app() -> FastAPI:
    app = FastAPI(title="GitHub Webhook Server")
    app.include_router(webhook_router)
    _install_handlers(app)
    return app


app = create_app()
