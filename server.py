from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from models import ProvisionRequest, ImageRequest, ExecRequest, BulkRequest
from docker_service import (
    provision_container,
    run_bulk_action,
    list_containers,
    start_container,
    stop_container,
    remove_container,
    get_container_logs,
    exec_in_container,
    list_images,
    pull_image,
    remove_image,
    search_images,
    get_stats,
    cleanup_system,
    list_networks,
    list_volumes,
    health_check,
)
from config import (
    SERVICE_NAME,
    SERVICE_VERSION,
    RATE_LIMIT_CREATE,
    RATE_LIMIT_BULK,
    RATE_LIMIT_CLEANUP,
    RATE_LIMIT_PULL,
    DISCONNECT_POLL_INTERVAL,
)
from utils import (
    logger,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    log_request,
    log_container_operation,
    get_metrics,
    DockerManagerException,
)
import asyncio
import threading
import time
from typing import Optional
from prometheus_client import CONTENT_TYPE_LATEST

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title=SERVICE_NAME,
    description="Container and image lifecycle management over the Docker daemon",
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response middleware for logging and metrics
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    # Process request
    response = await call_next(request)

    # Calculate response time
    response_time = time.time() - start_time

    # Log request
    log_request(request, response_time, response.status_code)

    # Label by route template so ids do not explode the series count
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(
        method=request.method, endpoint=endpoint, status=response.status_code
    ).inc()
    REQUEST_LATENCY.observe(response_time)

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=exc.errors(), body=exc.body)
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            {
                "error": "Invalid JSON format",
                "error_code": "BAD_REQUEST",
                "errors": exc.errors(),
            }
        ),
    )


@app.exception_handler(DockerManagerException)
async def docker_manager_exception_handler(
    request: Request, exc: DockerManagerException
):
    logger.error(
        "Request failed",
        path=request.url.path,
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "error_code": "INTERNAL_ERROR"},
    )


async def run_cancellable(request: Request, func, *args):
    """Run a blocking workflow on the threadpool, cancelling it if the client leaves.

    The workflow receives a threading.Event and checks it between steps; a
    daemon call that is already in flight is allowed to finish.
    """
    cancel_event = threading.Event()

    async def watch_disconnect():
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected", path=request.url.path)
                cancel_event.set()
                return
            await asyncio.sleep(DISCONNECT_POLL_INTERVAL)

    watcher = asyncio.create_task(watch_disconnect())
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel_event)
    finally:
        cancel_event.set()
        watcher.cancel()


@app.post("/create")
@limiter.limit(RATE_LIMIT_CREATE)
async def create(payload: ProvisionRequest, request: Request):
    """Pull (if needed), create and start a container"""
    logger.info(
        "Creating container", name=payload.name, image=payload.image, port=payload.port
    )
    result = await run_cancellable(request, provision_container, payload)
    return result.to_dict()


@app.get("/status")
def status(request: Request):
    """All containers, running and stopped"""
    return list_containers()


@app.get("/stop/{container_id}")
def stop(container_id: str, request: Request):
    logger.info("Stopping container", container_id=container_id)
    return stop_container(container_id)


@app.get("/start/{container_id}")
def start(container_id: str, request: Request):
    logger.info("Starting container", container_id=container_id)
    return start_container(container_id)


@app.get("/remove/{container_id}")
def remove(container_id: str, request: Request):
    logger.info("Removing container", container_id=container_id)
    return remove_container(container_id)


@app.get("/images")
def images(request: Request):
    return list_images()


@app.post("/images/pull")
@limiter.limit(RATE_LIMIT_PULL)
def images_pull(payload: ImageRequest, request: Request):
    return pull_image(payload.name, payload.tag)


@app.get("/images/search/{term}")
def images_search(term: str, request: Request):
    return search_images(term)


@app.delete("/images/{image_id:path}")
def images_remove(image_id: str, request: Request):
    logger.info("Removing image", image=image_id)
    return remove_image(image_id)


@app.get("/stats")
def stats(request: Request):
    return get_stats()


@app.get("/logs/{container_id}")
def logs(container_id: str, request: Request, tail: Optional[str] = None):
    return get_container_logs(container_id, tail)


@app.post("/exec/{container_id}")
def exec_command(container_id: str, payload: ExecRequest, request: Request):
    return exec_in_container(container_id, payload.command)


@app.post("/bulk/{action}")
@limiter.limit(RATE_LIMIT_BULK)
async def bulk(action: str, payload: BulkRequest, request: Request):
    """Apply start/stop/remove/restart to every listed container"""
    logger.info("Bulk operation", action=action, targets=len(payload.containers))
    report = await run_cancellable(
        request, run_bulk_action, action, payload.containers
    )
    log_container_operation(
        "bulk",
        action,
        "success" if report.error_count == 0 else "partial",
        {"total": report.total, "errors": report.error_count},
    )
    return report.to_dict()


@app.post("/cleanup")
@limiter.limit(RATE_LIMIT_CLEANUP)
def cleanup(request: Request):
    logger.info("System cleanup requested")
    return cleanup_system()


@app.get("/networks")
def networks(request: Request):
    return list_networks()


@app.get("/volumes")
def volumes(request: Request):
    return list_volumes()


@app.get("/health", status_code=200)
def health_endpoint():
    """Daemon reachability and host snapshot"""
    return health_check()


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


@app.on_event("startup")
async def startup_tasks():
    logger.info("Starting Docker Manager")
    health = await run_in_threadpool(health_check)
    if health["services"]["docker"] != "healthy":
        logger.warning("Docker daemon is not reachable at startup")


@app.on_event("shutdown")
async def shutdown_tasks():
    logger.info("Docker Manager shutdown complete")
