from __future__ import annotations
import asyncio
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from portal.config import settings
from portal.logging_setup import configure_logging
from portal.routes.system import router as system_router
from portal.routes.challenge_files import router as challenge_files_router
from portal.routes.profiles import router as profiles_router
from portal.services.storage import StorageError, get_storage_backend
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    if settings.s3_ensure_buckets:
        try:
            await asyncio.to_thread(
                get_storage_backend().ensure_buckets,
                [settings.bucket_challenge_files, settings.bucket_avatars],
            )
        except StorageError as e:
            # Uploads will fail per file until storage is reachable
            log.warning("bucket_check_failed", error=str(e))
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for challenge files and player profiles",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(challenge_files_router)
app.include_router(profiles_router)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    try:
        response: Response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()
    response.headers["X-Request-ID"] = rid
    return response
