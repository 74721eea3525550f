from __future__ import annotations
from datetime import datetime, timezone
from fastapi import APIRouter, Request
from portal.config import settings

router = APIRouter(tags=["system"])

def _buckets() -> dict[str, str]:
    return {"challenge_files": settings.bucket_challenge_files, "avatars": settings.bucket_avatars}

@router.get("/health")
async def health(request: Request):
    # Liveness only; storage reachability is reported per upload
    return {
        "status": "ok",
        "service": settings.app_name,
        "env": settings.environment,
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "request_id": getattr(request.state, "request_id", None),
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "display_name": settings.app_display_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "buckets": list(_buckets().values()),
        "avatar_extensions": sorted(settings.avatar_extensions),
    }
