from __future__ import annotations
from uuid import UUID
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, UploadFile, File

from portal.auth_deps import get_current_user
from portal.config import settings
from portal.deps import get_asset_store, get_catalog
from portal.schemas.assets import AssetPublic, ChallengeFiles, UploadResponse, UploadFailurePublic, RemoveResponse
from portal.services.assets import AssetFile, AssetStore, KnownAssets, PartialUploadFailure, UploadFailure, display_name
from portal.services.catalog import SqlCatalog
from portal.services.media import read_limited
from portal.services.storage import BackendUnavailable, ObjectRejected

router = APIRouter(prefix="/challenges", tags=["challenge-files"])
log = structlog.get_logger()

def _listing(known: KnownAssets) -> list[AssetPublic]:
    return [AssetPublic(url=u, name=display_name(u)) for u in known]

async def _load_known(catalog: SqlCatalog, challenge_id: UUID) -> KnownAssets:
    ch = await catalog.get_challenge(challenge_id)
    if not ch:
        raise HTTPException(status_code=404, detail="Challenge not found")
    return KnownAssets.of(ch.files)

@router.get("/{challenge_id}/files", response_model=ChallengeFiles)
async def list_files(
    challenge_id: UUID,
    catalog: SqlCatalog = Depends(get_catalog),
    user=Depends(get_current_user),
):
    known = await _load_known(catalog, challenge_id)
    return ChallengeFiles(challenge_id=challenge_id, files=_listing(known))

@router.post("/{challenge_id}/files", response_model=UploadResponse, status_code=201)
async def upload_files(
    challenge_id: UUID,
    response: Response,
    files: list[UploadFile] = File(..., description="Binaries, source code, challenge files"),
    catalog: SqlCatalog = Depends(get_catalog),
    store: AssetStore = Depends(get_asset_store),
    user=Depends(get_current_user),
):
    known = await _load_known(catalog, challenge_id)

    batch: list[AssetFile] = []
    rejected: list[UploadFailure] = []
    for f in files:
        name = f.filename or "file"
        data = await read_limited(f, settings.max_upload_bytes)
        if data is None:
            rejected.append(UploadFailure(name, f"exceeds {settings.max_upload_bytes} bytes"))
            continue
        batch.append(AssetFile(name, data, f.content_type or "application/octet-stream"))

    result = await store.upload(challenge_id, settings.bucket_challenge_files, batch)
    result.failed[:0] = rejected

    # Known list reflects what actually landed in storage
    if result.uploaded:
        known = KnownAssets.of(await catalog.add_files(challenge_id, result.urls))

    try:
        result.raise_for_failures()
    except PartialUploadFailure as e:
        log.warning("challenge_files_partial", challenge_id=str(challenge_id), error=str(e))
        response.status_code = 207

    return UploadResponse(
        challenge_id=challenge_id,
        files=_listing(known),
        uploaded=[AssetPublic(url=r.public_url, name=r.name, key=r.key.path) for r in result.uploaded],
        failed=[UploadFailurePublic(name=f.name, reason=f.reason, retryable=f.retryable) for f in result.failed],
    )

@router.delete("/{challenge_id}/files", response_model=RemoveResponse)
async def remove_file(
    challenge_id: UUID,
    target: str = Query(..., description="public URL or storage key of the file"),
    catalog: SqlCatalog = Depends(get_catalog),
    store: AssetStore = Depends(get_asset_store),
    user=Depends(get_current_user),
):
    known = await _load_known(catalog, challenge_id)
    try:
        outcome = await store.remove(challenge_id, settings.bucket_challenge_files, target, known)
    except BackendUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
    except ObjectRejected as e:
        raise HTTPException(status_code=502, detail=f"Storage rejected delete: {e}")

    remaining = outcome.known
    if remaining.urls != known.urls:
        remaining = KnownAssets.of(await catalog.remove_file(challenge_id, target))
    return RemoveResponse(
        challenge_id=challenge_id,
        files=_listing(remaining),
        removed=target,
        key=outcome.key,
        deleted_from_storage=outcome.deleted,
    )
