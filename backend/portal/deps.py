from __future__ import annotations
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from portal.config import settings
from portal.db import get_session
from portal.services.assets import AssetStore, OwnerLocks, TokenClock
from portal.services.catalog import SqlCatalog
from portal.services.profiles import SqlProfiles
from portal.services.storage import get_storage_backend
from portal.services.submission_log import SqlSubmissionLog

# Process-wide: avatar replacement is single-writer per user
avatar_locks = OwnerLocks()
# Attachment tokens must not repeat across requests
asset_clock = TokenClock()

def get_asset_store() -> AssetStore:
    return AssetStore(
        get_storage_backend(),
        concurrency=settings.upload_concurrency,
        timeout=settings.storage_timeout_seconds,
        single_slot_bucket=settings.bucket_avatars,
        clock=asset_clock,
    )

def get_catalog(session: AsyncSession = Depends(get_session)) -> SqlCatalog:
    return SqlCatalog(session)

def get_submission_log(session: AsyncSession = Depends(get_session)) -> SqlSubmissionLog:
    return SqlSubmissionLog(session)

def get_profiles(session: AsyncSession = Depends(get_session)) -> SqlProfiles:
    return SqlProfiles(session)
