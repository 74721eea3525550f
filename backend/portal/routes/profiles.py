from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File

from portal.auth_deps import get_current_user, CurrentUser
from portal.config import settings
from portal.deps import get_asset_store, get_catalog, get_profiles, get_submission_log, avatar_locks
from portal.models.profile import Profile
from portal.schemas.profile import (
    ProfilePage, ProfilePublic, ProfileStatsPublic, ProfileUpdate, SolvedChallengePublic, TeamPublic,
)
from portal.services.assets import AssetFile, AssetStore, UnsupportedAssetType
from portal.services.catalog import SqlCatalog
from portal.services.media import read_limited, sniff_image
from portal.services.profiles import SqlProfiles
from portal.services.progress import ProfileStats, compute_stats
from portal.services.storage import BackendUnavailable, ObjectRejected
from portal.services.submission_log import SqlSubmissionLog

router = APIRouter(prefix="/profiles", tags=["profiles"])

def _to_profile_public(p: Profile) -> ProfilePublic:
    return ProfilePublic(
        user_id=p.user_id, username=p.username, display_name=p.display_name,
        avatar_url=p.avatar_url, bio=p.bio, country=p.country, team_id=p.team_id,
        total_points=p.total_points, challenges_solved=p.challenges_solved,
        rank=p.rank, created_at=p.created_at,
    )

def _to_stats_public(s: ProfileStats) -> ProfileStatsPublic:
    return ProfileStatsPublic(
        total_points=s.total_points,
        solved_count=s.solved_count,
        rank=s.rank,
        first_blood_count=s.first_blood_count,
        completion_percent=s.completion_percent,
        category_breakdown=s.category_breakdown,
        solved_challenges=[
            SolvedChallengePublic(
                id=e.challenge_id,
                title=e.challenge.title if e.challenge else "Unknown",
                category=e.category,
                difficulty=e.challenge.difficulty if e.challenge else None,
                points=e.points,
                solved_at=e.solved_at,
                is_first_blood=e.is_first_blood,
            ) for e in s.solved_challenges
        ],
        unresolved_challenge_ids=s.unresolved_challenge_ids,
    )

async def _profile_page(
    user_id: UUID,
    viewer: CurrentUser,
    profiles: SqlProfiles,
    catalog: SqlCatalog,
    submissions: SqlSubmissionLog,
) -> ProfilePage:
    profile = await profiles.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")

    team = await catalog.get_team(profile.team_id) if profile.team_id else None
    events = await submissions.list_correct_submissions(user_id)
    total_active = await catalog.count_active_challenges()
    # Events the log could not join get one more lookup by id
    unjoined = {e.challenge_id for e in events if e.challenge is None}
    refs = await catalog.get_challenges(unjoined) if unjoined else {}
    # Rank is maintained by the scoring service on the profile row
    stats = compute_stats(
        user_id, events,
        total_active_challenges=total_active,
        catalog=refs,
        rank_lookup=lambda _uid: profile.rank,
    )
    return ProfilePage(
        profile=_to_profile_public(profile),
        team=TeamPublic(id=team.id, name=team.name, avatar_url=team.avatar_url) if team else None,
        stats=_to_stats_public(stats),
        is_own_profile=(viewer.id == profile.user_id),
        podium=stats.rank is not None and 1 <= stats.rank <= 3,
    )

@router.get("/me", response_model=ProfilePage)
async def my_profile(
    profiles: SqlProfiles = Depends(get_profiles),
    catalog: SqlCatalog = Depends(get_catalog),
    submissions: SqlSubmissionLog = Depends(get_submission_log),
    user: CurrentUser = Depends(get_current_user),
):
    return await _profile_page(user.id, user, profiles, catalog, submissions)

@router.patch("/me", response_model=ProfilePublic)
async def update_my_profile(
    payload: ProfileUpdate,
    profiles: SqlProfiles = Depends(get_profiles),
    user: CurrentUser = Depends(get_current_user),
):
    profile = await profiles.update_profile(user.id, payload.model_dump(exclude_unset=True))
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _to_profile_public(profile)

@router.put("/me/avatar", response_model=ProfilePublic)
async def replace_my_avatar(
    file: UploadFile = File(..., description="PNG, JPEG, WebP or GIF image"),
    profiles: SqlProfiles = Depends(get_profiles),
    store: AssetStore = Depends(get_asset_store),
    user: CurrentUser = Depends(get_current_user),
):
    data = await read_limited(file, settings.max_upload_bytes)
    if data is None:
        raise HTTPException(status_code=413, detail="Avatar too large")
    try:
        mime, ext = sniff_image(data)
    except UnsupportedAssetType as e:
        raise HTTPException(status_code=415, detail=str(e))

    async with avatar_locks(user.id):
        profile = await profiles.get_profile(user.id)
        if not profile:
            raise HTTPException(status_code=404, detail="Profile not found")
        try:
            record = await store.replace_single_slot(
                user.id, settings.avatar_extensions,
                AssetFile(f"avatar.{ext}", data, mime),
                bucket=settings.bucket_avatars,
                current_key=profile.avatar_key,
            )
        except UnsupportedAssetType as e:
            raise HTTPException(status_code=415, detail=str(e))
        except BackendUnavailable as e:
            raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
        except ObjectRejected as e:
            raise HTTPException(status_code=502, detail=f"Storage rejected avatar: {e}")
        # Persisting the URL is ours, not the asset store's
        profile = await profiles.set_avatar(user.id, record.public_url, record.key.path)
    return _to_profile_public(profile)

@router.get("/{user_id}", response_model=ProfilePage)
async def get_profile(
    user_id: UUID,
    profiles: SqlProfiles = Depends(get_profiles),
    catalog: SqlCatalog = Depends(get_catalog),
    submissions: SqlSubmissionLog = Depends(get_submission_log),
    user: CurrentUser = Depends(get_current_user),
):
    return await _profile_page(user_id, user, profiles, catalog, submissions)
