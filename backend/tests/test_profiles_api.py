from __future__ import annotations
import io
import uuid
from datetime import datetime, timedelta, timezone
import pytest
from PIL import Image

from portal.config import settings
from portal.models.challenge import Team
from portal.services.catalog import to_ref
from portal.services.progress import SubmissionEvent

from fakes import auth_headers, make_challenge, make_profile

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (4, 4), (0, 0, 0, 255)).save(buf, format="PNG")
    return buf.getvalue()


def gif_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (10, 10, 10)).save(buf, format="GIF")
    return buf.getvalue()


def _solve(user_id, ch, minutes: int, first_blood: bool = False) -> SubmissionEvent:
    return SubmissionEvent(
        user_id=user_id, challenge_id=ch.id, created_at=T0 + timedelta(minutes=minutes),
        is_correct=True, is_first_blood=first_blood, challenge=to_ref(ch),
    )


@pytest.fixture
def seeded(catalog, submission_log, profiles):
    uid = uuid.uuid4()
    web = make_challenge(title="Cookie Monster", category="web", points=100)
    web2 = make_challenge(title="SSRF Me", category="web", points=100)
    pwn = make_challenge(title="Heap Feng Shui", category="pwn", points=200)
    for ch in [web, web2, pwn]:
        catalog.challenges[ch.id] = ch
    for _ in range(7):
        extra = make_challenge(title="Filler")
        catalog.challenges[extra.id] = extra
    retired = make_challenge(title="Retired", is_active=False)
    catalog.challenges[retired.id] = retired

    team = Team(id=uuid.uuid4(), name="0xFF", avatar_url=None, created_at=T0)
    catalog.teams[team.id] = team
    profiles.rows[uid] = make_profile(uid, team_id=team.id, rank=2, total_points=400, challenges_solved=3)
    submission_log.events = [
        _solve(uid, web, 1, first_blood=True),
        _solve(uid, pwn, 30),
        _solve(uid, web2, 10),
    ]
    return uid, team, [web, web2, pwn]


@pytest.mark.asyncio
async def test_own_profile_page_has_stats(api, seeded):
    uid, team, (web, web2, pwn) = seeded
    async with api as ac:
        r = await ac.get("/profiles/me", headers=auth_headers(uid))
    assert r.status_code == 200, r.text
    page = r.json()
    assert page["is_own_profile"] is True
    assert page["podium"] is True
    assert page["team"]["name"] == "0xFF"

    stats = page["stats"]
    assert stats["total_points"] == 400
    assert stats["solved_count"] == 3
    assert stats["first_blood_count"] == 1
    assert stats["completion_percent"] == 30
    assert stats["rank"] == 2
    assert stats["category_breakdown"] == {"pwn": 1, "web": 2}
    assert [s["title"] for s in stats["solved_challenges"]] == ["Heap Feng Shui", "SSRF Me", "Cookie Monster"]
    assert stats["solved_challenges"][2]["is_first_blood"] is True


@pytest.mark.asyncio
async def test_other_profile_is_not_own(api, seeded):
    uid, _, _ = seeded
    async with api as ac:
        r = await ac.get(f"/profiles/{uid}", headers=auth_headers(uuid.uuid4()))
    assert r.status_code == 200
    assert r.json()["is_own_profile"] is False


@pytest.mark.asyncio
async def test_deleted_challenge_shows_as_unknown(api, catalog, submission_log, profiles):
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid)
    gone = uuid.uuid4()
    submission_log.events = [SubmissionEvent(uid, gone, T0, True)]
    async with api as ac:
        stats = (await ac.get("/profiles/me", headers=auth_headers(uid))).json()["stats"]
    assert stats["total_points"] == 0
    assert stats["category_breakdown"] == {"unknown": 1}
    assert stats["solved_challenges"][0]["title"] == "Unknown"
    assert stats["unresolved_challenge_ids"] == [str(gone)]
    assert stats["completion_percent"] == 0


@pytest.mark.asyncio
async def test_missing_profile_is_404(api):
    async with api as ac:
        r = await ac.get(f"/profiles/{uuid.uuid4()}", headers=auth_headers(uuid.uuid4()))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_patch_blank_fields_become_null(api, profiles):
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid, display_name="old", bio="hi", country="NL")
    async with api as ac:
        r = await ac.patch("/profiles/me", headers=auth_headers(uid), json={"display_name": "  ", "bio": "new bio"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["display_name"] is None
    assert body["bio"] == "new bio"
    assert body["country"] == "NL"


@pytest.mark.asyncio
async def test_avatar_replacement_leaves_single_object(api, profiles, backend):
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid)
    hdrs = auth_headers(uid)

    async with api as ac:
        r = await ac.put("/profiles/me/avatar", headers=hdrs, files={"file": ("me.png", png_bytes(), "image/png")})
        assert r.status_code == 200, r.text
        assert backend.keys("avatars", f"{uid}/") == [f"{uid}/avatar.png"]

        # Client-supplied name and type are ignored in favour of the sniffed format
        r = await ac.put("/profiles/me/avatar", headers=hdrs,
                         files={"file": ("me.png", gif_bytes(), "image/png")})
        assert r.status_code == 200, r.text

    assert backend.keys("avatars", f"{uid}/") == [f"{uid}/avatar.gif"]
    assert backend.objects[("avatars", f"{uid}/avatar.gif")][1] == "image/gif"
    assert r.json()["avatar_url"] == backend.public_url("avatars", f"{uid}/avatar.gif")
    assert profiles.rows[uid].avatar_key == f"{uid}/avatar.gif"


@pytest.mark.asyncio
async def test_avatar_rejects_non_images(api, profiles, backend):
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid)
    async with api as ac:
        r = await ac.put("/profiles/me/avatar", headers=auth_headers(uid),
                         files={"file": ("me.png", b"#!/bin/sh\necho hi\n", "image/png")})
    assert r.status_code == 415
    assert backend.calls == []


@pytest.mark.asyncio
async def test_avatar_outage_is_503_and_keeps_old_avatar(api, profiles, backend):
    uid = uuid.uuid4()
    old = backend.public_url("avatars", f"{uid}/avatar.jpg")
    profiles.rows[uid] = make_profile(uid, avatar_url=old, avatar_key=f"{uid}/avatar.jpg")
    backend.down = True
    async with api as ac:
        r = await ac.put("/profiles/me/avatar", headers=auth_headers(uid),
                         files={"file": ("me.png", png_bytes(), "image/png")})
    assert r.status_code == 503
    assert profiles.rows[uid].avatar_url == old


@pytest.mark.asyncio
async def test_unjoined_submission_is_resolved_from_catalog(api, catalog, submission_log, profiles):
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid)
    ch = make_challenge(title="Format String 101", category="pwn", points=150)
    catalog.challenges[ch.id] = ch
    submission_log.events = [SubmissionEvent(uid, ch.id, T0, True)]
    async with api as ac:
        stats = (await ac.get("/profiles/me", headers=auth_headers(uid))).json()["stats"]
    assert stats["total_points"] == 150
    assert stats["category_breakdown"] == {"pwn": 1}
    assert stats["solved_challenges"][0]["title"] == "Format String 101"
    assert stats["unresolved_challenge_ids"] == []


@pytest.mark.asyncio
async def test_oversize_avatar_is_413(api, profiles, backend, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 16)
    uid = uuid.uuid4()
    profiles.rows[uid] = make_profile(uid)
    async with api as ac:
        r = await ac.put("/profiles/me/avatar", headers=auth_headers(uid),
                         files={"file": ("me.png", png_bytes(), "image/png")})
    assert r.status_code == 413
    assert backend.calls == []
