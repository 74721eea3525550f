from __future__ import annotations
import asyncio
import uuid
import pytest
from fastapi import status

from portal.config import settings

from fakes import auth_headers, make_challenge

BUCKET = "challenge-files"


def _multipart(*names: str):
    return [("files", (n, f"bytes of {n}".encode(), "application/octet-stream")) for n in names]


@pytest.mark.asyncio
async def test_upload_list_and_remove(api, catalog, backend):
    ch = make_challenge()
    catalog.challenges[ch.id] = ch
    hdrs = auth_headers(uuid.uuid4())

    async with api as ac:
        r = await ac.post(f"/challenges/{ch.id}/files", headers=hdrs, files=_multipart("chall.tar.gz", "solve.py"))
        assert r.status_code == status.HTTP_201_CREATED, r.text
        body = r.json()
        assert [f["name"] for f in body["uploaded"]] == ["chall.tar.gz", "solve.py"]
        assert body["failed"] == []
        assert [f["name"] for f in body["files"]] == ["chall.tar.gz", "solve.py"]
        assert ch.files == [f["url"] for f in body["uploaded"]]
        assert len(backend.keys(BUCKET, f"{ch.id}/")) == 2

        listing = (await ac.get(f"/challenges/{ch.id}/files", headers=hdrs)).json()
        assert [f["url"] for f in listing["files"]] == ch.files

        target = body["uploaded"][0]["url"]
        r = await ac.delete(f"/challenges/{ch.id}/files", headers=hdrs, params={"target": target})
        assert r.status_code == 200, r.text
        removed = r.json()
        assert removed["deleted_from_storage"] is True
        assert removed["key"] == body["uploaded"][0]["key"]
        assert [f["name"] for f in removed["files"]] == ["solve.py"]
        assert len(backend.keys(BUCKET, f"{ch.id}/")) == 1
        assert target not in ch.files


@pytest.mark.asyncio
async def test_partial_upload_reports_partition(api, catalog, backend):
    ch = make_challenge(files=["https://old.example/challenge-files/x/1-legacy.txt"])
    catalog.challenges[ch.id] = ch
    backend.fail_names = {"b.bin"}

    async with api as ac:
        r = await ac.post(f"/challenges/{ch.id}/files", headers=auth_headers(uuid.uuid4()),
                          files=_multipart("a.bin", "b.bin", "c.bin"))
    assert r.status_code == 207
    body = r.json()
    assert [f["name"] for f in body["uploaded"]] == ["a.bin", "c.bin"]
    assert body["failed"] == [{"name": "b.bin", "reason": body["failed"][0]["reason"], "retryable": True}]
    assert len(ch.files) == 3
    assert ch.files[0].endswith("1-legacy.txt")


@pytest.mark.asyncio
async def test_remove_unresolvable_url_updates_list_only(api, catalog, backend):
    stray = "https://somewhere.example/files/notes.txt"
    ch = make_challenge(files=[stray])
    catalog.challenges[ch.id] = ch

    async with api as ac:
        r = await ac.delete(f"/challenges/{ch.id}/files", headers=auth_headers(uuid.uuid4()), params={"target": stray})
    assert r.status_code == 200
    assert r.json()["deleted_from_storage"] is False
    assert ch.files == []
    assert backend.calls == []


@pytest.mark.asyncio
async def test_remove_during_outage_is_503_and_keeps_list(api, catalog, backend):
    ch = make_challenge()
    url = backend.public_url(BUCKET, f"{ch.id}/1700000000000-a.txt")
    ch.files = [url]
    catalog.challenges[ch.id] = ch
    backend.down = True

    async with api as ac:
        r = await ac.delete(f"/challenges/{ch.id}/files", headers=auth_headers(uuid.uuid4()), params={"target": url})
    assert r.status_code == 503
    assert ch.files == [url]


@pytest.mark.asyncio
async def test_unknown_challenge_is_404(api):
    async with api as ac:
        r = await ac.get(f"/challenges/{uuid.uuid4()}/files", headers=auth_headers(uuid.uuid4()))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_concurrent_uploads_keep_both_files(api, catalog, backend):
    ch = make_challenge()
    catalog.challenges[ch.id] = ch
    backend.delay = 0.05
    hdrs = auth_headers(uuid.uuid4())

    async with api as ac:
        first, second = await asyncio.gather(
            ac.post(f"/challenges/{ch.id}/files", headers=hdrs, files=_multipart("a.txt")),
            ac.post(f"/challenges/{ch.id}/files", headers=hdrs, files=_multipart("b.txt")),
        )
    assert first.status_code == second.status_code == 201
    uploaded = {f["url"] for r in (first, second) for f in r.json()["uploaded"]}
    assert set(ch.files) == uploaded
    assert len(ch.files) == 2


@pytest.mark.asyncio
async def test_oversize_file_is_a_failure_without_upload(api, catalog, backend, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 16)
    ch = make_challenge()
    catalog.challenges[ch.id] = ch
    files = [
        ("files", ("small.txt", b"tiny", "text/plain")),
        ("files", ("huge.bin", b"x" * 64, "application/octet-stream")),
    ]
    async with api as ac:
        r = await ac.post(f"/challenges/{ch.id}/files", headers=auth_headers(uuid.uuid4()), files=files)
    assert r.status_code == 207
    body = r.json()
    assert [f["name"] for f in body["uploaded"]] == ["small.txt"]
    assert body["failed"][0]["name"] == "huge.bin"
    assert body["failed"][0]["retryable"] is False
    assert len(backend.keys(BUCKET)) == 1
