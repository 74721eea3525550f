"""
Asset lifecycle over the object store.

Keys live under "{owner_id}/" in a bucket:
  - attachments: "{owner_id}/{token}-{original name}", token = monotonic epoch millis
    plus six random digits
  - single slot:  "{owner_id}/avatar.{ext}", at most one extension live at a time

The store keeps no index of an owner's assets. Callers hold the known URLs in a
KnownAssets value and get an updated copy back.
"""
from __future__ import annotations
import asyncio
import re
import secrets
import threading
import time
import weakref
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Sequence
from urllib.parse import urlsplit, unquote
import structlog
from portal.services.storage import StorageBackend, StorageError, StorageTimeout

log = structlog.get_logger()

Slot = Literal["attachment", "single"]
TOKEN_PREFIX = re.compile(r"^\d+-(.+)$")


class KeyResolutionFailure(ValueError):
    pass


class UnsupportedAssetType(ValueError):
    pass


class PartialUploadFailure(Exception):
    def __init__(self, result: "UploadResult"):
        names = ", ".join(f.name for f in result.failed)
        super().__init__(f"{len(result.failed)} of {len(result.failed) + len(result.uploaded)} file(s) failed: {names}")
        self.result = result


@dataclass(frozen=True)
class AssetFile:
    name: str
    data: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class AssetKey:
    owner_id: str
    bucket: str
    slot: Slot
    filename: str

    @property
    def path(self) -> str:
        return f"{self.owner_id}/{self.filename}"


@dataclass(frozen=True)
class AssetRecord:
    key: AssetKey
    public_url: str

    @property
    def name(self) -> str:
        return display_name(self.key.filename)


@dataclass(frozen=True)
class UploadFailure:
    name: str
    reason: str
    retryable: bool = False


@dataclass
class UploadResult:
    uploaded: list[AssetRecord] = field(default_factory=list)
    failed: list[UploadFailure] = field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        return [r.public_url for r in self.uploaded]

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialUploadFailure(self)


@dataclass(frozen=True)
class KnownAssets:
    """Ordered, duplicate-free set of asset URLs owned by the caller."""
    urls: tuple[str, ...] = ()

    @classmethod
    def of(cls, urls: Iterable[str] | None) -> "KnownAssets":
        return cls().with_added(urls or ())

    def with_added(self, urls: Iterable[str]) -> "KnownAssets":
        out = list(self.urls)
        for u in urls:
            if u not in out:
                out.append(u)
        return KnownAssets(tuple(out))

    def without(self, url: str) -> "KnownAssets":
        return KnownAssets(tuple(u for u in self.urls if u != url))

    def __contains__(self, url: object) -> bool:
        return url in self.urls

    def __iter__(self):
        return iter(self.urls)

    def __len__(self) -> int:
        return len(self.urls)


@dataclass(frozen=True)
class RemoveOutcome:
    key: str | None          # resolved storage key, None when nothing was deleted
    deleted: bool
    known: KnownAssets | None = None


class TokenClock:
    """
    Epoch-millisecond tokens, strictly increasing within the process.

    Share one clock per process; `token()` appends six random digits so keys
    minted by separate workers in the same millisecond stay distinct.
    """

    def __init__(self, now_ms: Callable[[], int] | None = None):
        self._now_ms = now_ms or (lambda: time.time_ns() // 1_000_000)
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._last = max(self._now_ms(), self._last + 1)
            return self._last

    def token(self) -> str:
        return f"{self.next()}{secrets.randbelow(10**6):06d}"


class OwnerLocks:
    """One asyncio.Lock per owner; serializes single-slot replacement."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def __call__(self, owner_id) -> asyncio.Lock:
        key = str(owner_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def display_name(url_or_key: str) -> str:
    """Filename for display: last path segment without the "{token}-" prefix."""
    path = urlsplit(url_or_key).path if "://" in url_or_key else url_or_key
    name = unquote(path.rsplit("/", 1)[-1])
    m = TOKEN_PREFIX.match(name)
    return m.group(1) if m else name


def _safe_name(name: str) -> str:
    base = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    return base if base not in ("", ".", "..") else "file"


def _extension(name: str) -> str:
    base = _safe_name(name)
    return base.rsplit(".", 1)[-1].lower() if "." in base else ""


class AssetStore:
    def __init__(
        self,
        backend: StorageBackend,
        *,
        concurrency: int = 4,
        timeout: float = 30.0,
        single_slot_bucket: str = "avatars",
        single_slot_stem: str = "avatar",
        clock: TokenClock | None = None,
    ):
        self.backend = backend
        self.concurrency = max(1, concurrency)
        self.timeout = timeout
        self.single_slot_bucket = single_slot_bucket
        self.single_slot_stem = single_slot_stem
        self.clock = clock or TokenClock()

    async def _call(self, fn, *args):
        # A storage thread cannot be cancelled: on timeout it is awaited to the
        # end before the failure is raised, so no write or delete lands later.
        call = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        done, _ = await asyncio.wait({call}, timeout=self.timeout)
        if call in done:
            return call.result()
        op = getattr(fn, "__name__", "storage call")
        log.warning("storage_call_slow", op=op, timeout=self.timeout)
        message = f"{op} timed out after {self.timeout}s"
        try:
            await call
        except StorageError as e:
            raise StorageTimeout(message, completed=False) from e
        raise StorageTimeout(message, completed=True)

    async def _discard(self, owner: str, bucket: str, key: str) -> None:
        try:
            await self._call(self.backend.delete, bucket, [key])
        except StorageError as e:
            log.error("asset_orphaned", owner_id=owner, bucket=bucket, key=key, error=str(e))

    # ---------- keys & urls ----------

    def public_url_for(self, owner_id, bucket: str, key: str | AssetKey) -> str:
        path = key.path if isinstance(key, AssetKey) else key
        owner = str(owner_id)
        if not path.startswith(f"{owner}/") or path == f"{owner}/":
            raise KeyResolutionFailure(f"{path!r} is outside {owner}/")
        return self.backend.public_url(bucket, path)

    def resolve_key(self, owner_id, bucket: str, url_or_key: str) -> str | None:
        """
        Map a public URL or storage key back to the key.
        Returns None for a bare client-side name that was never stored.
        """
        owner = str(owner_id)
        target = url_or_key.strip()
        if "://" in target:
            marker = f"/{bucket}/"
            _, sep, tail = urlsplit(target).path.partition(marker)
            if not sep or not tail:
                raise KeyResolutionFailure(f"no {marker!r} segment in {target!r}")
            key = unquote(tail)
        elif "/" in target:
            key = target
        else:
            return None
        if not key.startswith(f"{owner}/") or key == f"{owner}/":
            raise KeyResolutionFailure(f"{key!r} is outside {owner}/")
        return key

    # ---------- operations ----------

    async def upload(self, owner_id, bucket: str, files: Sequence[AssetFile]) -> UploadResult:
        owner = str(owner_id)
        # Tokens are drawn up front so keys follow input order
        keys = [AssetKey(owner, bucket, "attachment", f"{self.clock.token()}-{_safe_name(f.name)}") for f in files]
        sem = asyncio.Semaphore(self.concurrency)

        async def put_one(f: AssetFile, key: AssetKey) -> AssetRecord | UploadFailure:
            async with sem:
                try:
                    await self._call(self.backend.put, bucket, key.path, f.data, f.content_type, False)
                except StorageError as e:
                    if isinstance(e, StorageTimeout) and e.completed:
                        # Reported as failed, so the late object is removed again
                        await self._discard(owner, bucket, key.path)
                    log.warning("asset_upload_failed", owner_id=owner, bucket=bucket, name=f.name,
                                key=key.path, error=str(e), retryable=e.retryable)
                    return UploadFailure(f.name, str(e), e.retryable)
            return AssetRecord(key, self.backend.public_url(bucket, key.path))

        outcomes = await asyncio.gather(*(put_one(f, k) for f, k in zip(files, keys)))
        result = UploadResult(
            uploaded=[o for o in outcomes if isinstance(o, AssetRecord)],
            failed=[o for o in outcomes if isinstance(o, UploadFailure)],
        )
        log.info("assets_uploaded", owner_id=owner, bucket=bucket,
                 uploaded=len(result.uploaded), failed=len(result.failed))
        return result

    async def remove(self, owner_id, bucket: str, url_or_key: str, known: KnownAssets | None = None) -> RemoveOutcome:
        """
        Delete one asset. Unresolvable targets are logged and only dropped from
        `known`; backend errors on a resolvable key propagate and leave `known` as is.
        """
        owner = str(owner_id)
        try:
            key = self.resolve_key(owner, bucket, url_or_key)
        except KeyResolutionFailure as e:
            log.warning("asset_key_unresolved", owner_id=owner, bucket=bucket, target=url_or_key, reason=str(e))
            key = None
        if key is not None:
            await self._call(self.backend.delete, bucket, [key])
            log.info("asset_removed", owner_id=owner, bucket=bucket, key=key)
        return RemoveOutcome(
            key=key,
            deleted=key is not None,
            known=known.without(url_or_key) if known is not None else None,
        )

    async def replace_single_slot(
        self,
        owner_id,
        candidate_extensions: Iterable[str],
        new_file: AssetFile,
        bucket: str | None = None,
        current_key: str | None = None,
    ) -> AssetRecord:
        owner = str(owner_id)
        bucket = bucket or self.single_slot_bucket
        exts = {e.lower().lstrip(".") for e in candidate_extensions if e}
        ext = _extension(new_file.name)
        if ext not in exts:
            raise UnsupportedAssetType(f"extension {ext or '(none)'!r} not in {sorted(exts)}")

        stale = {f"{owner}/{self.single_slot_stem}.{e}" for e in exts}
        if current_key and current_key.startswith(f"{owner}/"):
            stale.add(current_key)
        # Delete must finish before the put: the new key may be one of the stale ones
        await self._call(self.backend.delete, bucket, sorted(stale))

        key = AssetKey(owner, bucket, "single", f"{self.single_slot_stem}.{ext}")
        await self._call(self.backend.put, bucket, key.path, new_file.data, new_file.content_type, True)
        log.info("asset_slot_replaced", owner_id=owner, bucket=bucket, key=key.path, cleared=len(stale))
        return AssetRecord(key, self.backend.public_url(bucket, key.path))
