from __future__ import annotations
import io
from functools import lru_cache
from typing import Iterable, Protocol
from urllib.parse import quote
import structlog
import urllib3
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error, ServerError, InvalidResponseError
from urllib3.exceptions import HTTPError as TransportError
from portal.config import settings

log = structlog.get_logger()

# S3 error codes worth retrying; everything else is a definitive rejection
TRANSIENT_CODES = {"InternalError", "ServiceUnavailable", "SlowDown", "RequestTimeout", "ServerBusy"}


class StorageError(Exception):
    retryable = False


class BackendUnavailable(StorageError):
    """Transient: connection failure, timeout or a 5xx from the object store."""
    retryable = True


class ObjectRejected(StorageError):
    """The store answered and refused the request (bad bucket, existing key, ...)."""


class StorageTimeout(BackendUnavailable):
    """A call outlived the store timeout. `completed` tells whether it succeeded in the end."""

    def __init__(self, message: str, completed: bool = False):
        super().__init__(message)
        self.completed = completed


class StorageBackend(Protocol):
    def put(self, bucket: str, key: str, data: bytes, content_type: str, upsert: bool = False) -> None: ...
    def delete(self, bucket: str, keys: Iterable[str]) -> None: ...
    def public_url(self, bucket: str, key: str) -> str: ...


def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "").rstrip("/")
    return host, secure


def public_object_url(base: str, bucket: str, key: str) -> str:
    # Key goes in verbatim after "/{bucket}/"; only percent-encoding is applied
    return f"{base.rstrip('/')}/{bucket}/{quote(key, safe='/')}"


def _translate(err: Exception, op: str, bucket: str, key: str | None = None) -> StorageError:
    if isinstance(err, S3Error):
        if err.code in TRANSIENT_CODES:
            return BackendUnavailable(f"{op} {bucket}/{key or ''}: {err.code}")
        return ObjectRejected(f"{op} {bucket}/{key or ''}: {err.code}")
    return BackendUnavailable(f"{op} {bucket}/{key or ''}: {err}")


class MinioBackend:
    def __init__(self, client: Minio, public_base: str):
        self._client = client
        self.public_base = public_base

    @classmethod
    def from_settings(cls) -> "MinioBackend":
        host, secure = _parse_endpoint(settings.s3_endpoint)
        # Bounded sockets so no worker thread outlives the store timeout for long
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(
                connect=settings.storage_connect_timeout_seconds,
                read=settings.storage_read_timeout_seconds,
            ),
            maxsize=max(10, settings.upload_concurrency * 2),
            retries=urllib3.Retry(
                total=settings.storage_retries,
                backoff_factor=0.2,
                status_forcelist=[500, 502, 503, 504],
            ),
        )
        client = Minio(
            host,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            secure=secure,
            region=settings.s3_region,
            http_client=http_client,
        )
        return cls(client, settings.s3_public_url_base)

    def ensure_buckets(self, buckets: Iterable[str]) -> None:
        for bucket in buckets:
            try:
                if not self._client.bucket_exists(bucket):
                    self._client.make_bucket(bucket)
                    log.info("bucket_created", bucket=bucket)
            except S3Error as e:
                # Creation may race with another replica
                if e.code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                    raise _translate(e, "make_bucket", bucket)
            except (ServerError, InvalidResponseError, TransportError) as e:
                raise _translate(e, "make_bucket", bucket)

    def _exists(self, bucket: str, key: str) -> bool:
        try:
            self._client.stat_object(bucket, key)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject", "ResourceNotFound"):
                return False
            raise

    def put(self, bucket: str, key: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        try:
            if not upsert and self._exists(bucket, key):
                raise ObjectRejected(f"put {bucket}/{key}: object already exists")
            self._client.put_object(
                bucket, key, io.BytesIO(data), length=len(data), content_type=content_type
            )
        except (S3Error, ServerError, InvalidResponseError, TransportError) as e:
            raise _translate(e, "put", bucket, key)

    def delete(self, bucket: str, keys: Iterable[str]) -> None:
        objects = [DeleteObject(k) for k in keys]
        if not objects:
            return
        try:
            # remove_objects is lazy; errors only surface while iterating
            errors = list(self._client.remove_objects(bucket, objects))
        except (S3Error, ServerError, InvalidResponseError, TransportError) as e:
            raise _translate(e, "delete", bucket)
        failed = [e for e in errors if e.code not in ("NoSuchKey", "NoSuchObject")]
        if failed:
            first = failed[0]
            if first.code in TRANSIENT_CODES:
                raise BackendUnavailable(f"delete {bucket}/{first.name}: {first.code}")
            raise ObjectRejected(f"delete {bucket}/{first.name}: {first.code}")

    def public_url(self, bucket: str, key: str) -> str:
        return public_object_url(self.public_base, bucket, key)


@lru_cache(maxsize=1)
def get_storage_backend() -> MinioBackend:
    return MinioBackend.from_settings()
