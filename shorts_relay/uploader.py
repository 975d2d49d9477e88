"""Upload dispatcher: direct bucket uploads through boto3 or PUT to a pre-signed URL."""

import mimetypes
import os
import sys
import threading
from dataclasses import dataclass
from typing import Optional

import boto3
import requests
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from .errors import (
    DispatchUnavailable,
    UploadFailed,
    UploadHttpError,
    UploadNetworkError,
    UploadStreamError,
    UploadTimeout,
)
from .models import (
    DEFAULT_CONTENT_TYPE,
    DirectBucketTarget,
    PreSignedPutTarget,
    TargetKind,
    UploadReceipt,
    UploadTarget,
)
from .progress import ProgressCallback

CONNECT_TIMEOUT = 15.0
DEFAULT_UPLOAD_TIMEOUT = 120.0
CHUNK_SIZE = 64 * 1024


def guess_content_type(path: str) -> str:
    """Content type from the file extension, or a generic binary type."""
    content_type, _ = mimetypes.guess_type(path)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class StorageSettings:
    """Connection settings for an S3-compatible bucket (MinIO or AWS)."""
    endpoint: Optional[str] = None
    port: Optional[int] = None
    use_ssl: bool = True
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    bucket: Optional[str] = None
    region: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.bucket)

    @property
    def endpoint_url(self) -> Optional[str]:
        if not self.endpoint:
            return None
        endpoint = self.endpoint.rstrip("/")
        if "://" not in endpoint:
            scheme = "https" if self.use_ssl else "http"
            endpoint = f"{scheme}://{endpoint}"
        if self.port:
            host = endpoint.split("://", 1)[1]
            if ":" not in host:
                endpoint = f"{endpoint}:{self.port}"
        return endpoint


class ProgressReader:
    """File wrapper that reports every chunk handed to the HTTP layer."""

    def __init__(self, handle, total: int, on_progress: ProgressCallback) -> None:
        self._handle = handle
        self.total = total
        self.on_progress = on_progress
        self.bytes_read = 0
        self.read_error: Optional[OSError] = None

    def __len__(self) -> int:
        return self.total

    def read(self, size: int = -1) -> bytes:
        try:
            chunk = self._handle.read(size)
        except OSError as exc:
            self.read_error = exc
            raise
        if chunk:
            self.bytes_read += len(chunk)
            percent = (self.bytes_read / self.total) * 100 if self.total else 100.0
            self.on_progress(min(100.0, percent), self.bytes_read, self.total)
        return chunk

    def __iter__(self):
        while True:
            chunk = self.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class _TransferProgress:
    """boto3 transfer callback; it may be invoked from several worker threads."""

    def __init__(self, total: int, on_progress: ProgressCallback) -> None:
        self.total = total
        self.on_progress = on_progress
        self.seen = 0
        self._lock = threading.Lock()

    def __call__(self, bytes_amount: int) -> None:
        with self._lock:
            self.seen += bytes_amount
            percent = (self.seen / self.total) * 100 if self.total else 100.0
            self.on_progress(min(100.0, percent), self.seen, self.total)


def _ignore_progress(percent: float, transferred: int, total: int) -> None:
    return None


class UploadDispatcher:
    """Streams a validated local file to its upload target."""

    def __init__(
        self,
        storage: Optional[StorageSettings] = None,
        session: Optional[requests.Session] = None,
        upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        s3_client=None,
    ) -> None:
        self.storage = storage or StorageSettings()
        self.session = session or requests.Session()
        self.upload_timeout = upload_timeout
        self.connect_timeout = connect_timeout
        self._s3_client = s3_client

    @property
    def s3_client(self):
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                endpoint_url=self.storage.endpoint_url,
                aws_access_key_id=self.storage.access_key,
                aws_secret_access_key=self.storage.secret_key,
                region_name=self.storage.region or "us-east-1",
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=self.connect_timeout,
                    read_timeout=self.upload_timeout,
                    s3={"addressing_style": "path"},
                ),
            )
        return self._s3_client

    def upload_file(
        self,
        target: UploadTarget,
        local_path: str,
        content_type: Optional[str] = None,
        size_bytes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadReceipt:
        """Upload *local_path* to *target*; raises an UploadFailed variant on failure."""
        callback = on_progress or _ignore_progress
        content_type = content_type or guess_content_type(local_path)
        try:
            size = size_bytes if size_bytes is not None else os.path.getsize(local_path)
        except OSError as exc:
            raise UploadStreamError(f"Cannot read {local_path}: {exc}") from exc

        if target.kind is TargetKind.PRESIGNED_PUT:
            return self._put_presigned(target, local_path, content_type, size, callback)
        if target.kind is TargetKind.DIRECT_BUCKET:
            return self._put_bucket(target, local_path, content_type, size, callback)
        raise DispatchUnavailable(f"Unsupported upload target: {target!r}")

    def _put_presigned(
        self,
        target: PreSignedPutTarget,
        local_path: str,
        content_type: str,
        size: int,
        on_progress: ProgressCallback,
    ) -> UploadReceipt:
        print(f"[upload] PUT {size} bytes ({content_type}) for {target.object_key}")
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(size),
        }
        try:
            with open(local_path, "rb") as handle:
                reader = ProgressReader(handle, size, on_progress)
                try:
                    response = self.session.put(
                        target.url,
                        data=reader,
                        headers=headers,
                        timeout=(self.connect_timeout, self.upload_timeout),
                    )
                except requests.Timeout as exc:
                    raise UploadTimeout(f"Upload timed out: {exc}") from exc
                except requests.RequestException as exc:
                    if reader.read_error is not None:
                        raise UploadStreamError(
                            f"Failed reading {local_path} during upload: {reader.read_error}"
                        ) from exc
                    raise UploadNetworkError(f"Upload request failed: {exc}") from exc
        except OSError as exc:
            raise UploadStreamError(f"Failed reading {local_path} during upload: {exc}") from exc

        try:
            if not 200 <= response.status_code < 300:
                raise UploadHttpError(response.status_code, response.text.strip())
            etag = response.headers.get("ETag")
        finally:
            response.close()

        print(f"[upload] Stored {target.object_key} (HTTP {response.status_code})")
        return UploadReceipt(success=True, etag=etag.strip('"') if etag else None)

    def ensure_bucket(self, bucket: str) -> None:
        """Fail unless *bucket* exists; buckets are never created here."""
        try:
            self.s3_client.head_bucket(Bucket=bucket)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchBucket", "NotFound"):
                raise UploadFailed(f"Bucket {bucket} does not exist") from exc
            raise UploadFailed(f"Cannot access bucket {bucket}: {exc}") from exc
        except (ConnectTimeoutError, ReadTimeoutError) as exc:
            raise UploadTimeout(f"Storage endpoint timed out: {exc}") from exc
        except BotoCoreError as exc:
            raise UploadNetworkError(f"Storage endpoint unreachable: {exc}") from exc

    def _put_bucket(
        self,
        target: DirectBucketTarget,
        local_path: str,
        content_type: str,
        size: int,
        on_progress: ProgressCallback,
    ) -> UploadReceipt:
        self.ensure_bucket(target.bucket_name)
        print(f"[upload] Uploading {size} bytes ({content_type}) to {target.bucket_name}/{target.object_key}")
        try:
            self.s3_client.upload_file(
                local_path,
                target.bucket_name,
                target.object_key,
                ExtraArgs={"ContentType": content_type},
                Callback=_TransferProgress(size, on_progress),
            )
        except (S3UploadFailedError, ClientError) as exc:
            raise UploadFailed(f"Upload failed: {exc}") from exc
        except (ConnectTimeoutError, ReadTimeoutError) as exc:
            raise UploadTimeout(f"Upload timed out: {exc}") from exc
        except BotoCoreError as exc:
            raise UploadNetworkError(f"Upload request failed: {exc}") from exc
        except OSError as exc:
            raise UploadStreamError(f"Failed reading {local_path} during upload: {exc}") from exc

        etag = None
        try:
            head = self.s3_client.head_object(Bucket=target.bucket_name, Key=target.object_key)
            etag = str(head.get("ETag", "")).strip('"') or None
        except (ClientError, BotoCoreError) as exc:
            print(f"Warning: uploaded {target.object_key} but could not read its ETag: {exc}", file=sys.stderr)

        print(f"[upload] Stored {target.bucket_name}/{target.object_key}")
        return UploadReceipt(success=True, etag=etag)
