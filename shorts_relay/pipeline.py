"""Single-item pipeline: download, validate, pick an upload target and upload."""

import os
import sys
from typing import Optional

from .auth import TokenProvider
from .downloader import DownloadOrchestrator, cleanup_temp_file
from .errors import AuthTokenFailed, DispatchUnavailable, RelayError
from .models import (
    DEFAULT_NAMESPACE,
    DirectBucketTarget,
    PreSignedPutTarget,
    ProcessingOutcome,
    UploadTarget,
    WorkItem,
    build_object_key,
)
from .presigned import PreSignedUrlClient
from .progress import PHASE_UPLOAD, NullProgressSink, ProgressSink, StatusEvent, make_item_callback
from .uploader import UploadDispatcher, guess_content_type


class ItemPipeline:
    """Processes one work item end to end and always returns exactly one outcome.

    Only transient problems (no token, no usable upload route) escape as
    exceptions so the caller can requeue. Both are checked before the
    download starts, and the token is fetched again right before the upload.
    """

    def __init__(
        self,
        orchestrator: DownloadOrchestrator,
        dispatcher: UploadDispatcher,
        presigned_client: Optional[PreSignedUrlClient] = None,
        bucket_name: Optional[str] = None,
        namespace: str = DEFAULT_NAMESPACE,
        sink: Optional[ProgressSink] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.presigned_client = presigned_client
        self.bucket_name = bucket_name
        self.namespace = namespace
        self.sink = sink or NullProgressSink()

    @property
    def requires_auth(self) -> bool:
        return self.presigned_client is not None

    def check_dispatch(self) -> None:
        if self.presigned_client is None and not self.bucket_name:
            raise DispatchUnavailable(
                "No upload route configured (set an API base URL or a storage bucket)"
            )

    def _acquire_token(self, token_provider: Optional[TokenProvider]) -> Optional[str]:
        if not self.requires_auth:
            return None
        if token_provider is None:
            raise AuthTokenFailed("The pre-signed upload route needs an auth token provider")
        try:
            return token_provider.get_token()
        except AuthTokenFailed:
            raise
        except Exception as exc:
            raise AuthTokenFailed(f"Auth token provider failed: {type(exc).__name__}: {exc}") from exc

    def build_target(
        self,
        item: WorkItem,
        filename: str,
        content_type: str,
        auth_token: Optional[str],
    ) -> UploadTarget:
        if self.presigned_client is not None:
            grant = self.presigned_client.get_presigned_url(
                auth_token or "", item.item_id, filename, content_type
            )
            object_key = grant.object_key or build_object_key(self.namespace, item.item_id, filename)
            return PreSignedPutTarget(url=grant.upload_url, object_key=object_key)
        return DirectBucketTarget(
            bucket_name=self.bucket_name or "",
            object_key=build_object_key(self.namespace, item.item_id, filename),
        )

    def process(self, item: WorkItem, token_provider: Optional[TokenProvider] = None) -> ProcessingOutcome:
        self.check_dispatch()
        # Fail fast before downloading; a fresh token is fetched again before the upload
        self._acquire_token(token_provider)

        local_path: Optional[str] = None
        try:
            result = self.orchestrator.download_video(item.source_url, item.item_id)
            local_path = result.local_path
            filename = os.path.basename(local_path)
            content_type = guess_content_type(local_path)

            self.sink.report(StatusEvent(item.item_id, "Requesting upload destination..."))
            auth_token = self._acquire_token(token_provider)
            target = self.build_target(item, filename, content_type, auth_token)

            self.sink.report(StatusEvent(item.item_id, f"Uploading to {target.object_key}..."))
            self.dispatcher.upload_file(
                target,
                local_path,
                content_type=content_type,
                size_bytes=result.size_bytes,
                on_progress=make_item_callback(self.sink, item.item_id, PHASE_UPLOAD),
            )
            return ProcessingOutcome(
                item_id=item.item_id,
                owner_id=item.owner_id,
                success=True,
                storage_path=target.object_key,
            )
        except AuthTokenFailed:
            raise
        except RelayError as exc:
            return ProcessingOutcome(
                item_id=item.item_id,
                owner_id=item.owner_id,
                success=False,
                error_message=str(exc),
            )
        except Exception as exc:
            print(f"[ITEM {item.item_id}] Unexpected {type(exc).__name__}: {exc}", file=sys.stderr)
            return ProcessingOutcome(
                item_id=item.item_id,
                owner_id=item.owner_id,
                success=False,
                error_message=f"Unexpected error: {exc}",
            )
        finally:
            cleanup_temp_file(local_path)
