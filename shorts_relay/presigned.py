"""Client for the backend endpoint that hands out pre-signed upload URLs."""

import sys
from typing import Optional

import requests

from .errors import InvalidPreSignedRequest, PreSignedUrlFailed
from .models import PreSignedUpload

PRESIGNED_URL_PATH = "/projects/presigned-url"
DEFAULT_TIMEOUT = 15.0
LOG_PREVIEW_CHARS = 200


class PreSignedUrlClient:
    """POSTs upload metadata to the backend and returns the upload URL it grants."""

    def __init__(
        self,
        api_base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not api_base_url or not api_base_url.strip():
            raise ValueError("api_base_url is required")
        base = api_base_url.strip().rstrip("/")
        if not base.startswith(("http://", "https://")):
            print(
                f"Warning: API base URL {base!r} has no http:// or https:// scheme; requests will likely fail",
                file=sys.stderr,
            )
        self.endpoint = base + PRESIGNED_URL_PATH
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_presigned_url(
        self,
        auth_token: str,
        item_id: str,
        filename: str,
        content_type: str,
    ) -> PreSignedUpload:
        """Request a one-time upload URL; no retries happen here."""
        if not auth_token:
            raise InvalidPreSignedRequest("An auth token is required to request an upload URL")
        if not filename:
            raise InvalidPreSignedRequest("A filename is required to request an upload URL")
        if not content_type:
            raise InvalidPreSignedRequest("A content type is required to request an upload URL")

        payload = {
            "short_id": item_id,
            "filename": filename,
            "content_type": content_type,
        }
        headers = {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
        }

        print(f"[presign] POST {self.endpoint} for {filename}")
        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise PreSignedUrlFailed(f"Pre-signed URL request timed out after {self.timeout:g}s") from exc
        except requests.RequestException as exc:
            raise PreSignedUrlFailed(f"Pre-signed URL request failed: {exc}") from exc

        body = response.text or ""
        print(f"[presign] Response {response.status_code}: {body[:LOG_PREVIEW_CHARS]}")

        if not 200 <= response.status_code < 300:
            raise PreSignedUrlFailed(
                f"Pre-signed URL request failed (HTTP {response.status_code}): {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise PreSignedUrlFailed(
                "Pre-signed URL response is not valid JSON",
                status_code=response.status_code,
                body=body,
            ) from exc

        upload_url = data.get("upload_url") if isinstance(data, dict) else None
        if not upload_url or not isinstance(upload_url, str):
            raise PreSignedUrlFailed(
                "Pre-signed URL response is missing upload_url",
                status_code=response.status_code,
                body=body,
            )

        object_key = data.get("object_key")
        if not isinstance(object_key, str) or not object_key.strip():
            object_key = None
        return PreSignedUpload(upload_url=upload_url, object_key=object_key)
