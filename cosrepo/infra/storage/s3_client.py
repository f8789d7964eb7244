"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
Tencent COS, AWS S3, MinIO, and other S3-compatible object storage services.

Every request goes through ``S3StorageClient._call``, the single boundary
that records metrics and translates botocore failures into ``StorageError``
subclasses.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from cosrepo.infra.observability.metrics import LATENCY, REQUESTS
from cosrepo.infra.storage.client import (
    Body,
    CompletedPart,
    DeleteObjectError,
    MultipartUpload,
    ObjectListing,
    ObjectNotFoundError,
    ObjectSummary,
    StorageError,
    StorageTransportError,
)

if TYPE_CHECKING:
    from cosrepo.common.config import RepositorySettings

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})
USER_AGENT_EXTRA = "cosrepo"


def _is_not_found(exc: ClientError) -> bool:
    response = getattr(exc, "response", None) or {}
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    code = str(response.get("Error", {}).get("Code", ""))
    return status == 404 or code in _NOT_FOUND_CODES


class S3ObjectStream:
    """Body of a GET object response."""

    def __init__(self, body: Any, content_length: int | None) -> None:
        self._body = body
        self._content_length = content_length
        self.aborted = False

    @property
    def content_length(self) -> int | None:
        return self._content_length

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read(size if size >= 0 else None)
        except (BotoCoreError, OSError) as exc:
            raise StorageTransportError(f"Failed to read object body: {exc}") from exc

    def abort(self) -> None:
        # Closing the raw response drops the connection instead of draining it
        self.aborted = True
        self._body.close()

    def close(self) -> None:
        self._body.close()


class S3StorageClient:
    """S3-compatible object storage client.

    Supports Tencent COS, AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "RepositorySettings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Repository settings containing the client configuration.
        """
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "RepositorySettings") -> Any:
        """Create a boto3 S3 client from settings."""
        import boto3
        from botocore.config import Config

        addressing_style = (settings.COS_ADDRESSING_STYLE or "virtual").strip().lower()
        config = Config(
            s3={"addressing_style": addressing_style},
            user_agent_extra=USER_AGENT_EXTRA,
            # Only the range reader retries, see RetryingRangeReader
            retries={"max_attempts": 1, "mode": "standard"},
        )

        return boto3.client(
            "s3",
            endpoint_url=settings.COS_ENDPOINT_URL,
            region_name=settings.COS_REGION,
            aws_access_key_id=settings.COS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.COS_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.COS_USE_SSL),
            config=config,
        )

    @property
    def region(self) -> str | None:
        return self._settings.COS_REGION or None

    def _call(self, operation: str, failure: str, **params: Any) -> Any:
        """Invoke one boto3 operation, translating its failures."""
        method = getattr(self._client, operation)
        outcome = "error"
        start = time.perf_counter()
        try:
            response = method(**params)
            outcome = "ok"
            return response
        except ClientError as exc:
            if _is_not_found(exc):
                outcome = "not_found"
                raise ObjectNotFoundError(f"{failure}: {exc}") from exc
            raise StorageError(f"{failure}: {exc}") from exc
        except BotoCoreError as exc:
            outcome = "transport_error"
            raise StorageTransportError(f"{failure}: {exc}") from exc
        except Exception as exc:
            raise StorageError(f"{failure}: {exc}") from exc
        finally:
            REQUESTS.labels(operation, outcome).inc()
            LATENCY.labels(operation).observe(time.perf_counter() - start)

    def object_exists(self, *, bucket: str, object_key: str) -> bool:
        """Check whether an object exists with a HEAD request."""
        try:
            self._call(
                "head_object",
                "Failed to get object metadata",
                Bucket=bucket,
                Key=object_key,
            )
        except ObjectNotFoundError:
            return False
        return True

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        start: int | None = None,
        end: int | None = None,
    ) -> S3ObjectStream:
        """Open a stream over an object or an inclusive byte range of it."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if start is not None or end is not None:
            first = start or 0
            last = "" if end is None else str(int(end))
            params["Range"] = f"bytes={int(first)}-{last}"

        response = self._call("get_object", "Failed to get object", **params)

        length = response.get("ContentLength")
        return S3ObjectStream(
            response["Body"], int(length) if length is not None else None
        )

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: Body,
        content_length: int,
    ) -> str | None:
        """Upload a whole object in a single request."""
        response = self._call(
            "put_object",
            "Failed to put object",
            Bucket=bucket,
            Key=object_key,
            Body=body,
            ContentLength=int(content_length),
        )
        return response.get("ETag")

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        response = self._call(
            "create_multipart_upload",
            "Failed to create multipart upload",
            Bucket=bucket,
            Key=object_key,
        )

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: Body,
        size: int,
        last_part: bool = False,
    ) -> CompletedPart:
        """Upload one part; ``last_part`` carries no meaning for the S3 API."""
        response = self._call(
            "upload_part",
            f"Failed to upload part {part_number}",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            PartNumber=int(part_number),
            Body=body,
            ContentLength=int(size),
        )

        etag = response.get("ETag")
        if not etag:
            raise StorageError(f"S3 response missing ETag for part {part_number}")
        return CompletedPart(part_number=int(part_number), etag=str(etag))

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in sorted(parts, key=lambda p: p.part_number)
            ]
        }

        self._call(
            "complete_multipart_upload",
            "Failed to complete multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            MultipartUpload=multipart_payload,
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        self._call(
            "abort_multipart_upload",
            "Failed to abort multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
        )

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage."""
        self._call(
            "delete_object",
            "Failed to delete object",
            Bucket=bucket,
            Key=object_key,
        )

    def delete_objects(
        self,
        *,
        bucket: str,
        object_keys: Sequence[str],
        quiet: bool = True,
    ) -> list[DeleteObjectError]:
        """Delete several objects; only failures are reported in quiet mode."""
        response = self._call(
            "delete_objects",
            "Failed to delete objects",
            Bucket=bucket,
            Delete={
                "Objects": [{"Key": key} for key in object_keys],
                "Quiet": bool(quiet),
            },
        )

        return [
            DeleteObjectError(
                key=str(error.get("Key")),
                code=error.get("Code"),
                message=error.get("Message"),
            )
            for error in response.get("Errors") or []
        ]

    def list_objects(
        self,
        *,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ObjectListing:
        """List one page of objects under a prefix."""
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if delimiter:
            params["Delimiter"] = delimiter
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if max_keys:
            params["MaxKeys"] = int(max_keys)

        response = self._call("list_objects_v2", "Failed to list objects", **params)

        return ObjectListing(
            objects=[
                ObjectSummary(key=str(item["Key"]), size=int(item.get("Size") or 0))
                for item in response.get("Contents") or []
            ],
            common_prefixes=[
                str(item["Prefix"]) for item in response.get("CommonPrefixes") or []
            ],
            is_truncated=bool(response.get("IsTruncated")),
            next_continuation_token=response.get("NextContinuationToken"),
        )

    def close(self) -> None:
        """Release the pooled connections of the underlying client."""
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
