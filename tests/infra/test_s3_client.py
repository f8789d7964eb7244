"""Tests for S3 storage client."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, IncompleteReadError
from prometheus_client import REGISTRY

from cosrepo.infra.storage.client import (
    CompletedPart,
    DeleteObjectError,
    MultipartUpload,
    ObjectNotFoundError,
    StorageError,
    StorageTransportError,
)
from cosrepo.infra.storage.s3_client import S3ObjectStream, S3StorageClient


def _client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestS3StorageClient:
    """Test S3StorageClient implementation."""

    @pytest.fixture
    def mock_s3(self):
        """Mock boto3 S3 client."""
        mock_client = MagicMock()
        with patch.object(S3StorageClient, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def mock_settings(self):
        """Create mock settings for COS."""
        settings = MagicMock()
        settings.COS_ENDPOINT_URL = "http://localhost:9000"
        settings.COS_REGION = "ap-guangzhou"
        settings.COS_ACCESS_KEY_ID = "test-key"
        settings.COS_SECRET_ACCESS_KEY = "test-secret"
        settings.COS_USE_SSL = False
        settings.COS_ADDRESSING_STYLE = "path"
        return settings

    @pytest.fixture
    def client(self, mock_s3, mock_settings):
        """Create S3StorageClient with mocked boto3."""
        return S3StorageClient(settings=mock_settings)

    def test_object_exists(self, client, mock_s3):
        mock_s3.head_object.return_value = {"ContentLength": 3}

        assert client.object_exists(bucket="test-bucket", object_key="test/key")
        mock_s3.head_object.assert_called_once_with(Bucket="test-bucket", Key="test/key")

    def test_object_exists_not_found(self, client, mock_s3):
        """A 404 on HEAD means the object is absent."""
        labels = {"operation": "head_object", "outcome": "not_found"}
        before = _sample("cos_requests_total", labels)
        mock_s3.head_object.side_effect = _client_error("404", 404)

        assert not client.object_exists(bucket="test-bucket", object_key="test/key")
        assert _sample("cos_requests_total", labels) == before + 1

    def test_object_exists_access_denied(self, client, mock_s3):
        mock_s3.head_object.side_effect = _client_error("AccessDenied", 403)

        with pytest.raises(StorageError, match="Failed to get object metadata") as exc_info:
            client.object_exists(bucket="test-bucket", object_key="test/key")
        assert not isinstance(exc_info.value, ObjectNotFoundError)

    def test_get_object_with_range(self, client, mock_s3):
        body = MagicMock()
        body.read.return_value = b"abc"
        mock_s3.get_object.return_value = {"Body": body, "ContentLength": 3}

        stream = client.get_object(
            bucket="test-bucket", object_key="test/key", start=100, end=102
        )

        assert stream.content_length == 3
        assert stream.read(3) == b"abc"
        mock_s3.get_object.assert_called_once_with(
            Bucket="test-bucket", Key="test/key", Range="bytes=100-102"
        )

    def test_get_object_open_ended_range(self, client, mock_s3):
        mock_s3.get_object.return_value = {"Body": MagicMock(), "ContentLength": 10}

        client.get_object(bucket="test-bucket", object_key="test/key", start=5)

        assert mock_s3.get_object.call_args[1]["Range"] == "bytes=5-"

    def test_get_object_without_range(self, client, mock_s3):
        mock_s3.get_object.return_value = {"Body": MagicMock()}

        stream = client.get_object(bucket="test-bucket", object_key="test/key")

        assert stream.content_length is None
        assert "Range" not in mock_s3.get_object.call_args[1]

    def test_get_object_not_found(self, client, mock_s3):
        mock_s3.get_object.side_effect = _client_error("NoSuchKey", 404, "GetObject")

        with pytest.raises(ObjectNotFoundError, match="Failed to get object"):
            client.get_object(bucket="test-bucket", object_key="test/key")

    def test_connection_failure_is_transport_error(self, client, mock_s3):
        labels = {"operation": "get_object", "outcome": "transport_error"}
        before = _sample("cos_requests_total", labels)
        mock_s3.get_object.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:9000"
        )

        with pytest.raises(StorageTransportError):
            client.get_object(bucket="test-bucket", object_key="test/key")
        assert _sample("cos_requests_total", labels) == before + 1

    def test_put_object(self, client, mock_s3):
        mock_s3.put_object.return_value = {"ETag": '"etag"'}

        etag = client.put_object(
            bucket="test-bucket", object_key="test/key", body=b"abc", content_length=3
        )

        assert etag == '"etag"'
        mock_s3.put_object.assert_called_once_with(
            Bucket="test-bucket", Key="test/key", Body=b"abc", ContentLength=3
        )

    def test_init_multipart_upload(self, client, mock_s3):
        """Test initiating multipart upload."""
        mock_s3.create_multipart_upload.return_value = {
            "UploadId": "test-upload-id",
            "Bucket": "test-bucket",
            "Key": "test/key",
        }

        result = client.init_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
        )

        assert isinstance(result, MultipartUpload)
        assert result.upload_id == "test-upload-id"
        assert result.bucket == "test-bucket"
        assert result.object_key == "test/key"

    def test_init_multipart_upload_missing_upload_id(self, client, mock_s3):
        """Test error when S3 response missing UploadId."""
        mock_s3.create_multipart_upload.return_value = {}

        with pytest.raises(StorageError, match="S3 response missing UploadId"):
            client.init_multipart_upload(bucket="test-bucket", object_key="test/key")

    def test_init_multipart_upload_exception(self, client, mock_s3):
        """Test error handling when create_multipart_upload fails."""
        mock_s3.create_multipart_upload.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to create multipart upload"):
            client.init_multipart_upload(bucket="test-bucket", object_key="test/key")

    def test_upload_part(self, client, mock_s3):
        mock_s3.upload_part.return_value = {"ETag": '"part-etag"'}

        part = client.upload_part(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=2,
            body=b"data",
            size=4,
            last_part=True,
        )

        assert part == CompletedPart(part_number=2, etag='"part-etag"')
        mock_s3.upload_part.assert_called_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumber=2,
            Body=b"data",
            ContentLength=4,
        )

    def test_upload_part_missing_etag(self, client, mock_s3):
        mock_s3.upload_part.return_value = {}

        with pytest.raises(StorageError, match="missing ETag for part 1"):
            client.upload_part(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
                part_number=1,
                body=b"data",
                size=4,
            )

    def test_complete_multipart_upload(self, client, mock_s3):
        """Test completing multipart upload."""
        parts = [
            CompletedPart(part_number=2, etag="etag2"),
            CompletedPart(part_number=1, etag="etag1"),
        ]

        client.complete_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            parts=parts,
        )

        # Verify the parts are sorted by part_number
        call_args = mock_s3.complete_multipart_upload.call_args
        assert call_args[1]["UploadId"] == "test-upload-id"
        assert call_args[1]["MultipartUpload"]["Parts"] == [
            {"ETag": "etag1", "PartNumber": 1},
            {"ETag": "etag2", "PartNumber": 2},
        ]

    def test_abort_multipart_upload_exception(self, client, mock_s3):
        """Test error handling when abort_multipart_upload fails."""
        mock_s3.abort_multipart_upload.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to abort multipart upload"):
            client.abort_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
                upload_id="test-upload-id",
            )

    def test_delete_object_exception(self, client, mock_s3):
        """Test error handling when delete_object fails."""
        mock_s3.delete_object.side_effect = Exception("S3 error")

        with pytest.raises(StorageError, match="Failed to delete object"):
            client.delete_object(bucket="test-bucket", object_key="test/key")

    def test_delete_objects_quiet(self, client, mock_s3):
        mock_s3.delete_objects.return_value = {}

        errors = client.delete_objects(bucket="test-bucket", object_keys=["a", "b"])

        assert errors == []
        mock_s3.delete_objects.assert_called_once_with(
            Bucket="test-bucket",
            Delete={"Objects": [{"Key": "a"}, {"Key": "b"}], "Quiet": True},
        )

    def test_delete_objects_reports_failed_keys(self, client, mock_s3):
        mock_s3.delete_objects.return_value = {
            "Errors": [{"Key": "b", "Code": "AccessDenied", "Message": "Access Denied"}]
        }

        errors = client.delete_objects(bucket="test-bucket", object_keys=["a", "b"])

        assert errors == [DeleteObjectError("b", "AccessDenied", "Access Denied")]
        assert errors[0].describe() == "[b][AccessDenied][Access Denied]"

    def test_list_objects(self, client, mock_s3):
        mock_s3.list_objects_v2.return_value = {
            "Contents": [{"Key": "base/a", "Size": 3}, {"Key": "base/b"}],
            "CommonPrefixes": [{"Prefix": "base/c/"}],
            "IsTruncated": True,
            "NextContinuationToken": "token-2",
        }

        listing = client.list_objects(
            bucket="test-bucket",
            prefix="base/",
            delimiter="/",
            continuation_token="token-1",
            max_keys=500,
        )

        assert [(item.key, item.size) for item in listing.objects] == [
            ("base/a", 3),
            ("base/b", 0),
        ]
        assert listing.common_prefixes == ["base/c/"]
        assert listing.is_truncated
        assert listing.next_continuation_token == "token-2"
        mock_s3.list_objects_v2.assert_called_once_with(
            Bucket="test-bucket",
            Prefix="base/",
            Delimiter="/",
            ContinuationToken="token-1",
            MaxKeys=500,
        )

    def test_list_objects_empty(self, client, mock_s3):
        mock_s3.list_objects_v2.return_value = {"IsTruncated": False}

        listing = client.list_objects(bucket="test-bucket", prefix="base/")

        assert listing.objects == []
        assert listing.common_prefixes == []
        assert not listing.is_truncated
        mock_s3.list_objects_v2.assert_called_once_with(Bucket="test-bucket", Prefix="base/")

    def test_region_and_close(self, client, mock_s3):
        assert client.region == "ap-guangzhou"

        client.close()

        mock_s3.close.assert_called_once_with()


class TestS3ObjectStream:
    def test_read_failure_is_transport_error(self):
        body = MagicMock()
        body.read.side_effect = IncompleteReadError(actual_bytes=1, expected_bytes=3)
        stream = S3ObjectStream(body, 3)

        with pytest.raises(StorageTransportError):
            stream.read(3)

    def test_socket_error_is_transport_error(self):
        body = MagicMock()
        body.read.side_effect = ConnectionResetError("reset by peer")

        with pytest.raises(StorageTransportError, match="reset by peer"):
            S3ObjectStream(body, 3).read()

    def test_abort_closes_body(self):
        body = MagicMock()
        stream = S3ObjectStream(body, 3)

        stream.abort()

        assert stream.aborted
        body.close.assert_called_once_with()


class TestBuildClient:
    def test_builds_boto3_client_from_settings(self):
        settings = MagicMock()
        settings.COS_ENDPOINT_URL = "https://cos.ap-guangzhou.myqcloud.com"
        settings.COS_REGION = "ap-guangzhou"
        settings.COS_ACCESS_KEY_ID = "key"
        settings.COS_SECRET_ACCESS_KEY = "secret"
        settings.COS_USE_SSL = True
        settings.COS_ADDRESSING_STYLE = "Virtual"

        with patch("boto3.client") as boto3_client:
            S3StorageClient(settings=settings)

        kwargs = boto3_client.call_args[1]
        assert boto3_client.call_args[0] == ("s3",)
        assert kwargs["endpoint_url"] == "https://cos.ap-guangzhou.myqcloud.com"
        assert kwargs["region_name"] == "ap-guangzhou"
        assert kwargs["use_ssl"] is True
        config = kwargs["config"]
        assert config.s3 == {"addressing_style": "virtual"}
        assert config.retries["max_attempts"] == 1
