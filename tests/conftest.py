"""Pytest configuration and fixtures."""

import io
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError
from google.api_core.exceptions import Forbidden, NotFound, ServiceUnavailable

from flydrive.backends.gcs import GCSStorage
from flydrive.backends.local import LocalStorage
from flydrive.backends.s3 import S3Storage

TEST_BUCKET = "flydrive-test"


def _client_error(code: str, operation: str, status: int = 404) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Body:
    """Stands in for botocore's StreamingBody."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)
        self.closed = False

    def read(self, amt: int | None = None) -> bytes:
        return self._buffer.read(amt)

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """In-memory S3 client speaking the subset of the boto3 API drivers use."""

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.page_size = page_size
        self.list_calls = 0
        self.unreachable = False
        self.deny_delete = False
        self.can_sign = True
        self.bodies: list[FakeS3Body] = []

    def _check(self) -> None:
        if self.unreachable:
            raise EndpointConnectionError(endpoint_url="http://s3.invalid")

    def _get(self, bucket: str, key: str, operation: str, code: str = "NoSuchKey") -> dict[str, Any]:
        obj = self.objects.get((bucket, key))
        if obj is None:
            raise _client_error(code, operation)
        return obj

    def put_object(self, Bucket: str, Key: str, Body: bytes, **extra: Any) -> dict[str, Any]:
        self._check()
        self.objects[(Bucket, Key)] = {
            "data": bytes(Body),
            "modified": datetime.now(timezone.utc),
            "extra": extra,
        }
        return {"ETag": '"fake"'}

    def upload_fileobj(self, Fileobj: Any, Bucket: str, Key: str, ExtraArgs: dict | None = None) -> None:
        self.put_object(Bucket=Bucket, Key=Key, Body=Fileobj.read(), **(ExtraArgs or {}))

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self._check()
        obj = self._get(Bucket, Key, "GetObject")
        body = FakeS3Body(obj["data"])
        self.bodies.append(body)
        return {
            "Body": body,
            "ContentLength": len(obj["data"]),
            "LastModified": obj["modified"],
        }

    def head_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self._check()
        obj = self._get(Bucket, Key, "HeadObject", code="404")
        return {"ContentLength": len(obj["data"]), "LastModified": obj["modified"]}

    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self._check()
        if self.deny_delete:
            raise _client_error("AccessDenied", "DeleteObject", 403)
        self.objects.pop((Bucket, Key), None)
        return {}

    def copy_object(self, Bucket: str, Key: str, CopySource: dict[str, str]) -> dict[str, Any]:
        self._check()
        obj = self._get(CopySource["Bucket"], CopySource["Key"], "CopyObject")
        self.objects[(Bucket, Key)] = dict(obj, modified=datetime.now(timezone.utc))
        return {}

    def generate_presigned_url(self, ClientMethod: str, Params: dict[str, str], ExpiresIn: int) -> str:
        if not self.can_sign:
            raise NoCredentialsError()
        return (
            f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}&X-Amz-Signature=fake"
        )

    def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        ContinuationToken: str | None = None,
    ) -> dict[str, Any]:
        self._check()
        self.list_calls += 1
        keys = sorted(k for b, k in self.objects if b == Bucket and k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        end = start + self.page_size
        page = keys[start:end]
        response: dict[str, Any] = {"KeyCount": len(page), "IsTruncated": end < len(keys)}
        if page:
            response["Contents"] = [{"Key": k} for k in page]
        if end < len(keys):
            response["NextContinuationToken"] = str(end)
        return response


class FakeBlob:
    """Stands in for google.cloud.storage.Blob."""

    def __init__(self, bucket: "FakeBucket", name: str) -> None:
        self.bucket = bucket
        self.name = name
        self.cache_control: str | None = None
        self.content_disposition: str | None = None
        self.metadata: dict[str, str] | None = None

    def _stored(self) -> dict[str, Any]:
        obj = self.bucket.objects.get(self.name)
        if obj is None:
            raise NotFound(f"No such object: {self.bucket.name}/{self.name}")
        return obj

    @property
    def size(self) -> int | None:
        obj = self.bucket.objects.get(self.name)
        return len(obj["data"]) if obj else None

    @property
    def updated(self) -> datetime | None:
        obj = self.bucket.objects.get(self.name)
        return obj["modified"] if obj else None

    def upload_from_string(self, data: bytes, content_type: str | None = None) -> None:
        self.bucket.client.check()
        self.bucket.objects[self.name] = {
            "data": bytes(data),
            "modified": datetime.now(timezone.utc),
            "content_type": content_type,
            "metadata": self.metadata,
        }

    def upload_from_file(self, file_obj: Any, content_type: str | None = None) -> None:
        self.upload_from_string(file_obj.read(), content_type=content_type)

    def download_as_bytes(self) -> bytes:
        self.bucket.client.check()
        return self._stored()["data"]

    def exists(self) -> bool:
        self.bucket.client.check()
        return self.name in self.bucket.objects

    def delete(self) -> None:
        self.bucket.client.check()
        if self.bucket.deny_delete:
            raise Forbidden("delete denied")
        self._stored()
        del self.bucket.objects[self.name]

    def open(self, mode: str = "rb", chunk_size: int | None = None) -> io.BytesIO:
        reader = io.BytesIO(self._stored()["data"])
        self.bucket.client.readers.append(reader)
        return reader

    def generate_signed_url(self, version: str, expiration: timedelta, method: str) -> str:
        if not self.bucket.client.can_sign:
            raise AttributeError("you need a private key to sign credentials")
        return (
            f"https://storage.googleapis.com/{self.bucket.name}/{self.name}"
            f"?X-Goog-Expires={int(expiration.total_seconds())}&X-Goog-Signature=fake"
        )


class FakeBucket:
    """Stands in for google.cloud.storage.Bucket."""

    def __init__(self, client: "FakeGCSClient", name: str) -> None:
        self.client = client
        self.name = name
        self.objects: dict[str, dict[str, Any]] = {}
        self.deny_delete = False

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)

    def get_blob(self, name: str) -> FakeBlob | None:
        self.client.check()
        return FakeBlob(self, name) if name in self.objects else None

    def copy_blob(self, blob: FakeBlob, destination_bucket: "FakeBucket", new_name: str) -> FakeBlob:
        self.client.check()
        obj = blob._stored()
        destination_bucket.objects[new_name] = dict(obj, modified=datetime.now(timezone.utc))
        return FakeBlob(destination_bucket, new_name)


class FakeBlobIterator:
    """Stands in for google.api_core.page_iterator.HTTPIterator."""

    def __init__(self, page: list[FakeBlob], next_page_token: str | None) -> None:
        self.pages = iter([page])
        self.next_page_token = next_page_token


class FakeGCSClient:
    """In-memory storage.Client speaking the subset of the API drivers use."""

    def __init__(self, page_size: int = 1000) -> None:
        self.buckets: dict[str, FakeBucket] = {}
        self.page_size = page_size
        self.list_calls = 0
        self.unreachable = False
        self.can_sign = True
        self.readers: list[io.BytesIO] = []

    def check(self) -> None:
        if self.unreachable:
            raise ServiceUnavailable("backend unavailable")

    def bucket(self, name: str) -> FakeBucket:
        return self.buckets.setdefault(name, FakeBucket(self, name))

    def list_blobs(
        self,
        bucket: FakeBucket,
        prefix: str | None = None,
        page_token: str | None = None,
    ) -> FakeBlobIterator:
        self.check()
        self.list_calls += 1
        names = sorted(n for n in bucket.objects if n.startswith(prefix or ""))
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(names) else None
        return FakeBlobIterator([FakeBlob(bucket, n) for n in names[start:end]], next_token)


@pytest.fixture
def local_storage(tmp_path) -> LocalStorage:
    """Create a local storage rooted in a temporary directory."""
    return LocalStorage(
        root=tmp_path / "root",
        base_url="https://files.example.com/media",
        signing_key="test-signing-key",
    )


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client(page_size=2)


@pytest.fixture
def s3_storage(s3_client) -> S3Storage:
    """Create an S3 storage over an in-memory client."""
    return S3Storage(bucket=TEST_BUCKET, region="eu-west-1", client=s3_client)


@pytest.fixture
def gcs_client() -> FakeGCSClient:
    return FakeGCSClient(page_size=2)


@pytest.fixture
def gcs_storage(gcs_client) -> GCSStorage:
    """Create a GCS storage over an in-memory client."""
    return GCSStorage(bucket=TEST_BUCKET, client=gcs_client)


@pytest.fixture(params=["local", "s3", "gcs"])
def storage(request):
    """Every driver, for tests of behaviour all backends share."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def stream_handles(request, monkeypatch, s3_client, gcs_client) -> list[Any]:
    """Backend handles opened by get_stream on the driver under test, oldest first."""
    driver = request.node.callspec.params["storage"]
    if driver == "s3":
        return s3_client.bodies
    if driver == "gcs":
        return gcs_client.readers

    opened: list[Any] = []
    real_open = Path.open

    def tracking_open(self, *args, **kwargs):
        handle = real_open(self, *args, **kwargs)
        opened.append(handle)
        return handle

    monkeypatch.setattr(Path, "open", tracking_open)
    return opened


@pytest.fixture
def sample_config_dict(tmp_path):
    """Sample configuration dictionary for testing."""
    return {
        "default": "local",
        "disks": {
            "local": {
                "driver": "local",
                "root": str(tmp_path / "disk"),
                "base_url": "https://files.example.com",
            },
            "assets": {
                "driver": "s3",
                "bucket": "assets",
                "region": "eu-west-1",
                "prefix": "tenant-a",
            },
            "archive": {
                "driver": "gcs",
                "bucket": "archive",
            },
        },
    }
