"""Shared fixtures: an in-memory S3 client and a scripted archiver."""
import gzip
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from db_backup.archive import ArchiveInfo, validate_archive
from db_backup.config import AppConfig, ServiceConfig, StorageConfig
from db_backup.storage import S3Uploader


class FakeS3Client:
    """Keeps uploaded objects in a dict, optionally failing some keys."""

    def __init__(self, failing_keys=()):
        self.objects = {}
        self.calls = []
        self.failing_keys = set(failing_keys)

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None, Config=None):
        self.calls.append(key)
        if key in self.failing_keys:
            raise ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "PutObject")
        chunks = []
        while True:
            chunk = fileobj.read(1024)
            if not chunk:
                break
            chunks.append(chunk)
        self.objects[(bucket, key)] = b"".join(chunks)


class ScriptedArchiver:
    """Writes gzip archives without running any external tool.

    ``payloads`` maps a connection string to the uncompressed bytes to write
    or to an exception to raise after leaving a partial file behind.
    """

    def __init__(self, payloads=None):
        self.payloads = payloads or {}
        self.calls = []

    def dump(self, local_path, connection_string, on_dumped=None):
        self.calls.append(connection_string)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.payloads.get(connection_string, b"tar-data")
        if isinstance(payload, Exception):
            local_path.write_bytes(b"")
            raise payload
        with gzip.open(local_path, "wb") as fh:
            fh.write(payload)
        if on_dumped is not None:
            on_dumped()
        return ArchiveInfo(path=local_path, size_bytes=validate_archive(local_path))


def make_config(*services, subfolder=None):
    return AppConfig(
        services=tuple(ServiceConfig(name=name, connection_string=url) for name, url in services),
        storage=StorageConfig(bucket="backups", region="us-east-1", subfolder=subfolder),
    )


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def uploader(s3_client):
    return S3Uploader(bucket="backups", client=s3_client)


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path
