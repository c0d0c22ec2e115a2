"""Object storage uploads used by the backup tool."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .archive import BackupError
from .config import StorageConfig

LOGGER = logging.getLogger(__name__)

# Files above the threshold go through multi-part upload in chunks of this size.
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024


class UploadError(BackupError):
    """Raised when uploading a file to object storage fails."""

    def __init__(self, key: str, cause: BaseException) -> None:
        self.key = key
        self.cause = cause
        super().__init__(f"Upload of '{key}' failed: {cause}")


def create_client(storage: StorageConfig) -> Any:
    """Build the S3 client shared by every upload of a run."""

    config = Config(
        region_name=storage.region,
        s3={"addressing_style": "path" if storage.force_path_style else "auto"},
    )
    return boto3.client(
        "s3",
        endpoint_url=storage.endpoint,
        aws_access_key_id=storage.access_key_id,
        aws_secret_access_key=storage.secret_access_key,
        config=config,
    )


@dataclass
class S3Uploader:
    """Stream local files into one bucket through a single client."""

    bucket: str
    client: Any
    transfer_config: TransferConfig = field(
        default_factory=lambda: TransferConfig(
            multipart_threshold=MULTIPART_CHUNK_SIZE,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
        )
    )
    logger: logging.Logger = LOGGER

    @classmethod
    def from_config(cls, storage: StorageConfig, client: Optional[Any] = None) -> "S3Uploader":
        return cls(bucket=storage.bucket, client=client or create_client(storage))

    def upload(self, destination_key: str, local_path: Path) -> None:
        local_path = Path(local_path)
        self.logger.info("Uploading '%s' to s3://%s/%s.", local_path.name, self.bucket, destination_key)
        try:
            with local_path.open("rb") as fh:
                self.client.upload_fileobj(
                    fh,
                    self.bucket,
                    destination_key,
                    ExtraArgs={"ContentType": "application/octet-stream"},
                    Config=self.transfer_config,
                )
        except (Boto3Error, BotoCoreError, ClientError, OSError) as exc:
            raise UploadError(destination_key, exc) from exc
        self.logger.info("Uploaded s3://%s/%s.", self.bucket, destination_key)


__all__ = ["S3Uploader", "UploadError", "create_client"]
