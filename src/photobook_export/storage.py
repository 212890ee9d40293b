"""
Durable storage for finished export artifacts.

Artifacts are write-once: the name embeds the task id and the write time in
milliseconds, and an existing artifact is never overwritten. Two backends are
available: the local filesystem (default) and S3, selected by
``storage.backend`` in the configuration.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional, Protocol, Tuple

import boto3
from botocore.exceptions import ClientError
from omegaconf import DictConfig

from .utils import ensure_directory

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


class ArtifactExistsError(FileExistsError):
    """Raised when an artifact with the same name has already been written."""


def artifact_name(task_id: str, timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"export_{task_id}_{timestamp_ms}.pdf"


class ArtifactStore(Protocol):
    def write(self, task_id: str, data: bytes) -> str: ...

    def read(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...


class LocalArtifactStore:
    """Artifacts as files under a single directory."""

    def __init__(self, root: Path) -> None:
        self.root = ensure_directory(Path(root))

    def write(self, task_id: str, data: bytes) -> str:
        """
        Write an artifact and flush it to disk.

        Returns:
            Absolute path of the written file

        Raises:
            ArtifactExistsError: A file with the generated name already exists
        """
        path = (self.root / artifact_name(task_id)).resolve()
        try:
            with path.open("xb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
        except FileExistsError as exc:
            raise ArtifactExistsError(f"Artifact already exists: {path}") from exc
        logger.info(f"Artifact written: {path} ({len(data)} bytes)")
        return str(path)

    def read(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def exists(self, path: str) -> bool:
        return Path(path).is_file()


class S3ArtifactStore:
    """
    Artifacts as S3 objects, addressed as ``s3://bucket/key``.

    Args:
        bucket: Target bucket name
        prefix: Key prefix for all artifacts
        client: Pre-built boto3 S3 client (created lazily when omitted)
    """

    def __init__(self, bucket: str, prefix: str = "", client=None) -> None:
        if not bucket:
            raise ValueError("S3 artifact storage requires a bucket name (S3_BUCKET_NAME)")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _split(self, path: str) -> Tuple[str, str]:
        if not path.startswith("s3://"):
            raise ValueError(f"Not an S3 artifact path: {path}")
        bucket, _, key = path[len("s3://"):].partition("/")
        return bucket, key

    def exists(self, path: str) -> bool:
        bucket, key = self._split(path)
        try:
            self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def write(self, task_id: str, data: bytes) -> str:
        key = artifact_name(task_id)
        if self.prefix:
            key = f"{self.prefix}/{key}"
        path = f"s3://{self.bucket}/{key}"
        if self.exists(path):
            raise ArtifactExistsError(f"Artifact already exists: {path}")

        logger.info(f"Uploading artifact to {path}")
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=PDF_CONTENT_TYPE)
        logger.info(f"Upload successful: {path} ({len(data)} bytes)")
        return path

    def read(self, path: str) -> bytes:
        bucket, key = self._split(path)
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                raise FileNotFoundError(path) from e
            raise
        return response["Body"].read()


def build_artifact_store(storage: DictConfig) -> ArtifactStore:
    backend = str(storage.backend).lower()
    if backend == "local":
        return LocalArtifactStore(Path(storage.output_dir))
    if backend == "s3":
        return S3ArtifactStore(storage.s3_bucket, storage.s3_prefix)
    raise ValueError(f"Unknown artifact storage backend: {storage.backend}")
