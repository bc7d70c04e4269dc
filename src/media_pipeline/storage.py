"""Storage backends for chunks, temporary inputs and published artifacts.

Paths are always POSIX-style relative keys (``tmp/chunks/abc/0.part``,
``uploads/media/lessons/intro-1700000000000.mp4``). The local backend maps them
under a root directory; the S3 backend maps them to object keys in one bucket.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError

LOGGER = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a backend cannot complete a storage operation."""


class Storage(Protocol):
    def write(self, path: str, data: bytes) -> None: ...

    def read(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...

    def ensure_dir(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def list(self, prefix: str) -> list[str]: ...

    def download(self, path: str, destination_path: str) -> None: ...

    def upload(self, source_path: str, path: str) -> None: ...

    def public_url(self, path: str) -> str: ...


def _clean_key(path: str) -> str:
    key = PurePosixPath(path.lstrip("/"))
    if any(part in ("..", "") for part in key.parts) or str(key) == ".":
        raise StorageError(f"Invalid storage path: {path!r}")
    return str(key)


class LocalFileStorage:
    def __init__(self, root: str | Path, public_base_url: str = "/media") -> None:
        self._root = Path(root)
        self._public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        return self._root / _clean_key(path)

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".partial")
        partial.write_bytes(data)
        partial.replace(target)

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"No such file: {path}")
        return target.read_bytes()

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()

    def ensure_dir(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def list(self, prefix: str) -> list[str]:
        base = self._resolve(prefix)
        if not base.is_dir():
            return []
        return sorted(
            entry.relative_to(self._root).as_posix()
            for entry in base.rglob("*")
            if entry.is_file()
        )

    def download(self, path: str, destination_path: str) -> None:
        source = self._resolve(path)
        if not source.is_file():
            raise StorageError(f"No such file: {path}")
        shutil.copyfile(source, destination_path)

    def upload(self, source_path: str, path: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, target)

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{_clean_key(path)}"


def create_s3_client(
    *,
    endpoint_url: str | None,
    region_name: str,
    access_key: str | None,
    secret_key: str | None,
):
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region_name,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class S3Storage:
    """Bucket-backed storage. Directories are implicit in object keys."""

    def __init__(self, client, *, bucket: str, public_base_url: str) -> None:
        self._client = client
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/")

    def write(self, path: str, data: bytes) -> None:
        try:
            self._client.put_object(Bucket=self._bucket, Key=_clean_key(path), Body=data)
        except ClientError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def read(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=_clean_key(path))
        except ClientError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        return response["Body"].read()

    def delete(self, path: str) -> None:
        key = _clean_key(path)
        keys = self.list(key) or [key]
        try:
            for item in keys:
                self._client.delete_object(Bucket=self._bucket, Key=item)
        except ClientError as exc:
            raise StorageError(f"Failed to delete {path}: {exc}") from exc

    def ensure_dir(self, path: str) -> None:
        _clean_key(path)

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=_clean_key(path))
        except ClientError:
            return False
        return True

    def list(self, prefix: str) -> list[str]:
        key_prefix = _clean_key(prefix).rstrip("/") + "/"
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=key_prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except ClientError as exc:
            raise StorageError(f"Failed to list {prefix}: {exc}") from exc
        return sorted(keys)

    def download(self, path: str, destination_path: str) -> None:
        try:
            self._client.download_file(self._bucket, _clean_key(path), destination_path)
        except ClientError as exc:
            raise StorageError(f"Failed to download {path}: {exc}") from exc

    def upload(self, source_path: str, path: str) -> None:
        try:
            self._client.upload_file(source_path, self._bucket, _clean_key(path))
        except ClientError as exc:
            raise StorageError(f"Failed to upload {path}: {exc}") from exc

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{_clean_key(path)}"


def create_storage(
    *,
    backend: str,
    local_root: str = "storage",
    public_base_url: str = "/media",
    s3_endpoint_url: str | None = None,
    s3_region: str = "us-east-1",
    s3_bucket: str | None = None,
    s3_access_key: str | None = None,
    s3_secret_key: str | None = None,
) -> Storage:
    if backend == "local":
        return LocalFileStorage(local_root, public_base_url)
    if backend == "s3":
        if not s3_bucket:
            raise ValueError("An S3 bucket is required for the s3 storage backend")
        client = create_s3_client(
            endpoint_url=s3_endpoint_url,
            region_name=s3_region,
            access_key=s3_access_key,
            secret_key=s3_secret_key,
        )
        LOGGER.info("Using S3 storage bucket %s", s3_bucket)
        return S3Storage(client, bucket=s3_bucket, public_base_url=public_base_url)
    raise ValueError(f"Unknown storage backend: {backend}")
