#!/usr/bin/env python
"""
Blob store adapters

Key/value object storage for extractions, images, audit results and the
processing ledger. Every public method returns Ok/Err instead of raising, so
callers choose how to degrade on storage hiccups.
"""

import json
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from vale_audit.errors import StorageError
from vale_audit.outcome import Err, Ok, Result


class BlobStore(ABC):
    """Storage backend interface"""

    def exists(self, path: str) -> Result[bool, StorageError]:
        return self._guard("exists", path, lambda: self._exists(path))

    def read_json(self, path: str) -> Result[Optional[Dict], StorageError]:
        """Ok(None) when the object does not exist"""
        def _read():
            raw = self._read_bytes(path)
            if raw is None:
                return None
            return json.loads(raw.decode("utf-8"))

        return self._guard("read", path, _read)

    def write_json(self, path: str, data: Dict) -> Result[None, StorageError]:
        payload = json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
        result = self._guard("write", path, lambda: self._write_bytes(path, payload, "application/json"))
        if result.ok:
            print(f"✅ Saved JSON: {path}")
        return result

    def download(self, path: str, local_dest: str) -> Result[str, StorageError]:
        def _download():
            os.makedirs(os.path.dirname(os.path.abspath(local_dest)), exist_ok=True)
            self._download(path, local_dest)
            return local_dest

        return self._guard("download", path, _download)

    def upload(self, local_src: str, path: str) -> Result[None, StorageError]:
        return self._guard("upload", path, lambda: self._upload(local_src, path))

    def list(self, prefix: str) -> Result[List[str], StorageError]:
        return self._guard("list", prefix, lambda: sorted(self._list(prefix)))

    def _guard(self, op: str, path: str, fn: Callable):
        try:
            return Ok(fn())
        except StorageError as e:
            print(f"❌ Storage {op} failed: {path} ({e.message})")
            return Err(e)
        except Exception as e:
            print(f"❌ Storage {op} failed: {path} ({e})")
            return Err(StorageError(f"{op} failed: {e}", path=path))

    @abstractmethod
    def _exists(self, path: str) -> bool: ...

    @abstractmethod
    def _read_bytes(self, path: str) -> Optional[bytes]: ...

    @abstractmethod
    def _write_bytes(self, path: str, data: bytes, content_type: str): ...

    @abstractmethod
    def _download(self, path: str, local_dest: str): ...

    @abstractmethod
    def _upload(self, local_src: str, path: str): ...

    @abstractmethod
    def _list(self, prefix: str) -> List[str]: ...


class LocalBlobStore(BlobStore):
    """Directory-backed store (local runs and tests)"""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _full(self, path: str) -> Path:
        return self.root / path

    def _exists(self, path: str) -> bool:
        return self._full(path).is_file()

    def _read_bytes(self, path: str) -> Optional[bytes]:
        full = self._full(path)
        if not full.is_file():
            return None
        return full.read_bytes()

    def _write_bytes(self, path: str, data: bytes, content_type: str):
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

    def _download(self, path: str, local_dest: str):
        full = self._full(path)
        if not full.is_file():
            raise StorageError("object not found", path=path)
        shutil.copyfile(full, local_dest)

    def _upload(self, local_src: str, path: str):
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_src, full)

    def _list(self, prefix: str) -> List[str]:
        base = self._full(prefix)
        # prefix may end in a partial name, so walk from its directory
        directory = base if prefix.endswith("/") else base.parent
        if not directory.is_dir():
            return []
        names = []
        for p in directory.rglob("*"):
            if p.is_file():
                key = p.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    names.append(key)
        return names


class S3BlobStore(BlobStore):
    """Amazon S3 bucket"""

    def __init__(self, bucket: str, client=None, region: Optional[str] = None):
        self.bucket = bucket
        if client is None:
            import boto3
            client = boto3.client("s3", region_name=region or os.getenv("AWS_REGION"))
        self.client = client

    @staticmethod
    def _is_missing(exc) -> bool:
        code = str(getattr(exc, "response", {}).get("Error", {}).get("Code", ""))
        return code in ("404", "NoSuchKey", "NotFound")

    def _exists(self, path: str) -> bool:
        from botocore.exceptions import ClientError
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise

    def _read_bytes(self, path: str) -> Optional[bytes]:
        from botocore.exceptions import ClientError
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise
        return obj["Body"].read()

    def _write_bytes(self, path: str, data: bytes, content_type: str):
        self.client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
            CacheControl="no-cache",
        )

    def _download(self, path: str, local_dest: str):
        self.client.download_file(self.bucket, path, local_dest)

    def _upload(self, local_src: str, path: str):
        self.client.upload_file(local_src, self.bucket, path)

    def _list(self, prefix: str) -> List[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        keys = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                keys.append(item["Key"])
        return keys


def make_blob_store() -> BlobStore:
    """BLOB_STORE=s3 uses AUDIT_BUCKET; anything else uses AUDIT_DATA_DIR on disk"""
    backend = os.getenv("BLOB_STORE", "local").lower()
    if backend == "s3":
        bucket = os.getenv("AUDIT_BUCKET")
        if not bucket:
            raise StorageError("AUDIT_BUCKET is not set")
        return S3BlobStore(bucket)
    return LocalBlobStore(os.getenv("AUDIT_DATA_DIR", "./audit_data"))
