#!/usr/bin/env python
"""
Image staging

Vale photos are uploaded by the AppSheet app to Google Drive. Before a batch is
audited, each pending record's photo is looked up in Drive by file name and
copied into the blob store under images/<date>/<basename>, where the oracle
caller expects it. Photos already in the store are not downloaded again.
"""

import io
import os
import shutil
import tempfile
from typing import Dict, Iterable, Optional

from vale_audit.blob_store import BlobStore
from vale_audit.errors import ImageSourceError, ValeAuditError
from vale_audit.ocr_models import ValeRecord
from vale_audit.orchestrator import AuditOrchestrator

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]


class DriveImageSource:
    """Google Drive v3 files API

    Uses the service account key at DRIVE_KEYFILE_PATH when that file exists,
    otherwise the application default credentials.
    """

    def __init__(self, service=None, keyfile: Optional[str] = None):
        if service is None:
            service = self._build_service(keyfile or os.getenv("DRIVE_KEYFILE_PATH", "./service-account.json"))
        self.service = service

    @staticmethod
    def _build_service(keyfile: str):
        import google.auth
        from google.auth.exceptions import GoogleAuthError
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        try:
            if os.path.exists(keyfile):
                credentials = service_account.Credentials.from_service_account_file(keyfile, scopes=DRIVE_SCOPES)
            else:
                credentials, _ = google.auth.default(scopes=DRIVE_SCOPES)
        except (GoogleAuthError, ValueError, OSError) as e:
            raise ImageSourceError(f"No Google Drive credentials: {e}") from e
        return build("drive", "v3", credentials=credentials, cache_discovery=False)

    def find_file_id(self, file_name: str) -> Optional[str]:
        from googleapiclient.errors import HttpError

        quoted = file_name.replace("\\", "\\\\").replace("'", "\\'")
        try:
            response = self.service.files().list(
                q=f"name='{quoted}' and trashed=false",
                fields="files(id, name)",
                spaces="drive",
                pageSize=1,
            ).execute()
        except (HttpError, OSError) as e:
            raise ImageSourceError(f"Drive search failed: {e}", file_name=file_name) from e
        files = response.get("files") or []
        return files[0]["id"] if files else None

    def download(self, file_id: str, local_dest: str) -> str:
        from googleapiclient.errors import HttpError
        from googleapiclient.http import MediaIoBaseDownload

        request = self.service.files().get_media(fileId=file_id)
        try:
            with io.FileIO(local_dest, "wb") as fh:
                downloader = MediaIoBaseDownload(fh, request)
                done = False
                while not done:
                    _, done = downloader.next_chunk()
        except (HttpError, OSError) as e:
            raise ImageSourceError(f"Drive download failed: {e}", details={"file_id": file_id}) from e
        return local_dest


def stage_images(records: Iterable[ValeRecord], date_path: str, store: BlobStore, source) -> Dict[str, int]:
    """Copy each record's photo from the image source into the blob store

    A failure on one record is logged and the next record is attempted; that
    record's audit will then fail with ImageUnavailableError and be retried on
    the next run.
    """
    records = list(records)
    counts = {"cached": 0, "uploaded": 0, "not_found": 0, "failed": 0}
    print(f"\n📸 Staging {len(records)} images...")

    temp_dir = tempfile.mkdtemp(prefix="vale_images_")
    try:
        for record in records:
            if not record.foto_vale:
                print(f"⚠️ No foto_vale for record {record.row_id}")
                counts["not_found"] += 1
                continue

            image_path = AuditOrchestrator.image_path_for(record, date_path)
            file_name = image_path.rsplit("/", 1)[-1]

            cached = store.exists(image_path)
            if cached.ok and cached.value:
                print(f"⏭️  Already cached: {file_name}")
                counts["cached"] += 1
                continue
            if not cached.ok:
                print(f"⚠️ Could not check {image_path} ({cached.error.message}), downloading anyway")

            try:
                print(f"🔍 Searching Drive for: {file_name}")
                file_id = source.find_file_id(file_name)
                if not file_id:
                    print(f"❌ File not found in Drive: {file_name}")
                    counts["not_found"] += 1
                    continue

                local = source.download(file_id, os.path.join(temp_dir, file_name))
                uploaded = store.upload(local, image_path)
                os.remove(local)
                if not uploaded.ok:
                    raise uploaded.error
                print(f"⬆️ Uploaded {image_path}")
                counts["uploaded"] += 1
            except (ValeAuditError, OSError) as e:
                print(f"❌ Error staging image {file_name} for record {record.row_id}: {e}")
                counts["failed"] += 1
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(f"✅ Images staged: {counts['uploaded']} uploaded, {counts['cached']} cached, "
          f"{counts['not_found']} not found, {counts['failed']} failed")
    return counts
