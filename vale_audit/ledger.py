import posixpath
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from vale_audit.blob_store import BlobStore
from vale_audit.ocr_models import ValeRecord
from vale_audit.outcome import Ok

# result folders whose records count as durably processed
LEDGER_FOLDERS = ("processed", "manual_review")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessingLedger:
    """Per-date set of record IDs that already have a durable audit result.

    Stored as ``audits/<date>/index.json``. When the index is missing it is
    rebuilt from the result files themselves (``ensure_index``).
    """

    def __init__(self, store: BlobStore):
        self.store = store

    @staticmethod
    def index_path(date_path: str) -> str:
        return f"audits/{date_path}/index.json"

    def _read_index(self, date_path: str):
        """Ok(list) / Ok(None) when absent or malformed / Err on storage failure"""
        result = self.store.read_json(self.index_path(date_path))
        if not result.ok:
            return result
        index = result.value
        if not isinstance(index, dict) or not isinstance(index.get("processed_ids"), list):
            return Ok(None)
        return Ok([str(i) for i in index["processed_ids"]])

    def _write_index(self, date_path: str, processed_ids: List[str]) -> bool:
        data = {
            "processed_ids": processed_ids,
            "count": len(processed_ids),
            "last_updated": _now_iso(),
        }
        return self.store.write_json(self.index_path(date_path), data).ok

    def list_processed_ids(self, date_path: str) -> Set[str]:
        index = self._read_index(date_path)
        if index.ok and index.value is not None:
            print(f"📋 Loaded {len(index.value)} processed IDs from index")
            return set(index.value)
        print("⚠️ No index found, listing result files...")
        return self.ensure_index(date_path)

    def _scan(self, date_path: str) -> List[str]:
        ids: List[str] = []
        for folder in LEDGER_FOLDERS:
            listing = self.store.list(f"audits/{date_path}/{folder}/")
            if not listing.ok:
                print(f"⚠️ Could not list {folder} results, treating as unprocessed")
                continue
            for name in listing.value:
                if not name.endswith(".json"):
                    continue
                row_id = posixpath.basename(name)[: -len(".json")]
                if row_id not in ids:
                    ids.append(row_id)
        return ids

    def ensure_index(self, date_path: str) -> Set[str]:
        """Rebuild the index from result files (slow path). Fail-open: empty set."""
        ids = self._scan(date_path)
        if ids:
            self._write_index(date_path, ids)
        return set(ids)

    def mark_processed(self, date_path: str, row_id: str) -> bool:
        index = self._read_index(date_path)
        if not index.ok:
            # keep the existing index intact; the record is re-audited next run
            print(f"⚠️ Index unreadable, {row_id} not added to ledger")
            return False

        processed_ids = index.value if index.value is not None else self._scan(date_path)
        if row_id not in processed_ids:
            processed_ids.append(row_id)
        elif index.value is not None:
            return True

        if not self._write_index(date_path, processed_ids):
            print(f"❌ Failed to add {row_id} to index")
            return False
        print(f"✅ Added {row_id} to index ({len(processed_ids)} total)")
        return True

    def unprocessed(self, records: Iterable[ValeRecord], date_path: str,
                    processed_ids: Optional[Set[str]] = None) -> List[ValeRecord]:
        records = list(records)
        if processed_ids is None:
            processed_ids = self.list_processed_ids(date_path)
        print(f"📊 Found {len(processed_ids)} already processed records")

        remaining = [r for r in records if r.row_id not in processed_ids]
        print(f"📝 {len(remaining)} records remaining to process ({len(records)} total)")
        return remaining
