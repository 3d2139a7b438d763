"""
Audit orchestrator

Drives one date-partition: skips records already in the ledger, audits the
rest one at a time, writes each result under its status folder and keeps a
failure summary for the run.
"""

import posixpath
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from vale_audit.blob_store import BlobStore
from vale_audit.errors import ValeAuditError
from vale_audit.ledger import ProcessingLedger
from vale_audit.ocr_models import AuditResult, AuditStatus, BatchSummary, ValeRecord
from vale_audit.oracle_caller import CallOutcome, OracleCaller
from vale_audit.validation import build_discrepancies

RESULT_FOLDERS = {
    AuditStatus.APPROVED: "processed",
    AuditStatus.INCONSISTENT: "processed",
    AuditStatus.NEEDS_MANUAL_REVIEW: "manual_review",
    AuditStatus.ERROR: "failed",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditOrchestrator:
    def __init__(self, store: BlobStore, caller: OracleCaller, ledger: Optional[ProcessingLedger] = None):
        self.store = store
        self.caller = caller
        self.ledger = ledger or ProcessingLedger(store)

    def load_valid_plates(self, date_path: str) -> List[str]:
        result = self.store.read_json(f"extractions/{date_path}/data.json")
        if not result.ok or not result.value:
            print("⚠️ Could not load valid plates, continuing with an empty list")
            return []
        plates = result.value.get("valid_plates") or []
        print(f"📋 Loaded {len(plates)} valid plates")
        return list(plates)

    @staticmethod
    def image_path_for(record: ValeRecord, date_path: str) -> str:
        name = posixpath.basename((record.foto_vale or "").replace("\\", "/"))
        return f"images/{date_path}/{name}"

    @staticmethod
    def result_path(date_path: str, result: AuditResult) -> str:
        return f"audits/{date_path}/{RESULT_FOLDERS[result.status]}/{result.row_id}.json"

    def _build_result(self, record: ValeRecord, image_path: str, outcome: CallOutcome) -> AuditResult:
        validation = outcome.validation
        if outcome.extraction is not None:
            extraction = outcome.extraction.values()
            confidences = outcome.extraction.confidences()
        else:
            extraction = {name: "" for name in record.reference_values()}
            confidences = {name: 0.0 for name in record.reference_values()}

        return AuditResult(
            row_id=record.row_id,
            timestamp=_now_iso(),
            status=validation.status,
            approved=validation.approved,
            obra=record.obra,
            image_path=image_path,
            extraction=extraction,
            confidences=confidences,
            reference_values=record.reference_values(),
            comparisons=dict(validation.comparisons),
            discrepancies=build_discrepancies(validation.comparisons),
            manual_review_reason=validation.manual_review_reason,
            quality_score=outcome.quality.quality_score if outcome.quality else None,
        )

    def _error_result(self, record: ValeRecord, image_path: str, error: Exception) -> AuditResult:
        message = error.message if isinstance(error, ValeAuditError) else str(error)
        return AuditResult(
            row_id=record.row_id,
            timestamp=_now_iso(),
            status=AuditStatus.ERROR,
            obra=record.obra,
            image_path=image_path,
            reference_values=record.reference_values(),
            error=f"{type(error).__name__}: {message}",
        )

    def process_record(self, record: ValeRecord, date_path: str,
                       valid_plates: Iterable[str] = ()) -> AuditResult:
        print(f"\n🔍 Auditing {record.row_id} (vale {record.numero_vale or '?'})")
        image_path = self.image_path_for(record, date_path)
        try:
            outcome = self.caller.audit(record, image_path, valid_plates)
            result = self._build_result(record, image_path, outcome)
        except Exception as e:
            print(f"❌ {record.row_id}: {type(e).__name__}: {e}")
            result = self._error_result(record, image_path, e)

        written = self.store.write_json(self.result_path(date_path, result), result.to_dict())
        if not written.ok:
            print(f"⚠️ {record.row_id}: result not saved, leaving it out of the ledger")
        elif result.status is not AuditStatus.ERROR:
            self.ledger.mark_processed(date_path, record.row_id)

        print(f"📋 {record.row_id}: {result.status.value}")
        return result

    def process_batch(self, records: Iterable[ValeRecord], date_path: str) -> BatchSummary:
        records = list(records)
        pending = self.ledger.unprocessed(records, date_path)
        summary = BatchSummary(date_path=date_path, total_records=len(records),
                               skipped=len(records) - len(pending))
        if not pending:
            print("✅ All records already processed")
            return summary

        valid_plates = self.load_valid_plates(date_path)
        for i, record in enumerate(pending, 1):
            print(f"\n[{i}/{len(pending)}]")
            summary.count(self.process_record(record, date_path, valid_plates))

        if summary.error:
            self._write_failure_summary(summary)

        print(f"\n📊 Audit finished: {summary.approved} approved, {summary.inconsistent} inconsistent, "
              f"{summary.needs_manual_review} manual review, {summary.error} errors, "
              f"{summary.skipped} skipped")
        return summary

    def _write_failure_summary(self, summary: BatchSummary):
        failed = summary.failed_results()
        data = {
            "date": summary.date_path,
            "timestamp": _now_iso(),
            "total_failed": len(failed),
            "failed_records": [{"row_id": r.row_id, "error": r.error} for r in failed],
        }
        self.store.write_json(f"audits/{summary.date_path}/failure_summary.json", data)

    def collect_results(self, date_path: str) -> List[Dict]:
        """Every persisted result for the date, for reporting"""
        results = []
        for folder in ("processed", "manual_review", "failed"):
            listing = self.store.list(f"audits/{date_path}/{folder}/")
            if not listing.ok:
                continue
            for path in listing.value:
                if not path.endswith(".json"):
                    continue
                data = self.store.read_json(path)
                if data.ok and data.value:
                    results.append(data.value)
        print(f"📊 Collected {len(results)} results for {date_path}")
        return results
