"""
Retry-wrapped Oracle caller

Runs one record through the pipeline stages

    INIT -> QUALITY_GATE (optional) -> EXTRACT -> VALIDATE -> DONE

Stage transitions and the retry decision are plain functions so they can be
tested without any I/O.
"""

import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from vale_audit.blob_store import BlobStore
from vale_audit.config_loader import DEFAULTS
from vale_audit.errors import (
    ImageUnavailableError,
    MalformedResponseError,
    OracleError,
    ResponseShapeError,
    TransientOracleError,
)
from vale_audit.gemini_client import decode_extraction, decode_quality
from vale_audit.ocr_models import (
    FIELDS,
    AuditStatus,
    Comparison,
    Extraction,
    PipelineStage,
    QualityCheck,
    ValeRecord,
    ValidationOutcome,
)
from vale_audit.outcome import Ok, ParseError
from vale_audit.validation import validate_extraction

ILLEGIBLE_NOTE = "Illegible image - manual review required"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 4
    base_delay: float = 1.0

    @classmethod
    def from_config(cls, cfg: Dict) -> "RetryPolicy":
        retry = cfg.get("retry", DEFAULTS["retry"])
        return cls(int(retry["max_retries"]), float(retry["base_delay_seconds"]))

    def delay_for(self, error: Exception, attempt: int) -> Optional[float]:
        """Seconds to wait before the next attempt, or None to give up.

        ``attempt`` is the zero-based index of the attempt that just failed.
        """
        if attempt + 1 >= self.max_retries:
            return None
        if not isinstance(error, OracleError) or not error.retriable:
            return None
        if isinstance(error, TransientOracleError) and error.status == 429 and error.retry_delay is not None:
            return error.retry_delay
        return self.base_delay * (2 ** attempt)


def initial_stage(gate_enabled: bool) -> PipelineStage:
    return PipelineStage.QUALITY_GATE if gate_enabled else PipelineStage.EXTRACT


def stage_after_quality_gate(check: Optional[QualityCheck]) -> PipelineStage:
    # a failed gate (None) does not block extraction
    if check is not None and not check.is_readable:
        return PipelineStage.DONE
    return PipelineStage.EXTRACT


def stage_after_extract(extraction: Extraction) -> PipelineStage:
    return PipelineStage.VALIDATE


def illegible_outcome(record: ValeRecord, check: QualityCheck) -> ValidationOutcome:
    comparisons = {
        name: Comparison(False, 0.0, ILLEGIBLE_NOTE, "", getattr(record, name))
        for name in FIELDS
    }
    reason = f"Image quality too low ({check.quality_score}/10)"
    if check.reason:
        reason += f": {check.reason}"
    return ValidationOutcome(comparisons, False, AuditStatus.NEEDS_MANUAL_REVIEW, reason)


@dataclass
class CallOutcome:
    validation: ValidationOutcome
    extraction: Optional[Extraction] = None
    quality: Optional[QualityCheck] = None
    stages: Optional[List[PipelineStage]] = None

    @property
    def short_circuited(self) -> bool:
        return self.extraction is None


class OracleCaller:
    """Downloads the vale image, optionally rates it, extracts and validates"""

    def __init__(self, store: BlobStore, oracle, cfg: Dict = None,
                 sleep: Callable[[float], None] = time.sleep, policy: RetryPolicy = None):
        self.store = store
        self.oracle = oracle
        self.cfg = cfg or DEFAULTS
        self.sleep = sleep
        self.policy = policy or RetryPolicy.from_config(self.cfg)
        self.gate_enabled = bool(self.cfg.get("quality_gate", {}).get("enabled", True))

    def audit(self, record: ValeRecord, image_path: str,
              valid_plates: Iterable[str] = ()) -> CallOutcome:
        valid_plates = list(valid_plates or [])
        temp_dir = tempfile.mkdtemp(prefix="vale_")
        try:
            image = self._fetch_image(image_path, temp_dir)

            stages = [PipelineStage.INIT]
            quality = None
            extraction = None
            validation = None

            stage = initial_stage(self.gate_enabled)
            while stage is not PipelineStage.DONE:
                stages.append(stage)
                if stage is PipelineStage.QUALITY_GATE:
                    quality = self._run_quality_gate(record.row_id, image)
                    stage = stage_after_quality_gate(quality)
                    if stage is PipelineStage.DONE:
                        print(f"⚠️ {record.row_id}: illegible image, sending to manual review")
                        validation = illegible_outcome(record, quality)
                elif stage is PipelineStage.EXTRACT:
                    extraction = self._extract_with_retry(record, image, valid_plates)
                    stage = stage_after_extract(extraction)
                elif stage is PipelineStage.VALIDATE:
                    validation = validate_extraction(extraction, record, valid_plates, self.cfg)
                    stage = PipelineStage.DONE
            stages.append(PipelineStage.DONE)

            return CallOutcome(validation, extraction, quality, stages)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _fetch_image(self, image_path: str, temp_dir: str) -> bytes:
        local = os.path.join(temp_dir, os.path.basename(image_path) or "image")
        result = self.store.download(image_path, local)
        if not result.ok:
            raise ImageUnavailableError(f"Image not available: {result.error.message}", path=image_path)
        with open(result.value, "rb") as f:
            return f.read()

    def _run_quality_gate(self, row_id: str, image: bytes) -> Optional[QualityCheck]:
        print(f"🔍 {row_id}: checking image quality...")
        try:
            raw = self.oracle.check_quality(image)
        except OracleError as e:
            print(f"⚠️ {row_id}: quality check failed ({e.message}), continuing with extraction")
            return None
        decoded = decode_quality(raw)
        if not isinstance(decoded, Ok):
            print(f"⚠️ {row_id}: quality response unusable ({decoded.reason}), continuing with extraction")
            return None
        print(f"📊 {row_id}: quality {decoded.value.quality_score}/10")
        return decoded.value

    def _extract_once(self, record: ValeRecord, image: bytes, valid_plates: List[str]) -> Extraction:
        raw = self.oracle.extract(image, record.reference_values(), valid_plates)
        decoded = decode_extraction(raw)
        if isinstance(decoded, Ok):
            return decoded.value
        if isinstance(decoded, ParseError):
            raise MalformedResponseError(f"Response is not valid JSON: {decoded.reason}",
                                         raw_text=decoded.raw_text)
        raise ResponseShapeError(f"Unexpected response shape: {decoded.reason}",
                                 raw_text=decoded.raw_text)

    def _extract_with_retry(self, record: ValeRecord, image: bytes, valid_plates: List[str]) -> Extraction:
        attempt = 0
        while True:
            print(f"🔍 {record.row_id}: extracting fields (attempt {attempt + 1}/{self.policy.max_retries})")
            try:
                return self._extract_once(record, image, valid_plates)
            except OracleError as e:
                delay = self.policy.delay_for(e, attempt)
                if delay is None:
                    print(f"❌ {record.row_id}: extraction failed: {e.message}")
                    raise
                print(f"⏳ {record.row_id}: {e.message}, retrying in {delay:g}s")
                self.sleep(delay)
                attempt += 1
