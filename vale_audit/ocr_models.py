from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional


FIELDS = ("numero_vale", "placa", "m3", "fecha")


class AuditStatus(str, Enum):
    APPROVED = "approved"
    INCONSISTENT = "inconsistent"
    NEEDS_MANUAL_REVIEW = "needs_manual_review"
    ERROR = "error"


class PipelineStage(str, Enum):
    INIT = "init"
    QUALITY_GATE = "quality_gate"
    EXTRACT = "extract"
    VALIDATE = "validate"
    DONE = "done"


@dataclass(frozen=True)
class ValeRecord:
    row_id: str
    numero_vale: str
    placa: str
    m3: str
    fecha: str  # DD/MM/YYYY
    obra: Optional[str] = None
    foto_vale: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "ValeRecord":
        def _text(value) -> str:
            return "" if value is None else str(value)

        return cls(
            row_id=_text(data.get("row_id")),
            numero_vale=_text(data.get("numero_vale")),
            placa=_text(data.get("placa")),
            m3=_text(data.get("m3")),
            fecha=_text(data.get("fecha")),
            obra=data.get("obra"),
            foto_vale=data.get("foto_vale"),
        )

    def reference_values(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in FIELDS}

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class FieldReading:
    value: str = ""
    confidence: float = 0.0


@dataclass(frozen=True)
class Extraction:
    numero_vale: FieldReading
    placa: FieldReading
    m3: FieldReading
    fecha: FieldReading

    def reading(self, name: str) -> FieldReading:
        return getattr(self, name)

    def values(self) -> Dict[str, str]:
        return {name: self.reading(name).value for name in FIELDS}

    def confidences(self) -> Dict[str, float]:
        return {name: self.reading(name).confidence for name in FIELDS}


@dataclass(frozen=True)
class Comparison:
    matches: bool
    confidence: float
    note: str = ""
    extracted: str = ""
    expected: str = ""


@dataclass(frozen=True)
class Discrepancy:
    field: str
    extracted: str
    expected: str
    confidence: float
    reason: str


@dataclass(frozen=True)
class QualityCheck:
    """Legibility rating of a vale image (0-10)."""
    quality_score: float
    is_readable: bool
    reason: str = ""


@dataclass(frozen=True)
class ValidationOutcome:
    comparisons: Dict[str, Comparison]
    approved: bool
    status: AuditStatus
    manual_review_reason: Optional[str] = None


@dataclass
class AuditResult:
    row_id: str
    timestamp: str
    status: AuditStatus
    approved: bool = False
    obra: Optional[str] = None
    image_path: Optional[str] = None
    extraction: Dict[str, str] = field(default_factory=dict)
    confidences: Dict[str, float] = field(default_factory=dict)
    reference_values: Dict[str, Optional[str]] = field(default_factory=dict)
    comparisons: Dict[str, Comparison] = field(default_factory=dict)
    discrepancies: List[Discrepancy] = field(default_factory=list)
    manual_review_reason: Optional[str] = None
    quality_score: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class BatchSummary:
    date_path: str
    total_records: int
    skipped: int = 0
    approved: int = 0
    inconsistent: int = 0
    needs_manual_review: int = 0
    error: int = 0
    results: List[AuditResult] = field(default_factory=list)

    @property
    def audited(self) -> int:
        return len(self.results)

    def count(self, result: AuditResult):
        self.results.append(result)
        if result.status is AuditStatus.APPROVED:
            self.approved += 1
        elif result.status is AuditStatus.INCONSISTENT:
            self.inconsistent += 1
        elif result.status is AuditStatus.NEEDS_MANUAL_REVIEW:
            self.needs_manual_review += 1
        else:
            self.error += 1

    def failed_results(self) -> List[AuditResult]:
        return [r for r in self.results if r.status is AuditStatus.ERROR]
