import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from vale_audit.config_loader import DEFAULTS
from vale_audit.ocr_models import (
    FIELDS,
    AuditStatus,
    Comparison,
    Discrepancy,
    Extraction,
    ValeRecord,
    ValidationOutcome,
)

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")


def _parse_number(text) -> Optional[float]:
    """Leading numeric prefix, so "12 M3" reads as 12.0."""
    if text is None:
        return None
    m = _LEADING_NUMBER.match(str(text))
    if not m:
        return None
    return float(m.group(0))


def _parse_date(text) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.strptime(str(text).strip(), "%d/%m/%Y")
    except ValueError:
        return None


def _normalize_plate(text) -> str:
    return (text or "").strip().upper()


def _closest_plate(plate: str, valid_plates: Iterable[str]) -> Optional[str]:
    best: Tuple[float, str] = (0.0, "")
    for candidate in sorted({_normalize_plate(p) for p in valid_plates if p}):
        sim = JaroWinkler.normalized_similarity(plate, candidate)
        if sim > best[0]:
            best = (sim, candidate)
    return best[1] if best[0] >= 0.8 else None


def compare_numero_vale(extracted: str, expected: str, confidence: float = 0.0) -> Comparison:
    matches = extracted == expected
    note = "" if matches else f'Extracted number "{extracted}" does not match "{expected}"'
    return Comparison(matches, confidence, note, extracted, expected)


def compare_placa(extracted: str, expected: str, confidence: float = 0.0,
                  valid_plates: Iterable[str] = ()) -> Comparison:
    if not extracted:
        return Comparison(False, confidence, "Plate not extracted", extracted, expected)

    e = _normalize_plate(extracted)
    x = _normalize_plate(expected)
    if e == x:
        return Comparison(True, confidence, "", extracted, expected)

    note = f'Extracted plate "{e}" does not match "{x}"'
    closest = _closest_plate(e, valid_plates)
    if closest and closest != e:
        note += f' (closest registered plate: "{closest}")'
    return Comparison(False, confidence, note, extracted, expected)


def compare_m3(extracted: str, expected: str, confidence: float = 0.0,
               tolerance: float = DEFAULTS["tolerances"]["quantity"]) -> Comparison:
    a = _parse_number(extracted)
    b = _parse_number(expected)
    matches = a is not None and b is not None and abs(a - b) < tolerance
    note = "" if matches else f'Extracted quantity "{extracted}" does not match "{expected}"'
    return Comparison(matches, confidence, note, extracted, str(expected))


def compare_fecha(extracted: str, expected: str, confidence: float = 0.0,
                  tolerance_days: int = DEFAULTS["tolerances"]["date_days"]) -> Comparison:
    if not extracted or not expected:
        return Comparison(False, confidence, "Empty or invalid date", extracted, expected)

    e = _parse_date(extracted)
    x = _parse_date(expected)
    if e is None or x is None:
        bad = extracted if e is None else expected
        return Comparison(False, confidence, f'Could not parse date "{bad}" (expected DD/MM/YYYY)',
                          extracted, expected)

    diff = abs((e - x).days)
    if diff == 0:
        return Comparison(True, confidence, "", extracted, expected)
    if diff <= tolerance_days:
        return Comparison(True, confidence, f"Difference of {diff} day(s), within tolerance",
                          extracted, expected)
    return Comparison(
        False,
        confidence,
        f"Difference of {diff} days, exceeds tolerance (maximum {tolerance_days} days)",
        extracted,
        expected,
    )


def build_discrepancies(comparisons: Dict[str, Comparison]) -> List[Discrepancy]:
    return [
        Discrepancy(name, c.extracted, c.expected, c.confidence, c.note)
        for name, c in comparisons.items()
        if not c.matches
    ]


def validate_extraction(extraction: Extraction, record: ValeRecord,
                        valid_plates: Iterable[str] = (), cfg: dict = None) -> ValidationOutcome:
    """Compare an OCR extraction with its reference record and decide the status.

    Precedence: empty field -> manual review; then any low-confidence field ->
    manual review; then all match -> approved; otherwise inconsistent.

    Args:
        extraction: per-field value and confidence read from the image
        record: reference row
        valid_plates: registered plates, only used to enrich mismatch notes
        cfg: audit config (thresholds/tolerances); defaults when omitted

    Returns:
        ValidationOutcome
    """
    cfg = cfg or DEFAULTS
    threshold = cfg["thresholds"]["confidence"]
    tolerances = cfg["tolerances"]
    valid_plates = list(valid_plates or [])

    comparisons = {
        "numero_vale": compare_numero_vale(
            extraction.numero_vale.value, record.numero_vale, extraction.numero_vale.confidence),
        "placa": compare_placa(
            extraction.placa.value, record.placa, extraction.placa.confidence, valid_plates),
        "m3": compare_m3(
            extraction.m3.value, record.m3, extraction.m3.confidence, tolerances["quantity"]),
        "fecha": compare_fecha(
            extraction.fecha.value, record.fecha, extraction.fecha.confidence, tolerances["date_days"]),
    }

    if any(not extraction.reading(name).value for name in FIELDS):
        return ValidationOutcome(
            comparisons=comparisons,
            approved=False,
            status=AuditStatus.NEEDS_MANUAL_REVIEW,
            manual_review_reason="One or more fields could not be extracted",
        )

    low_confidence = [
        f"{name} ({extraction.reading(name).confidence * 100:.0f}%)"
        for name in FIELDS
        if extraction.reading(name).confidence < threshold
    ]
    all_match = all(c.matches for c in comparisons.values())

    if all_match and not low_confidence:
        return ValidationOutcome(comparisons, True, AuditStatus.APPROVED, None)
    if all_match:
        return ValidationOutcome(
            comparisons, False, AuditStatus.NEEDS_MANUAL_REVIEW,
            f"Low confidence on: {', '.join(low_confidence)}",
        )
    if low_confidence:
        return ValidationOutcome(
            comparisons, False, AuditStatus.NEEDS_MANUAL_REVIEW,
            f"Mismatches with low confidence on: {', '.join(low_confidence)}",
        )
    return ValidationOutcome(comparisons, False, AuditStatus.INCONSISTENT, None)
