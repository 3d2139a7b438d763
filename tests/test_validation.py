from vale_audit.config_loader import DEFAULTS
from vale_audit.ocr_models import AuditStatus, Extraction, FieldReading, ValeRecord
from vale_audit.validation import (
    build_discrepancies,
    compare_fecha,
    compare_m3,
    compare_numero_vale,
    compare_placa,
    validate_extraction,
)


RECORD = ValeRecord("row-1", "123456", "ABC123", "16", "15/03/2025", obra="Obra Norte", foto_vale="vale.jpg")


def _extraction(numero="123456", placa="ABC123", m3="16", fecha="15/03/2025", conf=0.95):
    return Extraction(
        numero_vale=FieldReading(numero, conf),
        placa=FieldReading(placa, conf),
        m3=FieldReading(m3, conf),
        fecha=FieldReading(fecha, conf),
    )


def test_numero_vale_is_exact():
    assert compare_numero_vale("123456", "123456").matches
    assert not compare_numero_vale("123456 ", "123456").matches


def test_placa_trims_and_uppercases():
    assert compare_placa(" abc123 ", "ABC123", 0.9).matches


def test_placa_mismatch_suggests_closest_registered_plate():
    c = compare_placa("ABC128", "XYZ999", 0.9, ["ABC123", "XYZ999"])
    assert not c.matches
    assert "ABC123" in c.note


def test_placa_empty():
    c = compare_placa("", "ABC123", 0.0)
    assert not c.matches
    assert c.note == "Plate not extracted"


def test_m3_numeric_tolerance():
    assert compare_m3("16.00", "16").matches
    assert not compare_m3("15", "16").matches
    assert compare_m3("12 M3", "12").matches
    assert not compare_m3("abc", "12").matches


def test_fecha_tolerance_boundary():
    exact = compare_fecha("15/03/2025", "15/03/2025")
    assert exact.matches and exact.note == ""

    two = compare_fecha("17/03/2025", "15/03/2025")
    assert two.matches
    assert "within tolerance" in two.note

    three = compare_fecha("18/03/2025", "15/03/2025")
    assert not three.matches
    assert "exceeds tolerance" in three.note


def test_fecha_unparseable_and_empty():
    assert not compare_fecha("2025-03-15", "15/03/2025").matches
    empty = compare_fecha("", "15/03/2025")
    assert not empty.matches
    assert empty.note == "Empty or invalid date"


def test_all_match_high_confidence_is_approved():
    outcome = validate_extraction(_extraction(), RECORD)
    assert outcome.status is AuditStatus.APPROVED
    assert outcome.approved
    assert outcome.manual_review_reason is None


def test_empty_field_short_circuits_to_manual_review():
    outcome = validate_extraction(_extraction(placa=""), RECORD)
    assert outcome.status is AuditStatus.NEEDS_MANUAL_REVIEW
    assert not outcome.approved
    assert outcome.manual_review_reason == "One or more fields could not be extracted"


def test_low_confidence_match_goes_to_manual_review():
    ext = Extraction(
        numero_vale=FieldReading("123456", 0.95),
        placa=FieldReading("ABC123", 0.5),
        m3=FieldReading("16", 0.95),
        fecha=FieldReading("15/03/2025", 0.95),
    )
    outcome = validate_extraction(ext, RECORD)
    assert outcome.status is AuditStatus.NEEDS_MANUAL_REVIEW
    assert outcome.manual_review_reason == "Low confidence on: placa (50%)"


def test_mismatch_with_low_confidence_goes_to_manual_review():
    ext = Extraction(
        numero_vale=FieldReading("999999", 0.95),
        placa=FieldReading("ABC123", 0.6),
        m3=FieldReading("16", 0.95),
        fecha=FieldReading("15/03/2025", 0.95),
    )
    outcome = validate_extraction(ext, RECORD)
    assert outcome.status is AuditStatus.NEEDS_MANUAL_REVIEW
    assert outcome.manual_review_reason.startswith("Mismatches with low confidence on:")
    assert "placa (60%)" in outcome.manual_review_reason


def test_confident_mismatch_is_inconsistent():
    outcome = validate_extraction(_extraction(m3="15"), RECORD)
    assert outcome.status is AuditStatus.INCONSISTENT
    assert outcome.manual_review_reason is None

    discrepancies = build_discrepancies(outcome.comparisons)
    assert [d.field for d in discrepancies] == ["m3"]
    assert discrepancies[0].expected == "16"


def test_threshold_comes_from_config():
    cfg = dict(DEFAULTS, thresholds={"confidence": 0.99, "quality_min_score": 7})
    outcome = validate_extraction(_extraction(conf=0.95), RECORD, cfg=cfg)
    assert outcome.status is AuditStatus.NEEDS_MANUAL_REVIEW


def test_validation_is_deterministic():
    ext = _extraction(placa="ABC128", fecha="19/03/2025")
    first = validate_extraction(ext, RECORD, ["ABC123"])
    second = validate_extraction(ext, RECORD, ["ABC123"])
    assert first == second
