import io
from unittest.mock import MagicMock, patch

import pandas as pd
from openpyxl import load_workbook

from vale_audit.email_report import (
    SmtpSender,
    eligible_users,
    group_by_obra,
    obra_summary,
    render_html,
    send_audit_reports,
)
from vale_audit.excel_report import SHEET_NAME, build_audit_workbook
from vale_audit.ocr_models import AuditResult, AuditStatus, BatchSummary
from vale_audit.slack_notifier import build_summary_message, send_batch_summary

RESULTS = [
    {
        "row_id": "r1", "status": "approved", "approved": True, "obra": "Obra Norte",
        "reference_values": {"numero_vale": "1", "placa": "ABC123", "m3": "16", "fecha": "15/03/2025"},
        "extraction": {"numero_vale": "1", "placa": "ABC123", "m3": "16", "fecha": "15/03/2025"},
        "comparisons": {n: {"matches": True} for n in ("numero_vale", "placa", "m3", "fecha")},
        "discrepancies": [],
    },
    {
        "row_id": "r2", "status": "inconsistent", "approved": False, "obra": "Obra Norte",
        "reference_values": {"numero_vale": "2", "placa": "ABC123", "m3": "16", "fecha": "15/03/2025"},
        "extraction": {"numero_vale": "2", "placa": "ABC123", "m3": "10", "fecha": "15/03/2025"},
        "comparisons": {"numero_vale": {"matches": True}, "placa": {"matches": True},
                        "m3": {"matches": False}, "fecha": {"matches": True}},
        "discrepancies": [{"field": "m3", "extracted": "10", "expected": "16", "confidence": 0.9,
                           "reason": "mismatch"}],
    },
    {"row_id": "r3", "status": "needs_manual_review", "approved": False, "obra": "Obra Sur"},
    {"row_id": "r4", "status": "error", "obra": None, "error": "PermanentOracleError: 400"},
]

USERS = {
    "u1": {"email": "ana@example.com", "role": "Admin", "status": "ACTIVO", "obras": ["Obra Norte"]},
    "u2": {"email": "luis@example.com", "role": "auditor", "status": "activo", "obras": ["Obra Norte", "Obra Sur"]},
    "u3": {"email": "off@example.com", "role": "Admin", "status": "INACTIVO", "obras": ["Obra Norte"]},
    "u4": {"email": "op@example.com", "role": "Operador", "status": "ACTIVO", "obras": ["Obra Norte"]},
    "u5": {"email": None, "role": "Admin", "status": "ACTIVO", "obras": ["Obra Sur"]},
}


def test_workbook_has_one_row_per_result():
    data = build_audit_workbook(RESULTS)

    df = pd.read_excel(io.BytesIO(data), sheet_name=SHEET_NAME, dtype=str).fillna("")
    assert list(df["ID"]) == ["r1", "r2", "r3", "r4"]
    assert df.loc[1, "M3 matches"] == "NO"
    assert "m3: expected=\"16\"" in df.loc[1, "Discrepancies"]
    assert df.loc[3, "Status"] == "ERROR"
    assert df.loc[3, "Approved"] == "N/A"


def test_workbook_row_colors():
    ws = load_workbook(io.BytesIO(build_audit_workbook(RESULTS)))[SHEET_NAME]
    assert ws["A2"].fill.fgColor.rgb.endswith("C6EFCE")
    assert ws["A3"].fill.fgColor.rgb.endswith("FFEB9C")
    assert ws["A5"].fill.fgColor.rgb.endswith("FFC7CE")


def test_grouping_and_recipients():
    groups = group_by_obra(RESULTS)
    assert list(groups) == ["Obra Norte", "Obra Sur", "No obra"]

    emails = sorted(u["email"] for u in eligible_users(USERS, ["Admin", "Super Admin", "Auditor"]))
    assert emails == ["ana@example.com", "luis@example.com"]


def test_obra_summary_counts():
    assert obra_summary(RESULTS) == {
        "successful": 3, "failed": 1, "approved": 1, "discrepancies": 1, "manual_review": 1,
    }


def test_send_audit_reports_one_email_per_obra(monkeypatch):
    monkeypatch.delenv("EMAIL_TEST_MODE", raising=False)
    sender = MagicMock()

    sent = send_audit_reports("15/03/2025", RESULTS, USERS, sender)

    assert sent == 2
    first, second = sender.send.call_args_list
    assert sorted(first[0][0]) == ["ana@example.com", "luis@example.com"]
    assert "Obra Norte" in first[0][1]
    assert second[0][0] == ["luis@example.com"]
    attachment, filename = first[0][3][0]
    assert filename == "vale-audit-Obra Norte-15-03-2025.xlsx"
    assert attachment[:2] == b"PK"


def test_send_audit_reports_test_mode(monkeypatch):
    monkeypatch.setenv("EMAIL_TEST_MODE", "true")
    monkeypatch.setenv("EMAIL_TEST_ADDRESS", "qa@example.com")
    sender = MagicMock()

    sent = send_audit_reports("15/03/2025", RESULTS, USERS, sender)

    assert sent == 3
    assert all(call[0][0] == ["qa@example.com"] for call in sender.send.call_args_list)


def test_send_audit_reports_test_mode_without_address_sends_nothing(monkeypatch, capsys):
    monkeypatch.setenv("EMAIL_TEST_MODE", "true")
    monkeypatch.delenv("EMAIL_TEST_ADDRESS", raising=False)
    users = {"u1": {"email": "boss@real.co", "role": "Admin", "status": "ACTIVO", "obras": ["Obra Norte"]}}
    sender = MagicMock()

    sent = send_audit_reports("15/03/2025", RESULTS[:2], users, sender)

    assert sent == 0
    sender.send.assert_not_called()
    assert "EMAIL_TEST_ADDRESS" in capsys.readouterr().out


def test_obra_name_is_escaped_in_body_and_filename(monkeypatch):
    monkeypatch.delenv("EMAIL_TEST_MODE", raising=False)
    obra = 'Obra <b>"Sur/Este"</b>'
    results = [dict(RESULTS[0], obra=obra)]
    users = {"u1": {"email": "ana@example.com", "role": "Admin", "status": "ACTIVO", "obras": [obra]}}
    sender = MagicMock()

    send_audit_reports("15/03/2025", results, users, sender)

    _, _, body, attachments = sender.send.call_args[0]
    assert "<b>" not in body
    assert "&lt;b&gt;&quot;Sur/Este&quot;&lt;/b&gt;" in body
    assert attachments[0][1] == "vale-audit-Obra <b>SurEste</b>-15-03-2025.xlsx"
    assert render_html("15/03/2025", obra_summary(results)).count("<h2>") == 0


@patch("vale_audit.email_report.smtplib.SMTP")
def test_smtp_sender(smtp_mock):
    server = MagicMock()
    smtp_mock.return_value.__enter__.return_value = server

    SmtpSender("smtp.example.com", 587, "bot@example.com", "secret").send(
        ["ana@example.com"], "subject", "<p>hi</p>", [(b"data", "report.xlsx")])

    smtp_mock.assert_called_once_with("smtp.example.com", 587)
    server.login.assert_called_once_with("bot@example.com", "secret")
    sender, recipients, payload = server.sendmail.call_args[0]
    assert recipients == ["ana@example.com"]
    assert 'filename="report.xlsx"' in payload


def _summary():
    summary = BatchSummary(date_path="2025/03/15", total_records=3, skipped=1)
    summary.count(AuditResult("r1", "t", AuditStatus.APPROVED, approved=True))
    summary.count(AuditResult("r2", "t", AuditStatus.ERROR, error="boom"))
    return summary


def test_slack_message_counts():
    message = build_summary_message(_summary(), "15/03/2025")
    assert "Approved: 1 (50.0%)" in message
    assert "Errors: 1" in message
    assert "already processed: 1" in message


def test_slack_without_webhook_prints(monkeypatch, capsys):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    assert send_batch_summary(_summary(), "15/03/2025") is False
    assert "Vale audit finished" in capsys.readouterr().out


@patch("vale_audit.slack_notifier.requests.post")
def test_slack_posts_to_webhook(mock_post):
    assert send_batch_summary(_summary(), "15/03/2025", webhook_url="https://hooks.slack.com/services/T/B/C")
    payload = mock_post.call_args[1]["json"]
    assert payload["attachments"][0]["color"] == "danger"
