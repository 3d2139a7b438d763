"""
Email delivery of audit reports

One email per obra, sent to the active users with an eligible role that are
related to that obra, with the obra's workbook attached.
"""

import html
import os
import smtplib
import ssl
from collections import OrderedDict
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from typing import Dict, Iterable, List, Optional, Tuple

from vale_audit.config_loader import DEFAULTS
from vale_audit.excel_report import build_audit_workbook

NO_OBRA = "No obra"


class SmtpSender:
    """SMTP settings from SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS"""

    def __init__(self, host: str = None, port: int = None, user: str = None,
                 password: str = None, sender: str = None):
        self.host = host or os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.port = int(port or os.getenv("SMTP_PORT", "587"))
        self.user = user or os.getenv("SMTP_USER")
        self.password = password or os.getenv("SMTP_PASS")
        name = os.getenv("EMAIL_NAME", "Vale Audit")
        self.sender = sender or f'"{name}" <{os.getenv("EMAIL_FROM") or self.user}>'

    def send(self, recipients: List[str], subject: str, html: str,
             attachments: Optional[List[Tuple[bytes, str]]] = None):
        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(html, "html"))

        for content, filename in attachments or []:
            part = MIMEBase("application", "octet-stream")
            part.set_payload(content)
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", f'attachment; filename="{filename}"')
            msg.attach(part)

        with smtplib.SMTP(self.host, self.port) as server:
            server.ehlo()
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.sendmail(self.sender, recipients, msg.as_string())


def group_by_obra(results: Iterable[Dict]) -> "OrderedDict[str, List[Dict]]":
    groups: "OrderedDict[str, List[Dict]]" = OrderedDict()
    for r in results:
        groups.setdefault(r.get("obra") or NO_OBRA, []).append(r)
    return groups


def eligible_users(users: Dict[str, Dict], roles: Iterable[str]) -> List[Dict]:
    wanted = {r.lower() for r in roles}
    return [
        u for u in users.values()
        if (u.get("status") or "").upper() == "ACTIVO"
        and (u.get("role") or "").lower() in wanted
        and u.get("email")
    ]


def obra_summary(results: List[Dict]) -> Dict[str, int]:
    successful = [r for r in results if r.get("status") != "error"]
    manual = [r for r in successful if r.get("status") == "needs_manual_review"]
    reviewed = [r for r in successful if r.get("status") != "needs_manual_review"]
    return {
        "successful": len(successful),
        "failed": len(results) - len(successful),
        "approved": sum(1 for r in reviewed if r.get("approved")),
        "discrepancies": sum(1 for r in reviewed if not r.get("approved")),
        "manual_review": len(manual),
    }


def attachment_name(obra: str) -> str:
    # '/' and '"' would break the path and the Content-Disposition header
    return obra.replace("/", "").replace('"', "").strip() or NO_OBRA


def render_html(date: str, summary: Dict[str, int], obra: Optional[str] = None) -> str:
    total = summary["successful"] + summary["failed"]
    heading = f"<h2>{html.escape(obra)}</h2>" if obra else ""
    details = ""
    if summary["successful"]:
        details = (
            f"<li>🟢 Approved: {summary['approved']}</li>"
            f"<li>🟡 With discrepancies: {summary['discrepancies']}</li>"
            f"<li>🔎 Manual review: {summary['manual_review']}</li>"
        )
    retry_note = ("<p><strong>Note:</strong> failed records will be retried on the next run.</p>"
                  if summary["failed"] else "")
    return f"""<html>
  <body style="font-family: Arial, sans-serif; color: #333;">
    <h1>📊 Vale Audit Report</h1>
    {heading}
    <p>Date: {date}</p>
    <ul>
      <li>Total records processed: {total}</li>
      <li>✅ Successful: {summary['successful']}</li>
      <li>❌ Failed: {summary['failed']}</li>
      {details}
    </ul>
    <p>The attached workbook has the full detail of the audit.</p>
    {retry_note}
  </body>
</html>"""


def send_audit_reports(date: str, results: List[Dict], users: Dict[str, Dict], sender,
                       eligible_roles: Iterable[str] = None) -> int:
    """Send the per-obra reports; returns the number of emails sent.

    With EMAIL_TEST_MODE=true every message goes to EMAIL_TEST_ADDRESS instead,
    one per real recipient.
    """
    test_mode = os.getenv("EMAIL_TEST_MODE", "false").lower() == "true"
    test_address = os.getenv("EMAIL_TEST_ADDRESS")
    if test_mode and not test_address:
        print("❌ EMAIL_TEST_MODE is on but EMAIL_TEST_ADDRESS is not set, no emails sent")
        return 0
    roles = list(eligible_roles or DEFAULTS["report"]["eligible_roles"])

    groups = group_by_obra(results)
    active = eligible_users(users, roles)
    print(f"\n📧 {len(groups)} obras with results, {len(active)} eligible recipients")

    sent = 0
    for obra, obra_results in groups.items():
        recipients = [u for u in active if obra in (u.get("obras") or [])]
        if not recipients:
            print(f"⚠️ No recipients for obra: {obra}")
            continue

        summary = obra_summary(obra_results)
        workbook = build_audit_workbook(obra_results)
        filename = f"vale-audit-{attachment_name(obra)}-{date.replace('/', '-')}.xlsx"
        subject = f"Vale Audit Report - {date} - {obra}"

        if test_mode:
            for user in recipients:
                sender.send([test_address], f"{subject} [for: {user['email']}]",
                            render_html(date, summary, obra), [(workbook, filename)])
                sent += 1
            print(f"📬 [TEST MODE] {len(recipients)} emails for {obra} sent to {test_address}")
        else:
            emails = [u["email"] for u in recipients]
            sender.send(emails, subject, render_html(date, summary, obra), [(workbook, filename)])
            sent += 1
            print(f"✅ Email sent for obra: {obra} ({len(emails)} recipients)")

    print(f"✅ Emails sent: {sent}")
    return sent
