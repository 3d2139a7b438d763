#!/usr/bin/env python3
"""
Slack run summary for the vale audit
"""

import os

import requests

from vale_audit.ocr_models import BatchSummary


def build_summary_message(summary: BatchSummary, date: str) -> str:
    audited = summary.audited
    approval_rate = (summary.approved / audited * 100) if audited > 0 else 0

    if summary.error:
        status_emoji = "⚠️"
    elif summary.inconsistent or summary.needs_manual_review:
        status_emoji = "📋"
    else:
        status_emoji = "✅"

    message = f"""
{status_emoji} *Vale audit finished* - {date}

📊 *Results* (audited: {audited}, already processed: {summary.skipped})
🟢 Approved: {summary.approved} ({approval_rate:.1f}%)
🟡 Inconsistent: {summary.inconsistent}
🔎 Manual review: {summary.needs_manual_review}
❌ Errors: {summary.error}

{f"🚨 *{summary.error} records failed* and will be retried on the next run" if summary.error else ""}
    """.strip()
    return message


def send_batch_summary(summary: BatchSummary, date: str, webhook_url: str = None) -> bool:
    """Post the batch counts to Slack; prints them instead when no webhook is configured"""

    webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")
    message = build_summary_message(summary, date)
    if not webhook_url or "YOUR/WEBHOOK/URL" in webhook_url:
        print("⚠️ Slack webhook URL not set, printing summary instead")
        print(message)
        return False

    payload = {
        "text": f"Vale audit - {date}",
        "attachments": [{
            "color": "danger" if summary.error else "warning" if summary.inconsistent else "good",
            "text": message,
            "mrkdwn_in": ["text"],
        }],
    }

    try:
        response = requests.post(webhook_url, json=payload, timeout=30)
        response.raise_for_status()
        print("✅ Slack summary sent")
        return True
    except requests.exceptions.RequestException as e:
        print(f"❌ Slack summary failed: {e}")
        return False
