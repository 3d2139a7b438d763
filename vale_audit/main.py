#!/usr/bin/env python
"""
vale-audit command line

    vale-audit run [--date MM/DD/YYYY] [--limit N] [--no-drive] [--no-email] [--no-slack]
    vale-audit check-env
"""

import argparse
import os
import sys
import traceback
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from vale_audit.appsheet_client import AppSheetClient, load_reference_data
from vale_audit.blob_store import make_blob_store
from vale_audit.config_loader import load_audit_config
from vale_audit.date_utils import date_path, to_display_date, yesterday_date_string
from vale_audit.email_report import SmtpSender, send_audit_reports
from vale_audit.environment_validator import EnvironmentValidator, validate_environment_quick
from vale_audit.errors import ValeAuditError
from vale_audit.gemini_client import GeminiClient, GeminiOracle
from vale_audit.image_stager import DriveImageSource, stage_images
from vale_audit.ledger import ProcessingLedger
from vale_audit.oracle_caller import OracleCaller
from vale_audit.orchestrator import AuditOrchestrator
from vale_audit.slack_notifier import send_batch_summary


def run(args) -> int:
    cfg = load_audit_config()
    date_str = args.date or yesterday_date_string(cfg["report"]["timezone"])
    date_p = date_path(date_str)

    print("=== Vale audit ===")
    print(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📅 Audit date: {date_str} ({date_p})")

    ok, missing = validate_environment_quick()
    if not ok:
        print(f"❌ Missing environment variables: {', '.join(missing)}")
        print("   Run `vale-audit check-env` for details")
        return 1

    try:
        store = make_blob_store()
        reference = load_reference_data(date_str, store, AppSheetClient())
    except ValeAuditError as e:
        print(f"❌ Could not load reference records: {e.message}")
        return 1

    records = reference.records
    if args.limit:
        records = records[: args.limit]
        print(f"📊 Limiting to {len(records)} records")
    if not records:
        print("No records to audit")
        return 0

    ledger = ProcessingLedger(store)
    if not args.no_drive:
        pending = ledger.unprocessed(records, date_p)
        try:
            source = DriveImageSource()
        except ValeAuditError as e:
            print(f"⚠️ Google Drive unavailable ({e.message}), using images already in the store")
        else:
            stage_images(pending, date_p, store, source)

    client = GeminiClient(os.getenv("GEMINI_API_KEY"), cfg["gemini"]["model"],
                          cfg["gemini"]["timeout_seconds"])
    oracle = GeminiOracle(client, cfg["thresholds"]["quality_min_score"])
    orchestrator = AuditOrchestrator(store, OracleCaller(store, oracle, cfg), ledger)

    summary = orchestrator.process_batch(records, date_p)
    results = orchestrator.collect_results(date_p)

    exit_code = 0
    if not args.no_email and results:
        try:
            send_audit_reports(to_display_date(date_str), results, reference.users, SmtpSender(),
                               cfg["report"]["eligible_roles"])
        except Exception as e:
            print(f"❌ Failed to send email reports: {e}")
            traceback.print_exc()
            exit_code = 1

    if not args.no_slack:
        send_batch_summary(summary, to_display_date(date_str))

    print("\n=== Done ===")
    print(f"  Approved: {summary.approved}")
    print(f"  Inconsistent: {summary.inconsistent}")
    print(f"  Manual review: {summary.needs_manual_review}")
    print(f"  Errors: {summary.error}")
    print(f"  Already processed: {summary.skipped}")
    return exit_code


def check_env(args) -> int:
    results = EnvironmentValidator().validate_all()
    return 0 if results["valid"] else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vale-audit", description="Audit vale receipts against AppSheet records")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="audit one day of records")
    run_p.add_argument("--date", help="audit date as MM/DD/YYYY (default: yesterday)")
    run_p.add_argument("--limit", type=int, default=None, help="audit at most N records")
    run_p.add_argument("--no-drive", action="store_true", help="use only images already in the blob store")
    run_p.add_argument("--no-email", action="store_true", help="skip report emails")
    run_p.add_argument("--no-slack", action="store_true", help="skip the Slack summary")
    run_p.set_defaults(func=run)

    env_p = sub.add_parser("check-env", help="validate environment variables")
    env_p.set_defaults(func=check_env)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
