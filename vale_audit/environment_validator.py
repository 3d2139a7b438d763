"""
Environment variable checks for the vale audit

Verifies that the credentials and storage settings a run needs are present and
well-formed before any record is touched.
"""

import os
import re
from datetime import datetime
from typing import Dict, List, Tuple


class EnvironmentValidator:
    """Checks required and optional environment variables"""

    REQUIRED_VARS = {
        "GEMINI_API_KEY": {
            "description": "Google Gemini API key",
            "pattern": r"^[A-Za-z0-9_-]{20,}$",
            "example": "AIzaSy...",
        },
        "APPSHEET_APP_ID": {
            "description": "AppSheet application ID",
            "pattern": r"^[A-Za-z0-9-]{8,}$",
            "example": "12345678-abcd-ef01-2345-6789abcdef01",
        },
        "APPSHEET_APP_KEY": {
            "description": "AppSheet application access key",
            "pattern": r"^\S{10,}$",
            "example": "V2-abcde-fghij-klmno",
        },
    }

    OPTIONAL_VARS = {
        "AUDIT_DATA_DIR": {
            "description": "Local data directory (BLOB_STORE=local)",
            "pattern": r"^.+$",
        },
        "DRIVE_KEYFILE_PATH": {
            "description": "Service account key for reading vale photos from Google Drive",
            "pattern": r"^.+\.json$",
        },
        "SMTP_HOST": {
            "description": "SMTP server for report emails",
            "pattern": r"^[A-Za-z0-9.-]+$",
        },
        "SMTP_PORT": {
            "description": "SMTP port",
            "pattern": r"^\d+$",
        },
        "SMTP_USER": {
            "description": "SMTP user",
            "pattern": r"^\S+$",
        },
        "SMTP_PASS": {
            "description": "SMTP password",
            "pattern": r"^.+$",
        },
        "SLACK_WEBHOOK_URL": {
            "description": "Slack incoming webhook for run summaries",
            "pattern": r"^https://hooks\.slack\.com/",
        },
        "EMAIL_TEST_MODE": {
            "description": "Redirect every report email to EMAIL_TEST_ADDRESS (true/false)",
            "pattern": r"^(true|false)$",
        },
        "GEMINI_MAX_RETRIES": {
            "description": "Oracle attempts per record",
            "pattern": r"^\d+$",
        },
    }

    def __init__(self):
        self.missing_vars: List[str] = []
        self.invalid_vars: List[Dict] = []
        self.warnings: List[Dict] = []

    def validate_all(self) -> Dict:
        print("\n" + "=" * 60)
        print("🔍 Checking environment")
        print("=" * 60)

        self._validate_required_vars()
        self._validate_storage()
        self._validate_optional_vars()

        results = self._compile_results()
        self._display_report(results)
        return results

    def _validate_required_vars(self):
        print("\n📋 Required variables:")
        for var_name, config in self.REQUIRED_VARS.items():
            value = os.getenv(var_name)
            if not value:
                self.missing_vars.append(var_name)
                print(f"  ❌ {var_name}: not set")
            elif not re.match(config["pattern"], value):
                self.invalid_vars.append({"name": var_name, "issue": "invalid format",
                                          "expected": config["example"]})
                print(f"  ⚠️  {var_name}: set (invalid format)")
            else:
                print(f"  ✅ {var_name}: ok")

    def _validate_storage(self):
        print("\n📦 Storage:")
        backend = os.getenv("BLOB_STORE", "local")
        if backend not in ("local", "s3"):
            self.invalid_vars.append({"name": "BLOB_STORE", "issue": f"unknown backend {backend!r}",
                                      "expected": "local | s3"})
            print(f"  ⚠️  BLOB_STORE: unknown backend {backend!r}")
        elif backend == "s3" and not os.getenv("AUDIT_BUCKET"):
            self.missing_vars.append("AUDIT_BUCKET")
            print("  ❌ AUDIT_BUCKET: required when BLOB_STORE=s3")
        else:
            print(f"  ✅ BLOB_STORE: {backend}")

    def _validate_optional_vars(self):
        print("\n🔧 Optional variables:")
        for var_name, config in self.OPTIONAL_VARS.items():
            value = os.getenv(var_name)
            if not value:
                print(f"  ⚪ {var_name}: not set")
            elif not re.match(config["pattern"], value):
                self.warnings.append({"name": var_name, "description": config["description"]})
                print(f"  ⚠️  {var_name}: set (unexpected format)")
            else:
                print(f"  ✅ {var_name}: ok")

    def _compile_results(self) -> Dict:
        return {
            "timestamp": datetime.now().isoformat(),
            "valid": not self.missing_vars and not self.invalid_vars,
            "missing": list(self.missing_vars),
            "invalid": list(self.invalid_vars),
            "warnings": list(self.warnings),
        }

    def _display_report(self, results: Dict):
        print("\n" + "=" * 60)
        if results["valid"]:
            print("🎉 Environment check passed")
            return
        print("❌ Environment check failed")
        for var in self.missing_vars:
            config = self.REQUIRED_VARS.get(var)
            hint = f" ({config['description']}, e.g. {config['example']})" if config else ""
            print(f"  - set {var}{hint}")
        for info in self.invalid_vars:
            print(f"  - fix {info['name']}: {info['issue']} (expected {info['expected']})")


def validate_environment_quick() -> Tuple[bool, List[str]]:
    missing = [v for v in EnvironmentValidator.REQUIRED_VARS if not os.getenv(v)]
    return len(missing) == 0, missing
