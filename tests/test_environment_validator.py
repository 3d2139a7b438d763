import unittest
from unittest.mock import patch

from vale_audit.environment_validator import EnvironmentValidator, validate_environment_quick

VALID_ENV = {
    "GEMINI_API_KEY": "AIzaSyA1234567890abcdefghijk",
    "APPSHEET_APP_ID": "12345678-abcd-ef01-2345-6789abcdef01",
    "APPSHEET_APP_KEY": "V2-abcde-fghij-klmno",
    "BLOB_STORE": "local",
}


class TestEnvironmentValidator(unittest.TestCase):
    @patch.dict("os.environ", VALID_ENV, clear=True)
    def test_valid_environment(self):
        results = EnvironmentValidator().validate_all()
        self.assertTrue(results["valid"])
        self.assertEqual(results["missing"], [])
        self.assertEqual(results["invalid"], [])

    @patch.dict("os.environ", {"GEMINI_API_KEY": "AIzaSyA1234567890abcdefghijk"}, clear=True)
    def test_missing_required(self):
        results = EnvironmentValidator().validate_all()
        self.assertFalse(results["valid"])
        self.assertEqual(results["missing"], ["APPSHEET_APP_ID", "APPSHEET_APP_KEY"])

    @patch.dict("os.environ", dict(VALID_ENV, BLOB_STORE="s3"), clear=True)
    def test_s3_requires_bucket(self):
        results = EnvironmentValidator().validate_all()
        self.assertIn("AUDIT_BUCKET", results["missing"])

    @patch.dict("os.environ", dict(VALID_ENV, GEMINI_API_KEY="short"), clear=True)
    def test_invalid_format(self):
        results = EnvironmentValidator().validate_all()
        self.assertFalse(results["valid"])
        self.assertEqual(results["invalid"][0]["name"], "GEMINI_API_KEY")

    @patch.dict("os.environ", dict(VALID_ENV, EMAIL_TEST_MODE="maybe"), clear=True)
    def test_optional_format_is_only_a_warning(self):
        results = EnvironmentValidator().validate_all()
        self.assertTrue(results["valid"])
        self.assertEqual(results["warnings"][0]["name"], "EMAIL_TEST_MODE")

    @patch.dict("os.environ", {}, clear=True)
    def test_quick_check(self):
        ok, missing = validate_environment_quick()
        self.assertFalse(ok)
        self.assertEqual(len(missing), 3)
