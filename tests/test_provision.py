import unittest
from unittest.mock import Mock, patch

from blogstack import provision
from tests.fakes import client_error


class TestProvisionDefinitions(unittest.TestCase):
    def test_gsi_definitions(self):
        gsi = provision.gsi_definition("GSI2")
        self.assertEqual([k["AttributeName"] for k in gsi["KeySchema"]], ["GSI2PK", "GSI2SK"])
        self.assertEqual(gsi["Projection"], {"ProjectionType": "ALL"})
        with self.assertRaises(ValueError):
            provision.gsi_definition("GSI9")

    def test_public_read_policy_covers_uploads_only(self):
        statement = provision.public_read_policy()["Statement"][0]
        self.assertEqual(statement["Resource"], f"arn:aws:s3:::{provision.S.media_bucket}/uploads/*")
        self.assertEqual(statement["Action"], "s3:GetObject")

    def test_bucket_cors_includes_frontend(self):
        rule = provision.bucket_cors()["CORSRules"][0]
        self.assertIn(provision.S.frontend_url, rule["AllowedOrigins"])
        self.assertIn("PUT", rule["AllowedMethods"])


class TestProvisionCommands(unittest.TestCase):
    def test_create_table_tolerates_existing_table(self):
        client = Mock()
        client.create_table.side_effect = client_error("ResourceInUseException", "exists", "CreateTable")
        self.assertFalse(provision.create_table(client))

    def test_create_table_declares_both_indexes(self):
        client = Mock()
        self.assertTrue(provision.create_table(client))
        kwargs = client.create_table.call_args.kwargs
        self.assertEqual([g["IndexName"] for g in kwargs["GlobalSecondaryIndexes"]], ["GSI1", "GSI2"])

    def test_add_index_skips_existing(self):
        client = Mock()
        client.describe_table.return_value = {"Table": {"GlobalSecondaryIndexes": [{"IndexName": "GSI1"}]}}
        self.assertFalse(provision.add_index(client, "GSI1"))
        self.assertTrue(provision.add_index(client, "GSI2"))
        update = client.update_table.call_args.kwargs["GlobalSecondaryIndexUpdates"][0]["Create"]
        self.assertEqual(update["IndexName"], "GSI2")

    def test_resume_deletions_exit_code(self):
        report = {"userId": "1", "status": "partial", "completedSteps": 1, "totalSteps": 2}
        with patch.object(provision, "configure_logging"):
            with patch.object(provision, "resume_all", return_value=[report]):
                self.assertEqual(provision.main(["resume-deletions"]), 1)
            with patch.object(provision, "resume_all", return_value=[]):
                self.assertEqual(provision.main(["resume-deletions"]), 0)


if __name__ == "__main__":
    unittest.main()
