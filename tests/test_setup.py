"""
Tests for Forge site setup.

Tests cover:
- Copying site settings from the source server
- Repository and deployment script installation
- Deploy and certificate failures as warnings
- Validation and API failures
"""

import unittest
from unittest.mock import MagicMock

from forgemigrate.errors import RemoteApiError, ValidationError
from forgemigrate.migrate.setup import SetupResult, SiteSetup
from forgemigrate.services.forge import ForgeClient

SOURCE_SITE = {"id": 11, "name": "example.com"}
SITE_DETAILS = {
    "id": 11,
    "name": "example.com",
    "repository": "acme/shop",
    "repository_branch": "production",
    "php_version": "php82",
    "directory": "/public",
}


class SiteSetupTestCase(unittest.TestCase):
    """Shared fixtures for setup tests."""

    def setUp(self) -> None:
        """Create a mocked Forge client."""
        self.client = MagicMock(spec=ForgeClient)
        self.client.list_servers.return_value = [{"id": 1}, {"id": 2}]
        self.client.find_site.return_value = SOURCE_SITE
        self.client.get_site.return_value = dict(SITE_DETAILS)
        self.client.get_deployment_script.return_value = "cd /home/forge/example.com\ngit pull"
        self.client.create_site.return_value = {"id": 99}
        self.sleep = MagicMock()
        self.setup = SiteSetup(self.client, sleep=self.sleep)


class TestSiteSetup(SiteSetupTestCase):
    """Tests for SiteSetup.run."""

    def test_full_setup(self) -> None:
        """Test a setup where every call succeeds."""
        result = self.setup.run("example.com", 1, 2)

        self.assertIsInstance(result, SetupResult)
        self.assertEqual(result.site_id, 99)
        self.assertEqual(result.repository, "acme/shop")
        self.assertEqual(result.branch, "production")
        self.assertEqual(result.warnings, [])

        self.client.find_site.assert_called_once_with(1, "example.com")
        self.client.get_site.assert_called_once_with(1, 11)
        self.client.create_site.assert_called_once_with(
            2, "example.com", directory="/public", php_version="php82"
        )
        self.client.install_repository.assert_called_once_with(2, 99, "acme/shop", "production")
        self.client.set_deployment_script.assert_called_once_with(
            2, 99, "cd /home/forge/example.com\ngit pull"
        )
        self.client.deploy.assert_called_once_with(2, 99)
        self.client.request_certificate.assert_called_once_with(2, 99, ["example.com"])
        self.assertEqual(self.sleep.call_count, 2)

    def test_defaults_without_repository(self) -> None:
        """Test a source site without repository or PHP version."""
        self.client.get_site.return_value = {"id": 11}

        result = self.setup.run("example.com", 1, 2)

        self.assertEqual(result.branch, "main")
        self.client.install_repository.assert_not_called()
        self.client.create_site.assert_called_once_with(
            2, "example.com", directory="/public", php_version="php83"
        )

    def test_deploy_and_ssl_failures_are_warnings(self) -> None:
        """Test that deploy and certificate errors do not fail the run."""
        self.client.deploy.side_effect = RemoteApiError("busy", status_code=500)
        self.client.request_certificate.side_effect = RemoteApiError("dns", status_code=422)

        result = self.setup.run("example.com", 1, 2)

        self.assertEqual(result.site_id, 99)
        self.assertEqual(len(result.warnings), 2)
        self.assertIn("DNS", result.warnings[1])


class TestSiteSetupErrors(SiteSetupTestCase):
    """Tests for fatal setup failures."""

    def test_missing_inputs(self) -> None:
        """Test missing domain or server IDs."""
        for args in (("", 1, 2), ("example.com", "", 2), ("example.com", 1, None)):
            with self.subTest(args=args):
                with self.assertRaises(ValidationError) as cm:
                    self.setup.run(*args)
                self.assertEqual(cm.exception.step, "setup")
        self.client.list_servers.assert_not_called()

    def test_site_not_found(self) -> None:
        """Test a domain that is not on the source server."""
        self.client.find_site.return_value = None

        with self.assertRaises(ValidationError) as cm:
            self.setup.run("example.com", 1, 2)

        self.assertIn("not found", str(cm.exception))
        self.client.create_site.assert_not_called()

    def test_api_access_failure(self) -> None:
        """Test a rejected API token."""
        self.client.list_servers.side_effect = RemoteApiError("unauthorized", status_code=401)

        with self.assertRaises(RemoteApiError) as cm:
            self.setup.run("example.com", 1, 2)

        self.assertEqual(cm.exception.step, "setup")
        self.assertEqual(cm.exception.status_code, 401)

    def test_create_without_id(self) -> None:
        """Test a create response without a site ID."""
        self.client.create_site.return_value = {}

        with self.assertRaises(RemoteApiError):
            self.setup.run("example.com", 1, 2)

        self.client.set_deployment_script.assert_not_called()

    def test_script_update_failure_is_fatal(self) -> None:
        """Test that a failed deployment script update stops the run."""
        self.client.set_deployment_script.side_effect = RemoteApiError("boom", status_code=500)

        with self.assertRaises(RemoteApiError):
            self.setup.run("example.com", 1, 2)

        self.client.deploy.assert_not_called()


if __name__ == "__main__":
    unittest.main()
