"""
Tests for the Forge API client.

Tests cover:
- Authentication headers
- Endpoint URLs and payloads
- Error mapping for non-2xx responses, timeouts and connection failures
"""

import unittest
from unittest.mock import MagicMock

import requests

from forgemigrate.errors import RemoteApiError, ValidationError
from forgemigrate.services.forge import DEFAULT_BASE_URL, ForgeClient


def _response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_data is None:
        response.content = text.encode()
        response.json.side_effect = ValueError("no json")
    else:
        response.content = b"{...}"
        response.json.return_value = json_data
    return response


class ForgeTestCase(unittest.TestCase):
    """Shared fixtures for Forge client tests."""

    def setUp(self) -> None:
        """Create a client over a mocked session."""
        self.session = MagicMock()
        self.session.headers = {}
        self.client = ForgeClient("token-123", session=self.session)

    def respond(self, *responses: MagicMock) -> None:
        self.session.request.side_effect = list(responses)

    def last_call(self) -> tuple:
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs.get("json")


class TestForgeClientBasics(ForgeTestCase):
    """Tests for construction and transport."""

    def test_headers(self) -> None:
        """Test that the bearer token and JSON headers are set."""
        self.assertEqual(self.session.headers["Authorization"], "Bearer token-123")
        self.assertEqual(self.session.headers["Accept"], "application/json")

    def test_missing_token(self) -> None:
        """Test that an empty token is refused."""
        with self.assertRaises(ValidationError):
            ForgeClient("", session=MagicMock())

    def test_url_and_timeout(self) -> None:
        """Test URL building and the request timeout."""
        self.respond(_response(json_data={"servers": []}))

        self.client.list_servers()

        method, url, payload = self.last_call()
        self.assertEqual(method, "GET")
        self.assertEqual(url, f"{DEFAULT_BASE_URL}/servers")
        self.assertIsNone(payload)
        self.assertEqual(self.session.request.call_args[1]["timeout"], 30)

    def test_non_2xx_raises(self) -> None:
        """Test that an error status keeps the body."""
        self.respond(_response(422, text='{"message": "The domain has already been taken."}'))

        with self.assertRaises(RemoteApiError) as cm:
            self.client.create_site(1, "example.com")

        self.assertEqual(cm.exception.status_code, 422)
        self.assertIn("already been taken", cm.exception.body)

    def test_timeout(self) -> None:
        """Test a request timeout."""
        self.session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with self.assertRaises(RemoteApiError) as cm:
            self.client.list_servers()

        self.assertIsNone(cm.exception.status_code)
        self.assertIn("timed out", cm.exception.message)

    def test_connection_error(self) -> None:
        """Test an unreachable API."""
        self.session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(RemoteApiError):
            self.client.list_servers()

    def test_empty_body(self) -> None:
        """Test a 2xx response with no content."""
        self.respond(_response(200, text=""))

        self.assertEqual(self.client.deploy(1, 2), {})


class TestForgeEndpoints(ForgeTestCase):
    """Tests for individual API calls."""

    def test_find_site(self) -> None:
        """Test finding a site by domain."""
        sites = {"sites": [{"id": 1, "name": "other.com"}, {"id": 7, "name": "example.com"}]}
        self.respond(_response(json_data=sites), _response(json_data=sites))

        self.assertEqual(self.client.find_site(3, "example.com")["id"], 7)
        self.assertIsNone(self.client.find_site(3, "missing.com"))
        _, url, _ = self.last_call()
        self.assertTrue(url.endswith("/servers/3/sites"))

    def test_create_site_payload(self) -> None:
        """Test the site creation payload."""
        self.respond(_response(json_data={"site": {"id": 9}}))

        site = self.client.create_site(4, "example.com", php_version="php82")

        method, url, payload = self.last_call()
        self.assertEqual(site, {"id": 9})
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/servers/4/sites"))
        self.assertEqual(
            payload,
            {
                "domain": "example.com",
                "project_type": "php",
                "directory": "/public",
                "php_version": "php82",
            },
        )

    def test_deployment_script(self) -> None:
        """Test reading a script from JSON or plain text bodies."""
        self.respond(
            _response(json_data={"content": "cd /home/forge/example.com\ngit pull"}),
            _response(200, text="php artisan migrate --force"),
        )

        self.assertEqual(
            self.client.get_deployment_script(1, 2), "cd /home/forge/example.com\ngit pull"
        )
        self.assertEqual(self.client.get_deployment_script(1, 2), "php artisan migrate --force")

    def test_set_deployment_script(self) -> None:
        """Test updating a script."""
        self.respond(_response(200, text=""))

        self.client.set_deployment_script(1, 2, "echo deploy")

        method, url, payload = self.last_call()
        self.assertEqual(method, "PUT")
        self.assertTrue(url.endswith("/servers/1/sites/2/deployment/script"))
        self.assertEqual(payload, {"content": "echo deploy"})

    def test_install_repository(self) -> None:
        """Test the git installation payload."""
        self.respond(_response(json_data={}))

        self.client.install_repository(1, 2, "acme/shop", "main")

        _, url, payload = self.last_call()
        self.assertTrue(url.endswith("/servers/1/sites/2/git"))
        self.assertEqual(payload["repository"], "acme/shop")
        self.assertEqual(payload["provider"], "github")
        self.assertTrue(payload["composer"])

    def test_request_certificate(self) -> None:
        """Test the Let's Encrypt request."""
        self.respond(_response(json_data={"certificate": {"id": 1}}))

        self.client.request_certificate(1, 2, ["example.com"])

        _, url, payload = self.last_call()
        self.assertTrue(url.endswith("/certificates/letsencrypt"))
        self.assertEqual(payload, {"domains": ["example.com"]})


if __name__ == "__main__":
    unittest.main()
