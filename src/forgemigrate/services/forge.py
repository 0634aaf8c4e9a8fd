"""
Minimal Laravel Forge API client.

Covers the calls the site setup workflow needs: servers, sites, git
repositories, deployment scripts, deployments and Let's Encrypt
certificates. Every call is authenticated with a bearer token and returns
the decoded JSON body.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urljoin

import requests

from forgemigrate.errors import RemoteApiError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://forge.laravel.com/api/v1"


class ForgeClient:
    """
    Forge REST API client.

    Usage:
        client = ForgeClient(api_token)
        site = client.find_site(12345, "example.com")
        client.deploy(67890, site["id"])

    Attributes:
        base_url: API root, without trailing slash.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        if not api_token:
            raise ValidationError("FORGE_API_TOKEN not set - add it to forgemigrate.env or export it")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

    # -------------------------------------------------------------------------
    # Servers and sites
    # -------------------------------------------------------------------------

    def list_servers(self) -> list[dict[str, Any]]:
        return self._request("GET", "/servers").get("servers", [])

    def list_sites(self, server_id: int | str) -> list[dict[str, Any]]:
        return self._request("GET", f"/servers/{server_id}/sites").get("sites", [])

    def get_site(self, server_id: int | str, site_id: int | str) -> dict[str, Any]:
        return self._request("GET", f"/servers/{server_id}/sites/{site_id}").get("site", {})

    def find_site(self, server_id: int | str, domain: str) -> dict[str, Any] | None:
        """Return the site named domain on a server, or None."""
        for site in self.list_sites(server_id):
            if site.get("name") == domain:
                return site
        return None

    def create_site(
        self,
        server_id: int | str,
        domain: str,
        directory: str = "/public",
        php_version: str = "php83",
        project_type: str = "php",
    ) -> dict[str, Any]:
        payload = {
            "domain": domain,
            "project_type": project_type,
            "directory": directory,
            "php_version": php_version,
        }
        return self._request("POST", f"/servers/{server_id}/sites", payload).get("site", {})

    # -------------------------------------------------------------------------
    # Repository and deployment
    # -------------------------------------------------------------------------

    def install_repository(
        self,
        server_id: int | str,
        site_id: int | str,
        repository: str,
        branch: str,
        provider: str = "github",
        composer: bool = True,
    ) -> dict[str, Any]:
        payload = {
            "provider": provider,
            "repository": repository,
            "branch": branch,
            "composer": composer,
        }
        return self._request("POST", f"/servers/{server_id}/sites/{site_id}/git", payload)

    def get_deployment_script(self, server_id: int | str, site_id: int | str) -> str:
        """Return the deployment script text of a site."""
        body = self._request(
            "GET", f"/servers/{server_id}/sites/{site_id}/deployment/script"
        )
        if isinstance(body, dict):
            return str(body.get("content", body.get("script", "")))
        return str(body)

    def set_deployment_script(
        self, server_id: int | str, site_id: int | str, content: str
    ) -> dict[str, Any]:
        return self._request(
            "PUT",
            f"/servers/{server_id}/sites/{site_id}/deployment/script",
            {"content": content},
        )

    def deploy(self, server_id: int | str, site_id: int | str) -> dict[str, Any]:
        return self._request("POST", f"/servers/{server_id}/sites/{site_id}/deployment/deploy")

    def request_certificate(
        self, server_id: int | str, site_id: int | str, domains: list[str]
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/servers/{server_id}/sites/{site_id}/certificates/letsencrypt",
            {"domains": domains},
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make an API request to Forge.

        Raises:
            RemoteApiError: On a non-2xx response, a connection failure or a
                timeout. The response body is kept on the exception.
        """
        url = urljoin(self.base_url + "/", endpoint.lstrip("/"))
        start_time = time.time()

        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RemoteApiError(f"Forge request timed out: {method} {endpoint}", body=str(e)) from e
        except requests.exceptions.RequestException as e:
            raise RemoteApiError(f"Failed to connect to Forge: {e}", body=str(e)) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"API call: {method} {endpoint} -> {response.status_code} ({duration_ms:.0f}ms)")

        if not 200 <= response.status_code < 300:
            raise RemoteApiError(
                f"Forge API error: {method} {endpoint} -> {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text
