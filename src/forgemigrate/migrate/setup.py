"""
Site setup on the destination Forge server.

Recreates a site from the source server on the destination server through
the Forge API: same domain, PHP version, web directory, git repository and
deployment script. Then triggers a first deployment and asks for a Let's
Encrypt certificate.

Deployment and certificate requests commonly fail until DNS points at the
new server, so those two only produce warnings.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from forgemigrate.errors import MigrationError, RemoteApiError, ValidationError
from forgemigrate.services.forge import ForgeClient

logger = logging.getLogger(__name__)

SETUP_STEP = "setup"

DEFAULT_BRANCH = "main"
DEFAULT_PHP_VERSION = "php83"
DEFAULT_DIRECTORY = "/public"


@dataclass
class SetupResult:
    """Result of a site setup."""

    site_id: int | str
    repository: str = ""
    branch: str = DEFAULT_BRANCH
    warnings: list[str] = field(default_factory=list)


class SiteSetup:
    """
    Copies a site definition between Forge servers.

    Usage:
        setup = SiteSetup(ForgeClient(token))
        result = setup.run("example.com", source_server=12345, dest_server=67890)
    """

    def __init__(
        self,
        client: ForgeClient,
        sleep: Callable[[float], None] = time.sleep,
        provision_delay: float = 2.0,
    ) -> None:
        self.client = client
        self._sleep = sleep
        self.provision_delay = provision_delay

    def run(
        self,
        domain: str,
        source_server: int | str,
        dest_server: int | str,
    ) -> SetupResult:
        """
        Create domain on dest_server modelled on its source_server twin.

        Raises:
            ValidationError: Missing domain or server IDs, or no such site
                on the source server.
            RemoteApiError: Any Forge call other than deploy and certificate
                failed.
        """
        try:
            return self._run(domain, source_server, dest_server)
        except MigrationError as e:
            raise e.with_step(SETUP_STEP)

    def _run(
        self,
        domain: str,
        source_server: int | str,
        dest_server: int | str,
    ) -> SetupResult:
        if not domain:
            raise ValidationError("Domain not set")
        if not source_server:
            raise ValidationError("Source server ID not set")
        if not dest_server:
            raise ValidationError("Destination server ID not set")

        logger.info("Verifying Forge API access...")
        self.client.list_servers()

        logger.info(f"Looking up site [{domain}] on server [{source_server}]")
        source = self.client.find_site(source_server, domain)
        if source is None:
            raise ValidationError(f"Site [{domain}] not found on server [{source_server}]")

        details = self.client.get_site(source_server, source["id"])
        repository = details.get("repository") or ""
        branch = details.get("repository_branch") or DEFAULT_BRANCH
        php_version = details.get("php_version") or DEFAULT_PHP_VERSION
        directory = details.get("directory") or DEFAULT_DIRECTORY
        logger.info(
            f"Source site: repository={repository or '-'} branch={branch} "
            f"php={php_version} directory={directory}"
        )

        deploy_script = self.client.get_deployment_script(source_server, source["id"])

        logger.info(f"Creating site [{domain}] on server [{dest_server}]")
        site = self.client.create_site(
            dest_server, domain, directory=directory, php_version=php_version
        )
        site_id = site.get("id")
        if not site_id:
            raise RemoteApiError(f"Forge did not return an ID for the new site [{domain}]")
        logger.info(f"Site created with ID: {site_id}")

        result = SetupResult(site_id=site_id, repository=repository, branch=branch)

        if repository:
            # Forge needs a moment to provision the site
            self._sleep(self.provision_delay)
            self.client.install_repository(dest_server, site_id, repository, branch)
            logger.info(f"Repository [{repository}] branch [{branch}] installed")

        self._sleep(self.provision_delay)
        self.client.set_deployment_script(dest_server, site_id, deploy_script)
        logger.info("Deployment script updated")

        try:
            self.client.deploy(dest_server, site_id)
            logger.info("Deployment triggered")
        except RemoteApiError as e:
            self._warn(result, f"Deployment request failed: {e.message}")

        try:
            self.client.request_certificate(dest_server, site_id, [domain])
            logger.info("Let's Encrypt certificate requested")
        except RemoteApiError as e:
            self._warn(
                result,
                f"SSL request failed - DNS may not point to the new server yet ({e.message})",
            )

        return result

    @staticmethod
    def _warn(result: SetupResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)
