"""
External collaborators: the MySQL tools, the Forge API and the local
Laravel project.
"""

from forgemigrate.services.forge import ForgeClient
from forgemigrate.services.mysql import DatabaseClient, DatabaseCredentials, MySQLClient
from forgemigrate.services.project import (
    ProjectMaintenance,
    detect_git_info,
    detect_php_version,
    directory_size_mb,
    domain_from_url,
    locate_project_root,
)

__all__ = [
    "ForgeClient",
    "DatabaseClient",
    "DatabaseCredentials",
    "MySQLClient",
    "ProjectMaintenance",
    "locate_project_root",
    "detect_git_info",
    "detect_php_version",
    "directory_size_mb",
    "domain_from_url",
]
