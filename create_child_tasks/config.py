"""
Configuration from environment variables and logging setup.

Environment variables (a .env file is loaded first when present):
    AZURE_DEVOPS_ORG_URL   organization URL (required)
    AZURE_DEVOPS_PROJECT   default project
    AZURE_DEVOPS_TEAM      default team (project default team when unset)
    CHILD_TASKS_LOG_MODE   'release' (INFO) or 'dev' (DEBUG, phase timings)
    MCP_TRANSPORT          'stdio' (default), 'http' or 'sse'
    MCP_PORT               port for network transports (default: 8000)

Credentials (AZURE_DEVOPS_PAT, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET,
AZURE_TENANT_ID) are read by AzureDevOpsAuth directly.
"""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from .constants import EXTENSION_NAME
from .validation import ValidationError

LOG_MODES = {
    'release': logging.INFO,
    'dev': logging.DEBUG,
}

TRANSPORTS = ('stdio', 'http', 'sse')


@dataclass
class Settings:
    """Runtime settings of the child task server"""
    organization_url: str
    project: Optional[str] = None
    team: Optional[str] = None
    log_mode: str = 'release'
    transport: str = 'stdio'
    port: int = 8000

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> 'Settings':
        """
        Read settings from the environment

        Args:
            load_env_file: Load a .env file first (default: True)

        Returns:
            Settings instance

        Raises:
            ValueError: If AZURE_DEVOPS_ORG_URL is missing
            ValidationError: If a value is not one of the accepted choices
        """
        if load_env_file:
            load_dotenv()

        org_url = os.getenv("AZURE_DEVOPS_ORG_URL")
        if not org_url:
            raise ValueError(
                "Missing required environment variable: AZURE_DEVOPS_ORG_URL"
            )

        log_mode = os.getenv("CHILD_TASKS_LOG_MODE", "release").strip().lower()
        if log_mode not in LOG_MODES:
            raise ValidationError(
                f"Invalid CHILD_TASKS_LOG_MODE '{log_mode}'. Must be one of: {', '.join(LOG_MODES)}"
            )

        transport = os.getenv("MCP_TRANSPORT", "stdio").strip().lower()
        if transport not in TRANSPORTS:
            raise ValidationError(
                f"Invalid MCP_TRANSPORT '{transport}'. Must be one of: {', '.join(TRANSPORTS)}"
            )

        port_value = os.getenv("MCP_PORT", "8000")
        try:
            port = int(port_value)
        except ValueError:
            raise ValidationError(f"Invalid MCP_PORT '{port_value}'. Must be an integer.")

        return cls(
            organization_url=org_url.rstrip('/'),
            project=os.getenv("AZURE_DEVOPS_PROJECT") or None,
            team=os.getenv("AZURE_DEVOPS_TEAM") or None,
            log_mode=log_mode,
            transport=transport,
            port=port
        )


def configure_logging(mode: str = 'release') -> logging.Logger:
    """
    Configure the package logger

    Logs go to stderr so they never mix with the stdio MCP transport.

    Args:
        mode: 'release' (INFO and above) or 'dev' (DEBUG)

    Returns:
        The package logger
    """
    level = LOG_MODES.get((mode or '').lower(), logging.INFO)

    package_logger = logging.getLogger('create_child_tasks')
    package_logger.setLevel(level)

    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            f"{EXTENSION_NAME} %(asctime)s %(levelname)s [%(name)s] %(message)s"
        ))
        package_logger.addHandler(handler)
    for handler in package_logger.handlers:
        handler.setLevel(level)

    return package_logger
