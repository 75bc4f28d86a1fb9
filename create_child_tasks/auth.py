"""
Authentication handling for Azure DevOps

Credentials are tried in order until one yields a connection:
Azure identity (managed identity, Azure CLI login and the rest of the
DefaultAzureCredential chain), then a service principal from
AZURE_CLIENT_ID / AZURE_CLIENT_SECRET / AZURE_TENANT_ID, then a personal
access token from AZURE_DEVOPS_PAT.
"""
import os
import asyncio
import logging
from typing import Optional
from datetime import datetime, timezone
from collections import defaultdict, deque
from azure.identity import DefaultAzureCredential, ClientSecretCredential
from azure.devops.connection import Connection
from msrest.authentication import BasicAuthentication

from .log_sanitizer import safe_log_error

logger = logging.getLogger(__name__)

PAT_METHOD = "Personal Access Token"


class AzureDevOpsAuth:
    """Connection to one Azure DevOps organization, shared by all services"""

    # Azure DevOps resource ID for token acquisition
    AZURE_DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"

    def __init__(self, organization_url: str):
        """
        Args:
            organization_url: Azure DevOps organization URL
                            (e.g., https://dev.azure.com/yourorg)
        """
        self.organization_url = organization_url
        self.connection: Optional[Connection] = None
        self._credential = None
        self._auth_method: Optional[str] = None
        self._current_user: Optional[str] = None

        self._auth_failures = defaultdict(int)
        self._auth_failure_timestamps = deque(maxlen=100)

    async def initialize(self):
        """
        Connect with the first credential that works

        Raises:
            ValueError: If no credential could be used
        """
        attempts = [
            ("Azure Identity", self._azure_identity_credential),
            ("Service Principal", self._service_principal_credential),
        ]

        for method, build_credential in attempts:
            try:
                self.connection = await self._connect_with_credential(build_credential(), method)
            except Exception as e:
                self._record_failure(method, e)
                continue
            logger.info(f"Authenticated using: {method}")
            return

        pat = os.getenv("AZURE_DEVOPS_PAT")
        if pat:
            self.connection = Connection(base_url=self.organization_url, creds=BasicAuthentication('', pat))
            self._auth_method = PAT_METHOD
            logger.info(f"Authenticated using: {PAT_METHOD}")
            return
        self._record_failure(PAT_METHOD, ValueError("AZURE_DEVOPS_PAT environment variable not set"))

        raise ValueError(
            "Failed to authenticate. Please configure one of:\n"
            "1. Azure Managed Identity or an Azure CLI login\n"
            "2. Service Principal (AZURE_CLIENT_ID, AZURE_CLIENT_SECRET, AZURE_TENANT_ID)\n"
            "3. Personal Access Token (AZURE_DEVOPS_PAT)"
        )

    def _record_failure(self, method: str, error: Exception) -> None:
        self._auth_failures[method] += 1
        self._auth_failure_timestamps.append({
            'method': method,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'error_type': type(error).__name__
        })
        logger.debug(safe_log_error(error, f"{method} authentication failed"))

    @staticmethod
    def _azure_identity_credential():
        return DefaultAzureCredential()

    @staticmethod
    def _service_principal_credential():
        client_id = os.getenv("AZURE_CLIENT_ID")
        client_secret = os.getenv("AZURE_CLIENT_SECRET")
        tenant_id = os.getenv("AZURE_TENANT_ID")

        if not all([client_id, client_secret, tenant_id]):
            raise ValueError("Missing service principal credentials")

        return ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret
        )

    async def _connect_with_credential(self, credential, method: str) -> Connection:
        token = await asyncio.to_thread(
            credential.get_token,
            f"{self.AZURE_DEVOPS_RESOURCE_ID}/.default"
        )

        # Azure DevOps accepts the access token the same way as a PAT
        self._credential = credential
        self._auth_method = method
        return Connection(
            base_url=self.organization_url,
            creds=BasicAuthentication('', token.token)
        )

    def get_client(self, client_type: str):
        """
        Get a specific Azure DevOps client

        Args:
            client_type: 'work_item_tracking' (work items, categories, templates),
                'core' (projects and teams), 'work' (team settings) or
                'location' (connection data)

        Returns:
            The requested client instance
        """
        if not self.connection:
            raise RuntimeError("Not authenticated. Call initialize() first.")

        clients = self.connection.clients
        client_map = {
            'work_item_tracking': clients.get_work_item_tracking_client,
            'core': clients.get_core_client,
            'work': clients.get_work_client,
            'location': clients.get_location_client,
        }

        if client_type not in client_map:
            raise ValueError(f"Unknown client type: {client_type}")

        return client_map[client_type]()

    async def get_current_user(self) -> Optional[str]:
        """
        Unique name of the authenticated identity, used for the @me token

        Returns None when the identity cannot be read; templates using @me
        then leave the child unassigned.
        """
        if self._current_user:
            return self._current_user

        try:
            location_client = self.get_client('location')
            connection_data = await asyncio.to_thread(location_client.get_connection_data)
        except Exception as e:
            logger.warning(safe_log_error(e, "Could not read the authenticated user"))
            return None

        user = getattr(connection_data, 'authenticated_user', None)
        if user is None:
            return None

        account = (getattr(user, 'properties', None) or {}).get('Account')
        if isinstance(account, dict):
            account = account.get('$value')

        self._current_user = account or getattr(user, 'provider_display_name', None)
        return self._current_user

    async def refresh_token(self):
        """
        Get a new access token from the credential in use

        Azure identity tokens expire after about an hour; a PAT connection is
        left as it is.
        """
        if self._credential is None or self._auth_method == PAT_METHOD:
            return

        try:
            self.connection = await self._connect_with_credential(self._credential, self._auth_method)
        except Exception as e:
            logger.error(safe_log_error(e, "Token refresh failed"))
            raise
        logger.info("Token refreshed successfully")

    async def close(self):
        """Release the credential and drop the connection"""
        if hasattr(self._credential, 'close'):
            self._credential.close()

        self.connection = None

    def get_auth_info(self) -> dict:
        """Authentication state for the health check"""
        return {
            "method": self._auth_method,
            "organization_url": self.organization_url,
            "authenticated": self.connection is not None,
            "failures": sum(self._auth_failures.values()),
            "recent_failures": list(self._auth_failure_timestamps)[-10:]
        }
