"""
HashiCorp Vault client for fetching store connection strings

Deployments that do not want server credentials sitting in the device's
settings keep them in Vault's KV v2 engine under
``secret/offline-sync/<role>`` where role is ``server`` or ``local``.
A secret holds either a complete ``connection_string`` or the parts
(``server``, ``database``, ``username``, ``password`` and optionally
``driver``).
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

SUPPORTED_ROLES = ("server", "local")
DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


class VaultClient:
    """HashiCorp Vault client using the KV v2 secrets engine."""

    def __init__(
        self,
        vault_addr: Optional[str] = None,
        vault_token: Optional[str] = None,
        namespace: Optional[str] = None,
        mount_point: str = "secret",
    ):
        """
        Args:
            vault_addr: Vault server address (default: from VAULT_ADDR env var)
            vault_token: Vault authentication token (default: from VAULT_TOKEN env var)
            namespace: Vault namespace (optional, for Vault Enterprise)
            mount_point: KV v2 mount (default: "secret")

        Raises:
            ValueError: If vault_addr or vault_token are not provided
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.namespace = namespace
        self.mount_point = mount_point

        if not self.vault_addr:
            raise ValueError(
                "Vault address not provided. Set VAULT_ADDR environment variable "
                "or pass vault_addr parameter."
            )

        if not self.vault_token:
            raise ValueError(
                "Vault token not provided. Set VAULT_TOKEN environment variable "
                "or pass vault_token parameter."
            )

        self.vault_addr = self.vault_addr.rstrip("/")

        self.headers = {
            "X-Vault-Token": self.vault_token,
            "Content-Type": "application/json"
        }
        if self.namespace:
            self.headers["X-Vault-Namespace"] = self.namespace

        logger.info(f"Initialized Vault client for {self.vault_addr}")

    def get_secret(self, secret_path: str) -> Dict[str, Any]:
        """
        Fetch a secret from the KV v2 engine

        Args:
            secret_path: Path below the mount point (e.g., "offline-sync/server")

        Raises:
            ValueError: If secret_path is invalid or the secret is missing
            requests.RequestException: If the Vault request fails
        """
        if not secret_path or not isinstance(secret_path, str):
            raise ValueError("secret_path must be a non-empty string")

        if '..' in secret_path or secret_path.startswith('/'):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Path traversal attempts are not allowed."
            )

        if not re.match(r'^[a-zA-Z0-9/_-]+$', secret_path):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Only alphanumeric characters, slashes, underscores, and hyphens are allowed."
            )

        url = f"{self.vault_addr}/v1/{self.mount_point}/data/{secret_path}"
        logger.debug(f"Fetching secret from: {url}")

        response = requests.get(url, headers=self.headers, timeout=10)

        if response.status_code == 404:
            raise ValueError(f"Secret not found at path: {secret_path}")

        response.raise_for_status()

        secret_data = response.json().get("data", {}).get("data", {})
        if not secret_data:
            raise ValueError(f"No data found in secret at path: {secret_path}")

        return secret_data

    def get_connection_string(self, role: str) -> str:
        """
        Fetch the ODBC connection string for a store role

        Args:
            role: "server" or "local"

        Returns:
            ODBC connection string

        Raises:
            ValueError: If role is unsupported or the secret is incomplete
        """
        if role not in SUPPORTED_ROLES:
            raise ValueError(
                f"Unsupported role: {role!r}. Must be one of {', '.join(SUPPORTED_ROLES)}."
            )

        secret_data = self.get_secret(f"offline-sync/{role}")

        if secret_data.get("connection_string"):
            logger.info(f"Fetched {role} connection string from Vault")
            return secret_data["connection_string"]

        required_fields = ["server", "database", "username", "password"]
        missing_fields = [f for f in required_fields if f not in secret_data]
        if missing_fields:
            raise ValueError(
                f"Missing required fields in secret: {', '.join(missing_fields)}"
            )

        logger.info(f"Fetched {role} credentials from Vault")
        return (
            f"DRIVER={{{secret_data.get('driver', DEFAULT_DRIVER)}}};"
            f"SERVER={secret_data['server']};"
            f"DATABASE={secret_data['database']};"
            f"UID={secret_data['username']};"
            f"PWD={secret_data['password']};"
            f"TrustServerCertificate=yes;"
        )

    def health_check(self) -> bool:
        """True when Vault answers as initialized and unsealed."""
        url = f"{self.vault_addr}/v1/sys/health"

        try:
            response = requests.get(url, timeout=5)
            # 200 active, 429 standby, 472 DR secondary, 473 performance standby
            return response.status_code in [200, 429, 472, 473]
        except requests.RequestException as e:
            logger.error(f"Vault health check failed: {e}")
            return False
