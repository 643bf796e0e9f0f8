"""
Connection settings for the CLI.

Connection strings come from Vault when ``--use-vault`` is given,
otherwise from the command line with the SYNC_* environment variables as
fallback.
"""

import argparse
import logging
import sys

from sync_utils.vault_client import VaultClient

from ..config import SyncConfig

logger = logging.getLogger(__name__)


def get_connection_strings(args: argparse.Namespace) -> tuple[str | None, str | None]:
    """
    Local and server connection strings from Vault or the command line.

    Values left as None fall back to the environment in build_config.
    """
    if args.use_vault:
        try:
            vault_client = VaultClient()
            local = vault_client.get_connection_string("local")
            remote = vault_client.get_connection_string("server")
        except Exception as e:
            logger.error(f"Failed to fetch connection strings from Vault: {e}")
            sys.exit(1)
        logger.info("Fetched connection strings from Vault")
        return local, remote

    return args.local_connection, args.remote_connection


def build_config(args: argparse.Namespace) -> SyncConfig:
    """SyncConfig from environment variables, overridden by CLI arguments."""
    local, remote = get_connection_strings(args)
    return SyncConfig.from_env(
        local_connection_string=local,
        remote_connection_string=remote,
        local_database=args.local_db,
        remote_database=args.remote_db,
        root_directory=args.root_dir,
        client_id=args.client_id,
    )


def parse_tables(args: argparse.Namespace) -> list[str] | None:
    """Table names from --tables or --tables-file, or None for the default list."""
    if getattr(args, "tables_file", None):
        with open(args.tables_file) as f:
            return [line.strip() for line in f if line.strip()]
    if getattr(args, "tables", None):
        return [t.strip() for t in args.tables.split(",") if t.strip()]
    return None
