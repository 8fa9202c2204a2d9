"""
Command line entry point for MedVault maintenance tasks.

    medvault generate-master-key
    medvault migrate-metadata --db ./medvault.db
    medvault store-master-key medvault prod --force

The master secret is always taken from MASTER_ENCRYPTION_KEY (a ``.env`` file in
the working directory is honoured) unless ``--keyring SERVICE ACCOUNT`` is given.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from ..core.config import Settings
from ..core.exceptions import ConfigurationError, MedVaultError
from ..database.connection import DatabaseConnection
from ..database.migration import migrate_metadata
from ..security.crypto import generate_key
from ..security.envelope import KeyEnvelope
from ..security.keystore import save_secret
from ..security.provider import MASTER_KEY_ENV_VAR, MasterKeyProvider
from .logging_config import configure_logging


logger = logging.getLogger(__name__)


def _provider(args: argparse.Namespace) -> MasterKeyProvider:
    if args.keyring:
        service, account = args.keyring
        return MasterKeyProvider.from_keyring(service, account)
    return MasterKeyProvider.from_env()


def cmd_generate_master_key(args: argparse.Namespace) -> int:
    print(base64.b64encode(generate_key()).decode("ascii"))
    return 0


def cmd_migrate_metadata(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    db_path = args.db or settings.db_path
    envelope = KeyEnvelope(_provider(args))

    db = DatabaseConnection(db_path)
    try:
        db.initialize()
        results = migrate_metadata(db, envelope)
    finally:
        db.close()

    failed = 0
    for table, stats in results.items():
        print(f"{table}: migrated={stats.migrated} skipped={stats.skipped} failed={stats.failed}")
        failed += stats.failed
    return 1 if failed else 0


def cmd_store_master_key(args: argparse.Namespace) -> int:
    secret = os.environ.get(MASTER_KEY_ENV_VAR)
    if not secret:
        raise ConfigurationError(f"{MASTER_KEY_ENV_VAR} is not set; nothing to store")
    save_secret(args.service, args.account, secret, force=args.force)
    print(f"Stored master secret under {args.service}/{args.account}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medvault", description="MedVault encryption maintenance")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate-master-key", help="print a fresh base64 32-byte master secret")
    gen.set_defaults(func=cmd_generate_master_key)

    mig = sub.add_parser("migrate-metadata", help="encrypt legacy plaintext metadata columns")
    mig.add_argument("--db", help="SQLite database path (default: MEDVAULT_DB_PATH or ./medvault.db)")
    mig.add_argument(
        "--keyring",
        nargs=2,
        metavar=("SERVICE", "ACCOUNT"),
        help="read the master secret from the OS keystore instead of the environment",
    )
    mig.set_defaults(func=cmd_migrate_metadata)

    store = sub.add_parser("store-master-key", help="copy MASTER_ENCRYPTION_KEY into the OS keystore")
    store.add_argument("service")
    store.add_argument("account")
    store.add_argument("--force", action="store_true", help="store even if the backend looks insecure")
    store.set_defaults(func=cmd_store_master_key)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        return args.func(args)
    except MedVaultError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
