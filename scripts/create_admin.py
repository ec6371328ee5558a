#!/usr/bin/env python3
"""
Create an administrator account in the admin partition.

Usage:
    python scripts/create_admin.py --login root --email root@example.org
"""
from __future__ import annotations

import argparse
import getpass
import sys

from docvault.app.config import ROLES, get_settings
from docvault.app.domain.models import Role
from docvault.app.errors import DocVaultError
from docvault.app.observability import configure_logging
from docvault.app.services.accounts import AccountService
from docvault.app.services.directory import DirectoryRouter
from docvault.app.services.tokens import TokenService


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a DocVault administrator.")
    parser.add_argument("--login", required=True)
    parser.add_argument("--email", help="Optional contact address")
    parser.add_argument(
        "--password",
        help="Password (prompted for when omitted)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    password = args.password or getpass.getpass("Password: ")
    directory = DirectoryRouter.from_partitions({role: settings.partition_for(role) for role in ROLES})
    accounts = AccountService(directory, TokenService(directory, settings.jwt_secret))
    try:
        admin = accounts.create_principal(Role.ADMIN, args.login, password, email=args.email)
    except DocVaultError as exc:
        print(f"[ERROR] {exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        directory.dispose()
    print(f"Created admin {admin.login} ({admin.id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
