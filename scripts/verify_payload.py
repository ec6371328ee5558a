#!/usr/bin/env python3
"""
Verify a DocVault payload against a ledger gateway.

Usage:
    python scripts/verify_payload.py "https://verify.example/verify?token=dv.eJy..."
    python scripts/verify_payload.py --frames scans.txt --passkey abc
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import os
import sys

from docvault.app.config import get_settings
from docvault.app.domain.sign import LedgerWallet
from docvault.app.errors import DecryptionFailed, DocVaultError
from docvault.app.infra.ledger import HttpLedgerGateway
from docvault.app.observability import configure_logging
from docvault.app.services.capture import StaticFrameSource, scan_for_payload
from docvault.app.services.registry import RegistryClient
from docvault.app.services.verification import VerificationSession, VerificationState


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify a document payload.")
    parser.add_argument("input", nargs="?", help="Verification URL or bare token")
    parser.add_argument(
        "--frames",
        help="File of scanned frames, one per line ('-' for stdin); the first valid one is used",
    )
    parser.add_argument("--passkey", help="Passkey for encrypted documents (prompted when needed)")
    parser.add_argument("--ledger-url", default=os.getenv("LEDGER_URL", "http://localhost:8545"))
    parser.add_argument("--timeout", type=float, default=10.0, help="Scan timeout in seconds")
    return parser.parse_args()


def read_input(args: argparse.Namespace) -> str:
    if args.frames is None:
        if not args.input:
            raise SystemExit("either an input or --frames is required")
        return args.input
    if args.frames == "-":
        lines = sys.stdin.read().splitlines()
    else:
        with open(args.frames, encoding="utf-8") as fh:
            lines = fh.read().splitlines()
    return asyncio.run(scan_for_payload(StaticFrameSource(lines), timeout=args.timeout))


def main() -> int:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    kdf = {"salt": settings.kdf_salt, "iterations": settings.kdf_iterations}
    with HttpLedgerGateway(args.ledger_url) as gateway:
        # read-only verification; the wallet is never used to sign
        session = VerificationSession(RegistryClient(gateway, LedgerWallet.generate()), kdf=kdf)
        try:
            session.acquire(read_input(args))
            session.decode()
            while session.state is VerificationState.AWAITING_PASSKEY:
                passkey = args.passkey or getpass.getpass("Passkey: ")
                args.passkey = None
                try:
                    session.submit_passkey(passkey)
                except DecryptionFailed:
                    print("[WARN] wrong passkey, try again", file=sys.stderr)
            if session.state is VerificationState.HASH_CHECKING:
                session.check()
        except DocVaultError as exc:
            print(f"[ERROR] {exc.code}: {exc.message}", file=sys.stderr)
            return 2
        except asyncio.TimeoutError:
            print(f"[ERROR] ScanTimeout: no payload captured within {args.timeout}s", file=sys.stderr)
            return 2

    print(json.dumps(session.outcome.to_dict(), indent=2))
    return 0 if session.outcome.verified else 1


if __name__ == "__main__":
    raise SystemExit(main())
