#!/usr/bin/env python3
"""Maintenance utility for otpauth.

Usage:
    python scripts/manage.py generate-secret
    python scripts/manage.py create-tables
    python scripts/manage.py sweep

generate-secret prints a value suitable for JWT_SECRET_KEY.
create-tables creates missing tables for a fresh development database.
sweep deletes expired OTP codes, refresh tokens and blacklist entries once,
the same work the background cleanup task does on a timer.
"""

import argparse
import asyncio
import secrets
import sys


def _generate_secret() -> int:
    print(secrets.token_hex(32))
    return 0


async def _create_tables() -> int:
    from otpauth.core.database import Base, engine
    from otpauth.models import OtpCode, RefreshToken, TokenBlacklist, User  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("Tables created.")
    return 0


async def _sweep() -> int:
    from otpauth.core.database import engine
    from otpauth.services.cleanup import TokenCleanupService

    report = await TokenCleanupService().run_cleanup_now()
    await engine.dispose()
    print(
        f"Removed {report.otp_codes} OTP codes, {report.refresh_tokens} refresh tokens, "
        f"{report.blacklisted_tokens} blacklist entries."
    )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="otpauth maintenance utility")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("generate-secret", help="Print a new JWT signing secret")
    subparsers.add_parser("create-tables", help="Create database tables")
    subparsers.add_parser("sweep", help="Delete expired OTP codes and tokens")
    args = parser.parse_args()

    if args.command == "generate-secret":
        return _generate_secret()
    if args.command == "create-tables":
        return asyncio.run(_create_tables())
    return asyncio.run(_sweep())


if __name__ == "__main__":
    sys.exit(main())
