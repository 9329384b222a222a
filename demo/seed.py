#!/usr/bin/env python3
"""
Demo seed script — populates a running portal with sample data for demos.

!! NOT FOR PRODUCTION !!
This script creates users with known passwords and fake payments. It is
intended ONLY for local demos and frontend development.

It talks to the API exclusively through portal.client.PortalClient, so it
exercises the same CSRF, token and refresh handling a front-end would.

Usage:
    # With the package installed (pip install -e .) and the API server
    # running on localhost:8000:
    python demo/seed.py

    # Reset the database and re-seed:
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

The login rate limit is 5 attempts per IP per 15 minutes; one seed run
uses four of them.

Login credentials after seeding:
    ┌────────────────┬──────────────────┬──────────┐
    │ Account number │ Password         │ Role     │
    ├────────────────┼──────────────────┼──────────┤
    │ 100000001      │ AdminDemo123!    │ Admin    │
    │ 200000002      │ StaffDemo123!    │ Employee │
    │ 30000001       │ AliceDemo123!    │ Customer │
    │ 30000002       │ BobDemo123!      │ Customer │
    └────────────────┴──────────────────┴──────────┘
"""

import argparse
import asyncio
import os
import random
import sys

import httpx

from portal.client import PortalClient, PortalClientError

ADMIN = {
    "full_name": "Admin User",
    "id_number": "8001015009087",
    "account_number": "100000001",
    "password": "AdminDemo123!",
}

EMPLOYEE = {
    "full_name": "Sam Staff",
    "id_number": "8505055009081",
    "account_number": "200000002",
    "password": "StaffDemo123!",
}

CUSTOMERS = [
    {
        "full_name": "Alice Chen",
        "id_number": "9001015009086",
        "account_number": "30000001",
        "password": "AliceDemo123!",
        "payments": 4,
    },
    {
        "full_name": "Bob Martinez",
        "id_number": "9202025009085",
        "account_number": "30000002",
        "password": "BobDemo123!",
        "payments": 3,
    },
]

BENEFICIARIES = [
    ("Acme Trading", "9876543210", "ABSAZAJJ", "USD"),
    ("Globex GmbH", "1122334455", "DEUTDEFF", "EUR"),
    ("Initech Ltd", "55667788", "BARCGB22XXX", "GBP"),
    ("Umbrella Corp", "99887766", "SBZAZAJJ", "ZAR"),
]


def log(msg: str) -> None:
    print(f"  ✓ {msg}")


async def ensure_registered(client: PortalClient, user: dict, path: str) -> None:
    """Register, tolerating an account left over from an earlier run."""
    try:
        await client.register(
            user["full_name"], user["id_number"], user["account_number"], user["password"],
            path=path,
        )
    except PortalClientError as exc:
        if exc.error_type not in ("duplicate_account", "admin_exists"):
            raise
        log(f"{user['account_number']} already registered")


async def seed(base_url: str) -> None:
    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=10.0) as probe:
        try:
            health = await probe.get(f"{base_url}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {base_url}")
            print("  Start the server first: uvicorn portal.main:app --reload\n")
            sys.exit(1)

    # --- Admin and employee ---
    print("Creating staff...")
    async with PortalClient(base_url) as admin:
        await ensure_registered(admin, ADMIN, "/auth/register-admin")
        await admin.login(ADMIN["account_number"], ADMIN["password"])
        log(f"Admin: {ADMIN['account_number']}")
        await ensure_registered(admin, EMPLOYEE, "/auth/register-employee")
        log(f"Employee: {EMPLOYEE['account_number']}")

    # --- Customers and their payments ---
    for customer in CUSTOMERS:
        print(f"\nCreating {customer['full_name']}...")
        async with PortalClient(base_url) as client:
            await ensure_registered(client, customer, "/auth/register")
            await client.login(customer["account_number"], customer["password"])
            for _ in range(customer["payments"]):
                name, account, swift, currency = random.choice(BENEFICIARIES)
                amount = f"{random.randint(25, 5000)}.{random.randint(0, 99):02d}"
                await client.create_payment(amount, currency, name, account, swift)
                log(f"  {amount} {currency} to {name}")

    # --- Staff workflow: verify about half, submit some of those ---
    print("\nWorking the verification queue...")
    async with PortalClient(base_url) as staff:
        await staff.login(EMPLOYEE["account_number"], EMPLOYEE["password"])
        pending = await staff.list_pending()
        to_verify = pending[: len(pending) // 2 + 1]
        for txn in to_verify:
            await staff.verify(txn["id"])
        log(f"Verified {len(to_verify)} of {len(pending)} pending payments")

        verified = await staff.list_verified()
        batch = [txn["id"] for txn in verified[: max(len(verified) - 1, 0)]]
        if batch:
            submitted = await staff.submit_to_swift(batch)
            log(f"Submitted {submitted} payment(s) to SWIFT")

    # --- Summary ---
    print("\n========================================")
    print("  SEED COMPLETE — Login Credentials")
    print("========================================")
    print(f"\n  {'Account':<12s} {'Password':<18s} {'Role'}")
    print(f"  {'─' * 12} {'─' * 18} {'─' * 8}")
    print(f"  {ADMIN['account_number']:<12s} {ADMIN['password']:<18s} Admin")
    print(f"  {EMPLOYEE['account_number']:<12s} {EMPLOYEE['password']:<18s} Employee")
    for c in CUSTOMERS:
        print(f"  {c['account_number']:<12s} {c['password']:<18s} Customer")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.normpath(os.path.join(os.path.dirname(__file__), "..", "portal.db"))

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates staff, customers and payments in various workflow states.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed(args.base_url)


if __name__ == "__main__":
    asyncio.run(main())
