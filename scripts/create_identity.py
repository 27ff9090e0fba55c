#!/usr/bin/env python3
"""Register one identity, for seeding development data.

Usage:
    python scripts/create_identity.py --email ana@example.com --password 'correct horse' \
        --first-name Ana --last-name Lopez --birth-date 1994-05-01 --gender female \
        --longitude -3.70 --latitude 40.41

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
    MEMORY_STORE_PATH: Directory for the memory store snapshot; without it a
        memory-store identity is gone when the script exits
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def create_identity(args: argparse.Namespace) -> dict:
    # Imported late so the env defaults below apply before settings load
    from amora.service.runtime import get_runtime
    from amora.storage.models import Gender, GeoPoint

    runtime = get_runtime()
    try:
        existing = runtime.store.find_by_email(args.email)
        if existing:
            print(f"Identity {args.email} already exists (id: {existing.id})")
            return {"identity_id": existing.id, "email": existing.email, "status": "exists"}

        if args.dry_run:
            print(f"[DRY RUN] Would register identity: {args.email}")
            return {"identity_id": None, "email": args.email, "status": "dry_run"}

        identity, pair = await runtime.auth.register(
            email=args.email,
            password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            birth_date=args.birth_date,
            gender=Gender(args.gender),
            location=GeoPoint(longitude=args.longitude, latitude=args.latitude),
            bio=args.bio,
        )
    finally:
        await runtime.close()
    return {
        "identity_id": identity.id,
        "email": identity.email,
        "status": "created",
        "access_token": pair.access_token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Register an identity in the Amora store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--first-name", required=True)
    parser.add_argument("--last-name", required=True)
    parser.add_argument("--birth-date", required=True, type=date.fromisoformat, help="YYYY-MM-DD")
    parser.add_argument("--gender", required=True, choices=["male", "female", "other"])
    parser.add_argument("--longitude", required=True, type=float)
    parser.add_argument("--latitude", required=True, type=float)
    parser.add_argument("--bio", default=None)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if len(args.password) < 8:
        print("Error: password must be at least 8 characters")
        sys.exit(1)
    if not (-180 <= args.longitude <= 180 and -90 <= args.latitude <= 90):
        print("Error: longitude must be in [-180, 180] and latitude in [-90, 90]")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(create_identity(args))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nIdentity created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  Identity ID: {result['identity_id']}")
        print(f"  Access Token: {result['access_token'][:50]}...")


if __name__ == "__main__":
    main()
