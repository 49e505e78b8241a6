#!/usr/bin/env python3
"""
Create the shared master profiles in SimpleMDM and record them.

Only four SimpleMDM profiles exist for the predefined types; every family links
to them instead of getting its own copy. Re-running is safe: types that already
have a master profile are skipped.

Usage:
    python -m nook.setup_master_profiles           # bootstrap, then print the table
    python -m nook.setup_master_profiles --verify  # print the table only
"""
import argparse
import asyncio
import sys

from nook.core.database import database
from nook.core.logging import setup_logging, log_exception, logger
from nook.services.assignment_ledger import assignment_ledger
from nook.services.master_profile_bootstrap import MasterProfileBootstrap
from nook.services.simplemdm_service import simplemdm_service

async def print_master_profiles():
    profiles = await assignment_ledger.list_master_profiles()
    print("MASTER PROFILES IN DATABASE:")
    print("=====================================")
    for profile in profiles:
        print(profile.type.value.upper())
        print(f"  Name: {profile.name}")
        print(f"  DB ID: {profile.id}")
        print(f"  SimpleMDM ID: {profile.simplemdm_profile_id}")
        print(f"  Created: {profile.created_at}")
        print("-------------------------------------")
    return profiles

async def run(verify_only: bool) -> int:
    await database.connect()
    try:
        failures = 0
        if not verify_only:
            bootstrap = MasterProfileBootstrap(assignment_ledger, simplemdm_service)
            for entry in await bootstrap.bootstrap():
                if entry.error:
                    failures += 1
                    print(f"FAILED   {entry.type.value}: {entry.error}")
                elif entry.created:
                    print(f"CREATED  {entry.type.value} -> {entry.simplemdm_profile_id}")
                else:
                    print(f"EXISTS   {entry.type.value} -> {entry.simplemdm_profile_id}")
            print()
        await print_master_profiles()
        return 1 if failures else 0
    finally:
        await simplemdm_service.aclose()
        await database.disconnect()

def main():
    parser = argparse.ArgumentParser(description="Set up shared master profiles for Nook MDM")
    parser.add_argument("--verify", action="store_true", help="only print the recorded master profiles")
    args = parser.parse_args()

    setup_logging()
    logger.info("Setting up shared master profiles")
    with log_exception("nook.setup_master_profiles"):
        exit_code = asyncio.run(run(args.verify))
    sys.exit(exit_code)

if __name__ == "__main__":
    main()
