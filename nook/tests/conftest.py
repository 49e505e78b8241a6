"""
Shared fixtures: a SQLite-backed ledger and an in-memory stand-in for SimpleMDM.
"""
import os

# Must be set before nook.core.config is imported
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite:///./test_nook.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIRECTORY", "logs")

import databases
import pytest
import pytest_asyncio

from nook.services.assignment_ledger import AssignmentLedger
from nook.services.master_profile_bootstrap import MasterProfileBootstrap
from nook.services.sync_coordinator import SyncCoordinator
from nook.services.sync_lock_service import FamilySyncLocks
from nook.tests.fakes import TEST_DATABASE_URL, FakeSimpleMDM, reset_tables

@pytest_asyncio.fixture
async def ledger():
    reset_tables()
    db = databases.Database(TEST_DATABASE_URL)
    await db.connect()
    try:
        yield AssignmentLedger(db)
    finally:
        await db.disconnect()

@pytest.fixture
def mdm():
    return FakeSimpleMDM()

@pytest.fixture
def coordinator(ledger, mdm):
    return SyncCoordinator(ledger, mdm, FamilySyncLocks())

@pytest_asyncio.fixture
async def bootstrapped(ledger, mdm):
    """Master profiles for every predefined type, created through the bootstrap."""
    await MasterProfileBootstrap(ledger, mdm).bootstrap()
    return {m.type: m for m in await ledger.list_master_profiles()}
