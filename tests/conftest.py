"""Shared fixtures: an in-memory document store and a started SyncStore."""
import os
import tempfile

import pytest

os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "mentor-dashboard-uploads"))
os.environ.pop("DATABASE_URL", None)
import pytest_asyncio

from database import MemoryDocumentStore
from schemas import StudentCreate
from store import SyncStore


@pytest_asyncio.fixture
async def remote():
    store = MemoryDocumentStore()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sync(remote):
    s = SyncStore(remote)
    s.start()
    await remote.flush()
    yield s
    s.stop()


@pytest.fixture
def student_payload():
    return StudentCreate(
        full_name="Rohan Sharma",
        grade="10",
        board="CBSE",
        school="Delhi Public School",
        time_slot="3:00-4:30",
        contact="9876543210",
    )
