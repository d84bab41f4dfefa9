import asyncio

import pytest


@pytest.fixture
def suspend_after_fetch():
    """
    Make a KeyedStore's fetch() yield to the event loop after every read.

    Concurrent callers then interleave inside the lock-held read-modify-write
    section, so a test only passes if the per-key lock serializes them.
    """
    def install(store):
        original = store.fetch

        async def fetch(key):
            record = await original(key)
            await asyncio.sleep(0)
            return record

        store.fetch = fetch
        return store

    return install
