"""Core test fixtures for the game service tests."""

import pytest

from bottle_flip_xo.exceptions import StoreUnavailableError
from bottle_flip_xo.service import GameService
from bottle_flip_xo.store import InMemoryDocumentStore


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose operations can be switched to fail like a dropped connection."""

    def __init__(self):
        super().__init__()
        self.failing = set()

    def _maybe_fail(self, operation, path):
        if operation in self.failing:
            raise StoreUnavailableError(f"{operation} failed", path=path)

    async def write(self, path, document):
        self._maybe_fail("write", path)
        await super().write(path, document)

    async def patch(self, path, fields):
        self._maybe_fail("patch", path)
        await super().patch(path, fields)

    async def read(self, path):
        self._maybe_fail("read", path)
        return await super().read(path)

    async def remove(self, path):
        self._maybe_fail("remove", path)
        await super().remove(path)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def service(store):
    return GameService(store)
