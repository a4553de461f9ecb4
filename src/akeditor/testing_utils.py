"""
Testing utilities for akeditor - pytest fixtures for code that drives the engine.

Import the fixtures you need into a conftest.py:

    from akeditor.testing_utils import generated_key_pair, key_pair_repo  # noqa: F401

Key generation on P-521 is slow in pure Python, so generated key pairs are
created once per test session and shared.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import pytest

from .crypto import generate_keypair
from .models import KeyPair
from .repositories import KeyPairRepository, TemplateRepository
from .store import MemoryStorage
from .token import ValidationResult


class ControlledVerifier:
    """
    Stand-in for the session verifier whose calls complete only when told to.

    Each call is recorded as (token, key_pair, future); resolve(i) completes
    call i with a result naming the key pair in ``error`` so tests can tell
    which check a session kept.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Optional[KeyPair], "asyncio.Future[ValidationResult]"]] = []

    async def __call__(self, token: str, key_pair: Optional[KeyPair]) -> ValidationResult:
        fut: "asyncio.Future[ValidationResult]" = asyncio.get_running_loop().create_future()
        self.calls.append((token, key_pair, fut))
        return await fut

    def resolve(self, index: int, result: Optional[ValidationResult] = None) -> None:
        _token, key_pair, fut = self.calls[index]
        if result is None:
            result = ValidationResult(
                is_valid=key_pair is not None,
                error=key_pair.name if key_pair is not None else "no key",
            )
        fut.set_result(result)


async def wait_until(predicate: Callable[[], bool], *, max_iterations: int = 1000) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(max_iterations):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def run(coro: Awaitable[Any]) -> Any:
    """Run a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)  # type: ignore[arg-type]


@pytest.fixture(scope="session")
def generated_key_pair() -> KeyPair:
    """A freshly generated ES512 key pair shared by the test session."""
    return generate_keypair("Primary test key")


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    """A second, unrelated ES512 key pair."""
    return generate_keypair("Other test key")


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def key_pair_repo(memory_storage: MemoryStorage) -> KeyPairRepository:
    """Empty key pair repository over in-memory storage."""
    return KeyPairRepository(memory_storage)


@pytest.fixture
def template_repo(memory_storage: MemoryStorage) -> TemplateRepository:
    """Template repository over in-memory storage, without the built-in examples."""
    return TemplateRepository(memory_storage, seed_defaults=False)


@pytest.fixture
def stored_key_pair(key_pair_repo: KeyPairRepository, generated_key_pair: KeyPair) -> KeyPair:
    """generated_key_pair added to key_pair_repo."""
    return key_pair_repo.add_key_pair(
        name=generated_key_pair.name,
        private_key=generated_key_pair.private_key,
        public_key=generated_key_pair.public_key,
    )
