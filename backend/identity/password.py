"""Password and API-key hashing.

BcryptHasher is CPU-bound and runs in a worker thread via anyio so sign-in
bursts do not stall the event loop. SimpleHasher ("simple$" + SHA-256) exists
for tests only.

``burn`` performs a verification against a throwaway hash so that a sign-in for
an unknown user costs the same as one with a wrong password.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

import bcrypt
from anyio import to_thread

PASSWORD_MAX_BYTES = 72  # bcrypt ignores anything past 72 bytes


@runtime_checkable
class PasswordHasher(Protocol):
    async def hash(self, plain: str) -> str: ...

    async def verify(self, plain: str, hashed: str) -> bool: ...

    async def burn(self, plain: str) -> None: ...


class BcryptHasher:
    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._decoy: bytes | None = None

    async def hash(self, plain: str) -> str:
        encoded = plain.encode("utf-8")
        salt = bcrypt.gensalt(self._rounds)
        return await to_thread.run_sync(lambda: bcrypt.hashpw(encoded, salt).decode("utf-8"))

    async def verify(self, plain: str, hashed: str) -> bool:
        """Empty or malformed hashes never match.

        An empty hash (passwordless-only account) or an over-long password still
        costs one bcrypt check.
        """
        encoded_plain = plain.encode("utf-8")
        if not hashed or len(encoded_plain) > PASSWORD_MAX_BYTES:
            await self.burn(plain)
            return False
        encoded_hash = hashed.encode("utf-8")
        try:
            return await to_thread.run_sync(lambda: bcrypt.checkpw(encoded_plain, encoded_hash))
        except ValueError:
            return False

    async def burn(self, plain: str) -> None:
        if self._decoy is None:
            salt = bcrypt.gensalt(self._rounds)
            self._decoy = await to_thread.run_sync(lambda: bcrypt.hashpw(b"decoy", salt))
        decoy = self._decoy
        encoded = plain.encode("utf-8")[:PASSWORD_MAX_BYTES]
        await to_thread.run_sync(lambda: bcrypt.checkpw(encoded, decoy))


_SIMPLE_PREFIX = "simple$"


class SimpleHasher:
    """Fast SHA-256 hasher for tests. Not suitable for production use."""

    async def hash(self, plain: str) -> str:
        return _SIMPLE_PREFIX + hashlib.sha256(plain.encode("utf-8")).hexdigest()

    async def verify(self, plain: str, hashed: str) -> bool:
        if not hashed.startswith(_SIMPLE_PREFIX):
            return False
        return hashed == await self.hash(plain)

    async def burn(self, plain: str) -> None:
        await self.hash(plain)


def get_hasher(name: str = "bcrypt") -> PasswordHasher:
    """Return a PasswordHasher by name ("bcrypt" or "simple")."""
    if name == "bcrypt":
        return BcryptHasher()
    if name == "simple":
        return SimpleHasher()
    raise ValueError(f"Unknown password hasher: {name!r}")


def hash_api_key(raw_key: str) -> str:
    """Digest under which an API key is stored and looked up."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
