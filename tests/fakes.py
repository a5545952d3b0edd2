"""
In-memory stand-ins for the Redis client and the user document store.

FakeRedis implements the subset of ``redis.asyncio.Redis`` the store client
uses, with ``decode_responses=True`` semantics and expiry driven by a
controllable clock.
"""

import fnmatch
import math
import time
from typing import Any, Dict, List, Mapping, Optional, Set

import jwt
from redis.exceptions import ConnectionError as RedisConnectionError

from acms.repositories.users import UserRepository

TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-0123456789"


def make_token(user_id: str, expires_in: int = 3600, secret: str = TEST_JWT_SECRET) -> str:
    """Sign a bearer token the way the auth service issues them."""
    payload = {"userId": user_id, "exp": int(time.time()) + expires_in}
    return jwt.encode(payload, secret, algorithm="HS256")


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, float] = {}
        self.calls: List[str] = []
        self.failing: Set[str] = set()
        self.closed = False

    def fail(self, *operations: str) -> None:
        """Make the named operations (or ``"*"`` for all) raise ConnectionError."""
        self.failing.update(operations)

    def recover(self) -> None:
        self.failing.clear()

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing or "*" in self.failing:
            raise RedisConnectionError("Connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= self.clock():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def _live_keys(self) -> List[str]:
        for key in list(self.data):
            self._purge(key)
        return list(self.data)

    async def ping(self) -> bool:
        self._call("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._call("get")
        self._purge(key)
        value = self.data.get(key)
        if isinstance(value, bytes):
            # decode_responses=True clients decode on read
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._call("set")
        self.data[key] = str(value)
        if ex:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        self._call("delete")
        return self._remove(keys)

    async def unlink(self, *keys: str) -> int:
        self._call("unlink")
        return self._remove(keys)

    def _remove(self, keys) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        self._call("exists")
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.data
        return count

    async def incr(self, key: str) -> int:
        self._call("incr")
        return self._add(key, 1)

    async def decr(self, key: str) -> int:
        self._call("decr")
        return self._add(key, -1)

    def _add(self, key: str, amount: int) -> int:
        self._purge(key)
        value = int(self.data.get(key, "0")) + amount
        # Like Redis, INCR/DECR keep an existing expiry
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._call("expire")
        self._purge(key)
        if key not in self.data:
            return False
        self.expiry[key] = self.clock() + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._call("ttl")
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return math.ceil(self.expiry[key] - self.clock())

    async def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None):
        self._call("scan")
        for key in self._live_keys():
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


_STORE_FIELD_NAMES = {
    "first_name": "firstName",
    "last_name": "lastName",
    "enrollment_no": "enrollmentNo",
    "counsellor_id": "counsellorId",
}


class InMemoryUserRepository(UserRepository):
    """User records kept in a dict, shaped like the document store's."""

    def __init__(self, users: Optional[List[Mapping[str, Any]]] = None):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.get_calls = 0
        for user in users or []:
            self.add(user)

    def add(self, record: Mapping[str, Any]) -> None:
        self.users[record["id"]] = dict(record)

    async def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        self.get_calls += 1
        record = self.users.get(user_id)
        return dict(record) if record else None

    async def update_role(self, user_id: str, role: str) -> Optional[Dict[str, Any]]:
        record = self.users.get(user_id)
        if record is None:
            return None
        record["role"] = role
        return dict(record)

    async def assign_counsellor(
        self, student_id: str, counsellor_id: str
    ) -> Optional[Dict[str, Any]]:
        record = self.users.get(student_id)
        if record is None:
            return None
        record["counsellorId"] = counsellor_id
        return dict(record)

    async def update_profile(
        self, user_id: str, fields: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        record = self.users.get(user_id)
        if record is None:
            return None
        for name, value in fields.items():
            record[_STORE_FIELD_NAMES.get(name, name)] = value
        return dict(record)

    async def delete(self, user_id: str) -> bool:
        return self.users.pop(user_id, None) is not None
