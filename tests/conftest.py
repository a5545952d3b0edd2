"""
Main pytest configuration for all backend tests.

Unit tests run against an in-memory Redis fake; no server is required.
"""

import os

import pytest

# Set test environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret-key-for-testing-only-0123456789"
os.environ["LOG_LEVEL"] = "DEBUG"

from acms.core.config import Settings
from acms.infrastructure.redis.store import KeyValueStore, StoreConfig
from acms.services.cache.cache_service import CacheService
from tests.fakes import (
    TEST_JWT_SECRET,
    FakeClock,
    FakeRedis,
    InMemoryUserRepository,
    make_token,
)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "redis: marks tests as Redis-related")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "security: marks tests as security tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def store(fake_redis):
    """Store over the fake client; usable without connect()."""
    return KeyValueStore(StoreConfig(operation_timeout=1.0), client=fake_redis)


@pytest.fixture
def cache_service(store):
    return CacheService(store)


@pytest.fixture
def sample_users():
    return [
        {
            "id": "stu-1",
            "email": "asha@example.edu",
            "password": "$2b$10$hashedpassword",
            "firstName": "Asha",
            "lastName": "Rao",
            "role": "student",
            "enrollmentNo": "EN2024001",
            "department": "CSE",
            "semester": 5,
            "counsellorId": "cou-1",
        },
        {
            "id": "cou-1",
            "email": "meera@example.edu",
            "password": "$2b$10$hashedpassword",
            "firstName": "Meera",
            "lastName": "Iyer",
            "role": "counsellor",
            "department": "CSE",
        },
        {
            "id": "cou-2",
            "email": "vikram@example.edu",
            "password": "$2b$10$hashedpassword",
            "firstName": "Vikram",
            "lastName": "Shah",
            "role": "counsellor",
            "department": "CSE",
        },
        {
            "id": "adm-1",
            "email": "admin@example.edu",
            "password": "$2b$10$hashedpassword",
            "firstName": "Admin",
            "lastName": "User",
            "role": "admin",
        },
    ]


@pytest.fixture
def user_repository(sample_users):
    return InMemoryUserRepository(sample_users)


@pytest.fixture
def test_settings():
    return Settings(
        ENVIRONMENT="test",
        JWT_SECRET=TEST_JWT_SECRET,
        RATE_LIMIT_GENERAL_MAX=100,
        RATE_LIMIT_AUTH_MAX=5,
        RATE_LIMIT_USER_MAX=200,
    )


@pytest.fixture
def token_for():
    return make_token
