"""
Pytest configuration and fixtures for Supamock tests.
"""

import os

import httpx
import pytest

# Keep a developer's .env / SUPAMOCK_* overrides out of the test run
for _key in [key for key in os.environ if key.startswith("SUPAMOCK_")]:
    del os.environ[_key]

from supamock.config import MockSettings
from supamock.db import RelationalStore
from supamock.server import MockPostgrest, MockTransport

BASE_URL = "http://supamock.test"


@pytest.fixture
def settings():
    """Default wire conventions, never read from .env."""
    return MockSettings(_env_file=None)


@pytest.fixture
def store():
    return RelationalStore()


@pytest.fixture
def engine(settings):
    return MockPostgrest(settings=settings)


@pytest.fixture
def transport(engine):
    return MockTransport(engine)


@pytest.fixture
def client(transport):
    """httpx client wired to the mock backend."""
    with httpx.Client(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def sample_posts():
    """Posts with a to-one author, a to-many comments list, and JSON meta."""
    return [
        {
            "id": 1,
            "title": "First post",
            "views": 100,
            "tags": ["news", "tech"],
            "published_at": "2024-01-10T08:00:00Z",
            "meta": {"kind": "article", "score": 7},
            "author": {"id": 10, "name": "Ada"},
            "comments": [
                {"id": 1, "content": "Great read", "likes": 5},
                {"id": 2, "content": "Meh", "likes": 1},
            ],
        },
        {
            "id": 2,
            "title": "Second post",
            "views": 250,
            "tags": ["tech"],
            "published_at": "2024-02-01T12:00:00Z",
            "meta": {"kind": "note", "score": 3},
            "author": {"id": 11, "name": "Grace"},
            "comments": [],
        },
        {
            "id": 3,
            "title": "Draft",
            "views": None,
            "tags": [],
            "published_at": None,
            "meta": {"kind": "article", "score": 9},
            "author": None,
            "comments": [
                {"id": 3, "content": "great idea", "likes": 9},
                {"id": 4, "content": "needs work", "likes": 2},
                {"id": 5, "content": "great start", "likes": 4},
            ],
        },
    ]


@pytest.fixture
def seeded(engine, sample_posts):
    """Engine with public.posts loaded."""
    engine.store["public.posts"] = sample_posts
    return engine
