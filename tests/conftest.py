"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from learnloop.db import InMemoryStore  # noqa: E402
from learnloop.models import Lecture, PracticeItem  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite or store)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def db_url():
    """Database URL for store tests; in-memory SQLite unless overridden."""
    import os
    return os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return InMemoryStore()


@pytest.fixture
def mcq_payload():
    """Provide a sample multiple-choice question payload."""
    return {
        "type": "multiple_choice",
        "question": "Which layer of the OSI model handles routing?",
        "options": [
            "A. Physical Layer",
            "B. Data Link Layer",
            "C. Network Layer",
            "D. Transport Layer",
        ],
        "correct_answer": "C",
        "explanation": "Routers forward packets using layer 3 addresses.",
    }


@pytest.fixture
def sample_lecture_data(mcq_payload):
    """Provide a three-pause-point lecture as authored JSON."""
    return {
        "id": "lecture-osi",
        "title": "The OSI Reference Model",
        "duration": 120.0,
        "pause_points": [
            {"id": "pp-3", "timestamp": 90.0, "question": mcq_payload},
            {"id": "pp-1", "timestamp": 30.0, "question": mcq_payload},
            {"id": "pp-2", "timestamp": 60.0, "question": mcq_payload},
        ],
        "concept_map": [
            {"concept_name": "Layering", "start_timestamp": 5.0, "end_timestamp": 25.0},
            {"concept_name": "Routing", "start_timestamp": 40.0, "end_timestamp": 55.0},
        ],
    }


@pytest.fixture
def sample_lecture(sample_lecture_data):
    """Provide the sample lecture as a model."""
    return Lecture.model_validate(sample_lecture_data)


@pytest.fixture
def sample_item(mcq_payload):
    """Provide a sample practice item."""
    return PracticeItem(id="item-osi-routing", topic_tags=["osi"], question=mcq_payload)
