"""Pytest configuration for the docsync tests.

This module provides common fixtures and configuration for the docsync tests.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from pytest_socket import disable_socket, enable_socket

from docsync.config import RetryConfig
from docsync.state_machine import InMemoryStatePersistence
from docsync.sync.classifier import ErrorCategory, ErrorClassifier, RetryStrategy
from docsync.sync.fakes import (
    FakeEmbeddingProvider,
    InMemoryMetadataRepo,
    InMemoryVectorRepo,
    ParagraphSplitter,
)
from docsync.utils.clock import FakeClock

# Millisecond backoff for retry-path tests
FAST_RETRY = RetryStrategy(max_retries=3, base_delay_ms=1, max_delay_ms=4)


# Define the integration marker - tests with this marker are not run by default
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (not run by default)"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "check: mark test as part of code quality checks (unit + integration)"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Reorder test collection and add markers based on test type.

    Fast unit tests run first, followed by integration tests.

    Also adds markers for easy test grouping:
    - unit: for unit tests
    - integration: for integration tests
    - check: for all tests
    """
    unit_tests = []
    integration_tests = []
    other_tests = []

    for item in items:
        test_path = str(item.path)
        if "/unit/" in test_path:
            unit_tests.append(item)
            item.add_marker(pytest.mark.unit)
            item.add_marker(pytest.mark.check)
        elif "/integration/" in test_path:
            integration_tests.append(item)
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.check)
        else:
            other_tests.append(item)

    # Reorder: unit → integration → other
    items[:] = unit_tests + integration_tests + other_tests


def pytest_runtest_setup(item: pytest.Item) -> None:
    """Set marker-based timeouts for tests.

    Sets default timeouts based on test location:
    - unit: 500ms per test (fast, isolated tests)
    - integration: 5s per test (component interactions, real sqlite files)

    In CI environments, timeouts are multiplied by CI_TIMEOUT_MULTIPLIER for slower resources.
    Individual @pytest.mark.timeout() decorators override these defaults.
    """
    # Skip if test already has an explicit timeout decorator
    if item.get_closest_marker("timeout"):
        return

    # Detect if running in CI environment
    is_ci = any(
        os.environ.get(var)
        for var in [
            "CI",  # Generic CI indicator
            "GITHUB_ACTIONS",  # GitHub Actions
            "TRAVIS",  # Travis CI
            "CIRCLECI",  # CircleCI
            "JENKINS_URL",  # Jenkins
            "BUILDKITE",  # Buildkite
            "TF_BUILD",  # Azure DevOps
        ]
    )

    # Apply CI multiplier if in CI environment
    ci_multiplier = (
        float(os.environ.get("CI_TIMEOUT_MULTIPLIER", "5.0")) if is_ci else 1.0
    )

    test_path = str(item.path)
    if "/unit/" in test_path:
        timeout = 0.5 * ci_multiplier
        item.add_marker(pytest.mark.timeout(timeout))
    elif "/integration/" in test_path:
        timeout = 5 * ci_multiplier
        item.add_marker(pytest.mark.timeout(timeout))


@pytest.fixture(autouse=True)
def clean_docsync_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove DOCSYNC_* variables so configuration tests see defaults."""
    for name in list(os.environ):
        if name.startswith("DOCSYNC_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def disable_network(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Disable network access for tests unless marked as integration."""
    if "integration" not in request.keywords:
        disable_socket(allow_unix_socket=True)
        yield
        enable_socket()
    else:
        yield


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to the temporary directory

    """
    # Create temporary directory
    temp_dir = Path(tempfile.mkdtemp())
    try:
        yield temp_dir
    finally:
        # Clean up
        shutil.rmtree(temp_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def persistence(clock: FakeClock) -> InMemoryStatePersistence:
    return InMemoryStatePersistence(clock)


@pytest.fixture
def metadata_repo() -> InMemoryMetadataRepo:
    return InMemoryMetadataRepo()


@pytest.fixture
def vector_repo() -> InMemoryVectorRepo:
    return InMemoryVectorRepo()


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def splitter() -> ParagraphSplitter:
    return ParagraphSplitter()


@pytest.fixture
def fast_classifier() -> ErrorClassifier:
    """Classifier whose temporary categories retry after a few milliseconds."""
    strategies = {
        category: FAST_RETRY
        for category in ErrorCategory
        if category is not ErrorCategory.UNKNOWN
    }
    return ErrorClassifier(
        RetryConfig(default_max_retries=3, default_base_delay_ms=1, default_max_delay_ms=4),
        strategies,
    )


@pytest.fixture
def sample_markdown() -> str:
    return (
        "# Guide\n\n"
        "Intro paragraph about syncing documents.\n\n"
        "## Setup\n\n"
        "Install the package and configure the store.\n\n"
        "## Usage\n\n"
        "Trigger a sync for each document."
    )
