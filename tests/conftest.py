"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock and example_provider imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from converge.registry import HandlerRegistry  # noqa: E402
from converge.state import InMemoryStateStore  # noqa: E402
from example_provider import ExampleClientFactory, ExampleCloud  # noqa: E402


@pytest.fixture
def registry() -> HandlerRegistry:
    """A fresh registry so tests never share kinds."""
    return HandlerRegistry()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def cloud() -> ExampleCloud:
    return ExampleCloud()


@pytest.fixture
def client_factory(cloud: ExampleCloud) -> ExampleClientFactory:
    return ExampleClientFactory(cloud)
