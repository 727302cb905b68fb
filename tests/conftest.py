"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for pangolin_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from pangolin_mock import MockPangolinAPI  # noqa: E402

from pangolin_operator.config import Config  # noqa: E402
from pangolin_operator.registry import KindRegistry, build_registry  # noqa: E402
from pangolin_operator.store import InMemoryStore  # noqa: E402


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def api() -> MockPangolinAPI:
    """Fake control plane with org1 and one verified domain."""
    api = MockPangolinAPI()
    api.state.add_org("org1", "Org One")
    api.state.add_domain("org1", "d1", "example.com", verified=True)
    return api


@pytest.fixture
def registry(store: InMemoryStore, config: Config, api: MockPangolinAPI) -> KindRegistry:
    return build_registry(store, config, api.client_factory)
