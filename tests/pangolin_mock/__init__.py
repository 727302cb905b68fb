"""Pangolin API mock for integration testing.

Provides an in-memory fake of the Pangolin control plane, served through
``httpx.MockTransport`` so the real PangolinClient is exercised end to end.

Key Features:
- In-memory organizations, domains, sites, resources and targets
- Request recording for call-count assertions
- Error injection per operation (status, body, content type)
- Bearer API key checking

Usage:
    from pangolin_mock import MockPangolinAPI

    api = MockPangolinAPI()
    api.state.add_org("org1")
    api.state.add_domain("org1", "d1", "example.com")

    registry = build_registry(store, config, api.client_factory)

    assert api.state.call_count("create_site") == 1
"""

from .api import MockPangolinAPI
from .state import InjectedFailure, MockPangolinState, RecordedCall

__all__ = [
    "InjectedFailure",
    "MockPangolinAPI",
    "MockPangolinState",
    "RecordedCall",
]
