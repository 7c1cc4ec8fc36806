"""Pytest configuration and fixtures for kokkai research tests."""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "e2e: End-to-end tests requiring real API keys and search endpoints")
    config.addinivalue_line("markers", "integration: Integration tests with fake collaborators and a real MCP server")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")
