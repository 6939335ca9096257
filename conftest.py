"""
Pytest configuration and fixtures for wikidata radius dump tests.
"""

import pytest
from hypothesis import settings, Verbosity
import os

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=5, deadline=5000, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=100, deadline=30000, verbosity=Verbosity.normal)

# Use fast profile by default
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(scope="function")
def dumps_dir(tmp_path):
    """Fresh dumps directory for each test."""
    path = tmp_path / "dumps"
    path.mkdir()
    yield path


@pytest.fixture(scope="session")
def test_config():
    """Provide test configuration."""
    return {
        "query_service": {
            "endpoint": "https://query.example.org/sparql",
            "agent_name": "RadiusDumpTests/1.0 (tests@example.org)",
            "request_timeout": 5,
            "min_request_interval": 0,
            "retry_attempts": 2,
            "retry_base_delay": 0.1
        },
        "search_api": {
            "endpoint": "https://search.example.org/w/api.php",
            "agent_name": "RadiusDumpTests/1.0 (tests@example.org)",
            "page_size": 10,
            "page_delay": 0
        },
        "crawl": {
            "batch_size": 200,
            "sample_size": 100
        }
    }


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Configure logging for tests
    import logging
    logging.getLogger("wikidata_radius_dump").setLevel(logging.WARNING)
    logging.getLogger("hypothesis").setLevel(logging.WARNING)


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        # Mark property-based tests
        if "property" in item.name.lower() or any(
            marker.name == "given" for marker in item.iter_markers()
        ):
            item.add_marker(pytest.mark.property)

        if "integration" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
