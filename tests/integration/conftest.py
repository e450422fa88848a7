"""
Scenario tests over a fully wired tier; everything here is marked ``integration``.

    pytest -m integration          # scenarios only
    pytest -m "not integration"    # unit tests only
"""

import pytest


def pytest_collection_modifyitems(items):
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(pytest.mark.integration)
