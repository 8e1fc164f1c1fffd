"""Module that adds flags to pytest to enable extra tests, and shared fixtures."""

import pytest

from cloudtree.providers import MirrorProvider


def pytest_addoption(parser):
    parser.addoption(
        "--watch",
        action="store_true",
        default=False,
        help="Run tests that depend on file system change notifications",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "watch: mark test as depending on file system change notifications"
    )


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--watch"):
        skip_watch = pytest.mark.skip(reason="only runs with --watch option")

        for item in items:
            if "watch" in item.keywords:
                item.add_marker(skip_watch)


@pytest.fixture
def provider(tmp_path):
    return MirrorProvider(
        base_path=str(tmp_path / "containers"),
        store_path=str(tmp_path / "store"),
        lock_path=str(tmp_path / "locks"),
        delay=0.001,
        max_delay=0.01,
        debounce_ms=10,
    )
