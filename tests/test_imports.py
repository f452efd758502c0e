"""Smoke tests for the public package surface."""

import importlib

import pytest

MODULES = [
    "sitewatch",
    "sitewatch.main",
    "sitewatch.api",
    "sitewatch.cli",
    "sitewatch.config",
    "sitewatch.diff",
    "sitewatch.notification",
    "sitewatch.scheduler",
    "sitewatch.sitemap",
    "sitewatch.storage",
    "sitewatch.utils",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name) is not None


def test_version():
    import sitewatch

    assert sitewatch.__version__ == "0.1.0"


def test_errors_share_a_root():
    from sitewatch.config import ConfigError
    from sitewatch.notification import NotificationError
    from sitewatch.scheduler import SchedulerError
    from sitewatch.sitemap import SitemapFetchError
    from sitewatch.storage import StorageError
    from sitewatch.utils.types import SitewatchError

    for error in (ConfigError, NotificationError, SchedulerError, SitemapFetchError, StorageError):
        assert issubclass(error, SitewatchError)
