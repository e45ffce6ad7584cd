"""Shared fixtures: plugin directories for install and discovery tests."""

import pytest


@pytest.fixture
def plugin_source_dir(tmp_path):
    """Directory for plugin bundles that get installed from a local path."""
    path = tmp_path / "sources"
    path.mkdir()
    return path


@pytest.fixture
def plugin_dirs(tmp_path):
    """(installed, bundled) plugin directories."""
    installed = tmp_path / "installed"
    bundled = tmp_path / "bundled"
    installed.mkdir()
    bundled.mkdir()
    return installed, bundled
