"""Shared pytest configuration and fixtures for the streaming server tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from camstream.config import DEFAULTS, merge  # noqa: E402
from tests.helpers import FakePopen, TimerFactory  # noqa: E402


@pytest.fixture
def fake_popen():
    return FakePopen()


@pytest.fixture
def timer_factory():
    return TimerFactory()


@pytest.fixture
def config(tmp_path):
    """Default configuration with static files under tmp_path and no log file"""
    return merge(DEFAULTS, {
        'server': {'static_folder': str(tmp_path / 'static')},
        'logging': {'file': None},
    })


@pytest.fixture
def camera_config(config):
    return config['camera']
