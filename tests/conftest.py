"""Shared pytest configuration and fixtures for the verification client tests."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical camera"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical camera",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def fake_backend():
    from tests.infrastructure.mocks import FakeCameraBackend

    return FakeCameraBackend()


@pytest.fixture
def camera(fake_backend):
    from checkpost_verify.camera.resource import CameraResource

    return CameraResource(fake_backend)


@pytest.fixture
def config_file(tmp_path: Path):
    """Write a config.txt into tmp_path and return its path."""

    def _write(text: str) -> Path:
        path = tmp_path / "config.txt"
        path.write_text(text, encoding="utf-8")
        return path

    return _write
