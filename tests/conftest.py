"""Pytest configuration and shared fixtures for assetdelta tests."""

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import Mock

import pytest

from assetdelta.core.config import AppConfig, PathsConfig

HASH_A = "a" * 64
HASH_B = "b" * 64
HASH_C = "c" * 64
HASH_D = "d" * 64


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def app_config(temp_dir: Path) -> AppConfig:
    """Real configuration rooted in the temporary directory."""
    return AppConfig(paths=PathsConfig(root=temp_dir))


@pytest.fixture
def write_snapshot(app_config: AppConfig) -> Callable[[str, dict[str, str]], Path]:
    """Write a manifest snapshot for a version into the manifest directory."""

    def _write(version: str, entries: dict[str, str]) -> Path:
        directory = app_config.paths.manifests
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"AssetBundleInfo_{version}.txt"
        lines = [f"{p} @{h}" for p, h in entries.items()]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_manifest_text() -> str:
    """Manifest text with noise lines, a duplicate path and an uppercase hash."""
    return "\n".join(
        [
            "# AssetBundleInfo",
            f"120 Audio/voice_001.acb @{HASH_A} 0",
            f"77 Textures/ui/icon.png @{HASH_B}",
            "garbage line without hash",
            f"130 Audio/voice_001.acb @{HASH_C.upper()}",
            "",
        ]
    )


@pytest.fixture
def mock_console() -> Mock:
    """Create standardized mock Rich console for CLI testing.

    Tracks printed output in printed_lines for assertions and mocks the
    status context manager.
    """
    import re
    import sys

    console = Mock()

    status_cm = Mock()
    status_cm.__enter__ = Mock(return_value=status_cm)
    status_cm.__exit__ = Mock(return_value=None)
    console.status.return_value = status_cm

    console.printed_lines = []

    def track_print(text, **kwargs):
        # Remove Rich markup for simpler testing
        clean_text = re.sub(r"\[/?[^\]]*\]", "", str(text))
        console.printed_lines.append(clean_text)
        print(clean_text, file=sys.stdout)

    console.print.side_effect = track_print
    return console


@pytest.fixture
def mock_config() -> Mock:
    """Create standardized mock app config for CLI testing."""
    config = Mock(spec=AppConfig)
    config.output_format = "rich"
    config.paths = PathsConfig(root=Path("/test/root"))
    return config


@pytest.fixture
def cli_obj(app_config: AppConfig) -> dict:
    """Click context object with a real config and a plain console."""
    from rich.console import Console

    return {
        "config": app_config,
        "console": Console(no_color=True, width=120),
        "verbose": False,
        "debug": False,
    }


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "integration: marks end-to-end tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Add the unit marker to every test not marked otherwise."""
    for item in items:
        if not any(marker.name == "integration" for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
