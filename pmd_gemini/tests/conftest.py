# Pytest configuration for the PMD-Gemini Service test suite
#
# Timeout strategy:
# - FAST tests: 10s (pure unit tests, no I/O)
# - MEDIUM tests: 30s (temp files, fake analyzer subprocesses, TestClient)

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Callable, Sequence

import pytest

from pmd_gemini.modules.config import ServiceConfig

# ---------------------------------------------------------------------------
# Timeout configuration by test file
# ---------------------------------------------------------------------------

TIMEOUT_MAP = {
    "test_normalizer": 10,
    "test_config": 10,
    "test_fix_advisor": 10,
    "test_artifacts": 30,
    "test_process_runner": 30,
    "test_scanner": 30,
    "test_api": 30,
}


def pytest_collection_modifyitems(config, items):
    """Apply timeout markers based on test file names."""
    for item in items:
        test_name = Path(str(item.fspath)).stem

        timeout = 30  # default
        for pattern, t in TIMEOUT_MAP.items():
            if pattern in test_name:
                timeout = t
                break

        if item.get_closest_marker("timeout") is None:
            item.add_marker(pytest.mark.timeout(timeout))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    path = tmp_path / "artifacts"
    path.mkdir()
    return path


@pytest.fixture
def make_analyzer(tmp_path: Path) -> Callable[[str], Sequence[str]]:
    """Write a fake analyzer script; it receives the artifact path as argv[1]."""

    counter = {"n": 0}

    def _make(body: str) -> Sequence[str]:
        counter["n"] += 1
        script = tmp_path / f"fake_analyzer_{counter['n']}.py"
        script.write_text(
            "import sys, time, json\nfrom pathlib import Path\nsys.stdout.reconfigure(encoding=\"utf-8\")\ntarget = Path(sys.argv[1])\n"
            + textwrap.dedent(body),
            encoding="utf-8",
        )
        return (sys.executable, str(script))

    return _make


@pytest.fixture
def make_config(artifact_dir: Path) -> Callable[..., ServiceConfig]:
    def _make(**overrides) -> ServiceConfig:
        values = {
            "artifact_dir": artifact_dir,
            "scan_timeout_seconds": 10.0,
            "upstream_timeout_seconds": 20.0,
        }
        values.update(overrides)
        return ServiceConfig(**values)

    return _make
