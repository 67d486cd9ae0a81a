from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    """
    Ensure `src/` is on sys.path so tests can import `pixelflow`
    without requiring an editable install.
    """
    repo_root = Path(__file__).resolve().parents[1]
    src_root = repo_root / "src"
    sys.path.insert(0, str(src_root))


@pytest.fixture(scope="session")
def registry():
    """Frozen registry with every built-in operation."""
    from pixelflow.core.node_types import OperationRegistry

    return OperationRegistry.with_builtins()


@pytest.fixture
def graph(registry):
    from pixelflow.core.graph import ProcessingGraph

    return ProcessingGraph(registry, name="test")
