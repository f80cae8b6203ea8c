"""
Pytest configuration for the VM tests.

Puts the repository root on sys.path so the top-level packages import without an
editable install.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from vm.memory import Memory  # noqa: E402


@pytest.fixture
def memory() -> Memory:
    """Memory with a program segment (0) and an execution segment (1)."""
    mem = Memory()
    mem.add_segment()
    mem.add_segment()
    return mem
