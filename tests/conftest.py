from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for package imports like `pipeline.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

STUB_OPTIMIZER = ROOT / "tests" / "fixtures" / "stub_optimizer.py"


def stub_command(mode: str) -> str:
    return shlex.join([sys.executable, str(STUB_OPTIMIZER), mode])


@pytest.fixture
def stub():
    """Factory for stub optimizer command lines, e.g. stub("identity")."""
    return stub_command
