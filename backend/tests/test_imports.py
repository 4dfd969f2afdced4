"""
Every module must import on its own, in a fresh interpreter, regardless of
what else has been loaded first.
"""
import subprocess
import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).parent.parent


@pytest.mark.parametrize(
    "module",
    [
        "toolfinder.services.execution.schema",
        "toolfinder.services.execution.fusion",
        "toolfinder.services.execution.quality",
        "toolfinder.services.execution.executor",
        "toolfinder.services.planning.planner",
        "toolfinder.services.intent.extractor",
        "toolfinder.models.search",
        "toolfinder.services.pipeline",
    ],
)
def test_module_imports_first(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=BACKEND_DIR,
        capture_output=True,
        text=True,
        timeout=120,
    )
    assert result.returncode == 0, result.stderr
