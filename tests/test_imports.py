# tests/test_imports.py
import os
import subprocess
import sys
from pathlib import Path

import pytest

SRC = Path(__file__).resolve().parents[1] / "src"

MODULES = [
    "mqtt_tail.contracts",
    "mqtt_tail.contracts.notices",
    "mqtt_tail.core.config",
    "mqtt_tail.core.console",
    "mqtt_tail.core.formatter",
    "mqtt_tail.core.setup",
    "mqtt_tail.core.broker",
    "mqtt_tail.core.stream",
    "mqtt_tail.core.stream.controller",
    "mqtt_tail.core.stream.machine",
    "mqtt_tail.main",
]


@pytest.mark.parametrize("module", MODULES)
def test_module_imports_first_in_fresh_interpreter(module):
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(SRC), os.environ.get("PYTHONPATH")]))}
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        timeout=60,
        env=env,
    )

    assert result.returncode == 0, result.stderr
