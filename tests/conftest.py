#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
pytest configuration and fixtures

Path bootstrap: ensures imports work from any CWD
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to sys.path
project_root = Path(__file__).resolve().parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def isolate_exchange_core_env():
    """EXCHANGE_CORE_* overrides never leak between tests"""
    saved = {key: value for key, value in os.environ.items() if key.startswith("EXCHANGE_CORE_")}
    for key in saved:
        del os.environ[key]

    yield

    for key in [k for k in os.environ if k.startswith("EXCHANGE_CORE_")]:
        del os.environ[key]
    os.environ.update(saved)
