from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["TABSEARCH_LLM_PROVIDER"] = "none"
os.environ.pop("TABSEARCH_STORE_URI", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("GEMINI_API_KEY", None)
os.environ.setdefault("TABSEARCH_AGGRESSIVE", "false")
os.environ.setdefault("TABSEARCH_SEMANTIC_ONLY", "false")
os.environ.setdefault("TABSEARCH_SUMMARIZE_ON_SEARCH", "false")
os.environ.setdefault("TABSEARCH_METRICS_ENABLED", "true")


import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"
