from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture()
def settings():
    from config.settings import Settings

    return Settings(vox_api_url="https://api.vox.test/v2/call/web", sdk_version="9.9.9")


@pytest.fixture()
def clock():
    from fakes import ManualClock

    return ManualClock()
