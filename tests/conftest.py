from __future__ import annotations

import sys
from typing import Any
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


_CONFIG_ENV_VARS = (
    "ERP_URL",
    "NOTICES_URL",
    "PORTAL_TIMEZONE",
    "HEADLESS",
    "DEBUG_DIR",
    "OTP_API_URL",
    "NOTICE_WEBHOOK_URL",
    "ERP_ROLL_NO",
    "ERP_PASSWORD",
    "ERP_SECURITY_ANSWERS",
    "STATE_DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "portal: live smoke tests that require real ERP credentials and endpoints",
    )


@pytest.fixture(autouse=True)
def _isolated_config_env(request: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    # Unit tests must not pick up a developer's real .env values.
    if request.node.get_closest_marker("portal"):
        return
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
