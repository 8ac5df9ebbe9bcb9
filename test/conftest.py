from __future__ import annotations

import pytest

ENV_VARS = (
    "SATURATION_CONFIG",
    "SATURATION_API_BASE",
    "SATURATION_POLICY",
    "SATURATION_TIMEZONE",
    "SATURATION_GATE_MAX_ATTEMPTS",
    "SATURATION_POLL_SECONDS",
    "SATURATION_DROP_NON_POSITIVE",
    "LOG_LEVEL",
    "ALERT_WEBHOOK_URL",
    "ALERT_PLATFORM",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

