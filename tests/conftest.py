from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers.job_sync import FakeClock, StepClock

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config) -> None:
    markers = [
        "job_sync: Remote job sync engine tests.",
        "job_sync_e2e: Multi-component flows over a mocked HTTP transport.",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return REPO_ROOT


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def step_clock() -> StepClock:
    return StepClock()
