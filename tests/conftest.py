"""Shared fixtures: a fresh state database, telemetry store and service per test."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rockmundo.config import get_settings
from rockmundo.service import ResolutionService
from rockmundo.state import ResolutionState
from rockmundo.telemetry import TelemetryCollector

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def state(tmp_path) -> ResolutionState:
    return ResolutionState(tmp_path / "state.db")


@pytest.fixture
def telemetry(tmp_path) -> TelemetryCollector:
    return TelemetryCollector(tmp_path / "telemetry.db")


@pytest.fixture
def service(state, telemetry, settings) -> ResolutionService:
    return ResolutionService(settings=settings, state=state, telemetry=telemetry)
