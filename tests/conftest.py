from __future__ import annotations

import pytest

from fakes import FakeService, MemorySink, build_scenario_service


@pytest.fixture
def scenario_service() -> FakeService:
    return build_scenario_service()


@pytest.fixture
def memory_sink(tmp_path) -> MemorySink:
    return MemorySink(tmp_path / "out")
