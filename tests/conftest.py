"""Fixtures compartidas: registro con un tipo en memoria que registra lo aplicado."""

from typing import Any, Dict, List, Set

import pytest

from lsxagent.core.infra.base import BaseProvider
from lsxagent.core.resource.attributes import Property
from lsxagent.core.resource.registry import TypeDescriptor, default_registry
from lsxagent.core.resource.values import ABSENT
from lsxagent.core.settings import AgentSettings


class SampleProvider(BaseProvider):
    name = "memory"

    state: Dict[str, Any] = {}
    applied: List[str] = []
    refreshed: List[str] = []
    failing: Set[str] = set()

    def value(self) -> Any:
        return self.state.get(self.resource.title, ABSENT)

    def set_value(self, value: Any) -> None:
        if self.resource.title in self.failing:
            raise RuntimeError("disco lleno")
        self.state[self.resource.title] = value
        self.applied.append(self.resource.title)

    def refresh(self) -> None:
        self.refreshed.append(self.resource.title)


class ValueProperty(Property):
    name = "value"


SAMPLE = TypeDescriptor("sample", properties=[ValueProperty], providers=[SampleProvider])


@pytest.fixture
def sample():
    SampleProvider.state = {}
    SampleProvider.applied = []
    SampleProvider.refreshed = []
    SampleProvider.failing = set()
    return SampleProvider


@pytest.fixture
def registry(sample):
    registry = default_registry()
    registry.register(SAMPLE)
    return registry


@pytest.fixture
def settings(tmp_path):
    return AgentSettings(node_name="web01.example.com", statedir=tmp_path / "state", server="http://compiler:8140")
