"""Unit tests for the in-memory session registry."""

from __future__ import annotations

import pytest

from btcsim.config import Settings
from btcsim.simulations.registry import SimulationRegistry


class TestRegistry:
    def test_unknown_kind(self, settings):
        with pytest.raises(KeyError):
            SimulationRegistry(settings).create("lightning")

    def test_least_recently_used_is_evicted(self):
        registry = SimulationRegistry(Settings(max_sessions=2))
        first = registry.create("script")
        second = registry.create("wallet")
        registry.get(first.id)
        registry.create("node")
        assert registry.session_count == 2
        assert registry.get(first.id) is first
        with pytest.raises(KeyError):
            registry.get(second.id)

    def test_completions_are_counted(self, settings):
        registry = SimulationRegistry(settings)
        entry = registry.create("script")
        for _ in range(2):
            for action in ("show_analogy", "create_scripts", "run_to_end"):
                registry.dispatch(entry.id, action)
            registry.reset(entry.id)
        assert entry.completions == 2
        assert registry.completed_total == 2

    def test_remove(self, settings):
        registry = SimulationRegistry(settings)
        entry = registry.create("transaction")
        registry.remove(entry.id)
        assert registry.session_count == 0
