"""
Tests del registro acotado de conexiones.
"""

import pytest

from errors import ResourceExhausted
from registry import ConnectionRegistry, SlotState


class TestConnectionRegistry:
    def test_init(self):
        registry = ConnectionRegistry(4, name="tcp")
        assert registry.capacity == 4
        assert registry.count() == 0
        with registry.hold() as slots:
            assert [s.index for s in slots] == [0, 1, 2, 3]
            assert all(s.state is SlotState.FREE for s in slots)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ConnectionRegistry(0)

    def test_occupy_lowest_free_slot(self):
        registry = ConnectionRegistry(3)
        a, b, c = object(), object(), object()
        assert registry.occupy(a).index == 0
        assert registry.occupy(b).index == 1
        registry.evict(0)
        assert registry.occupy(c).index == 0

    def test_handle_occupies_one_slot(self):
        registry = ConnectionRegistry(3)
        handle = object()
        first = registry.occupy(handle, ("10.0.0.2", 5000))
        again = registry.occupy(handle)
        assert again is first
        assert registry.count() == 1

    def test_full_registry_raises(self):
        registry = ConnectionRegistry(2)
        registry.occupy(object())
        registry.occupy(object())
        with pytest.raises(ResourceExhausted):
            registry.occupy(object())
        assert registry.count() == 2

    def test_evict_only_that_slot(self):
        registry = ConnectionRegistry(3)
        handles = [object(), object(), object()]
        for h in handles:
            registry.occupy(h)

        evicted = registry.evict(1)

        assert evicted is handles[1]
        assert [s.index for s in registry.snapshot()] == [0, 2]
        assert registry.snapshot()[1].handle is handles[2]

    def test_snapshot_is_a_copy(self):
        registry = ConnectionRegistry(2)
        registry.occupy("a", address=("1.2.3.4", 1))
        snap = registry.snapshot()
        registry.evict(0)
        assert snap[0].handle == "a"
        assert snap[0].address == ("1.2.3.4", 1)
        assert registry.count() == 0
