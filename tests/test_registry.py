"""Unit tests for the node registry."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from shortener.exceptions import InvalidNodeID
from shortener.idgen import SnowflakeGenerator
from shortener.registry import NodeRegistry, get_registry


def test_same_node_returns_same_instance():
    registry = NodeRegistry()
    assert registry.get_generator(5) is registry.get_generator(5)
    assert len(registry) == 1
    assert 5 in registry


def test_different_nodes_get_distinct_generators():
    registry = NodeRegistry()
    first = registry.get_generator(1)
    second = registry.get_generator(2)

    assert first is not second
    assert (first.node_id, second.node_id) == (1, 2)


def test_generator_options_are_forwarded():
    registry = NodeRegistry(min_code_length=10, clock=lambda: 1_800_000_000_000)
    generator = registry.get_generator(0)

    assert isinstance(generator, SnowflakeGenerator)
    assert len(generator.generate_code()) >= 10


def test_invalid_node_is_never_cached():
    registry = NodeRegistry()

    for _ in range(2):
        with pytest.raises(InvalidNodeID):
            registry.get_generator(1024)

    assert 1024 not in registry
    assert registry.peek(1024) is None
    assert len(registry) == 0
    assert registry.get_generator(1023).node_id == 1023


def test_peek_does_not_create():
    registry = NodeRegistry()
    assert registry.peek(7) is None
    assert len(registry) == 0

    generator = registry.get_generator(7)
    assert registry.peek(7) is generator


def test_clear_drops_generators():
    registry = NodeRegistry()
    first = registry.get_generator(3)
    registry.clear()

    assert len(registry) == 0
    assert registry.get_generator(3) is not first


def test_concurrent_first_use_publishes_one_generator():
    registry = NodeRegistry()
    callers = 32
    barrier = threading.Barrier(callers)

    def fetch(_):
        barrier.wait()
        return registry.get_generator(42)

    with ThreadPoolExecutor(max_workers=callers) as pool:
        generators = list(pool.map(fetch, range(callers)))

    assert all(generator is generators[0] for generator in generators)
    assert len(registry) == 1


def test_concurrent_callers_share_id_space():
    registry = NodeRegistry()

    def mint(_):
        return [registry.get_generator(9).generate() for _ in range(500)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = [value for batch in pool.map(mint, range(8)) for value in batch]

    assert len(set(ids)) == len(ids)


def test_default_registry_is_process_wide():
    assert get_registry() is get_registry()
