import numpy as np
import pytest

from pggsim.config import DynamicsConfig, NetworkType
from pggsim.groups import GroupStructure
from pggsim.network import Topology, ring_graph, square_lattice


def make_dynamics(**overrides):
    values = dict(
        with_loners=False,
        enhancement_range=False,
        enhancement_factor=3.0,
        repetitions_count=3,
        min_mcs=5,
        max_mcs=60,
        steps_to_average_over=5,
        k=0.5,
        contribution_cost=1.0,
        loner_payoff=0.3,
        standard_deviation_value=0.01,
    )
    values.update(overrides)
    return DynamicsConfig(**values)


def make_world(arena, network_type=NetworkType.SQUARE_LATTICE):
    topology = Topology(network_type=network_type, links=arena.freeze())
    return topology, GroupStructure.from_topology(topology)


def assert_simple_undirected(links):
    """No self-loops, no duplicates, every link present at both ends."""
    for node, neighbors in enumerate(links):
        assert node not in neighbors
        assert len(set(neighbors)) == len(neighbors)
        for neighbor in neighbors:
            assert node in links[neighbor]


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def lattice_world():
    return make_world(square_lattice(5))


@pytest.fixture
def triangle_world():
    return make_world(ring_graph(3, 2), NetworkType.RING_GRAPH)
