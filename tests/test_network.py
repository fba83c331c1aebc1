import numpy as np
import pytest

from conftest import assert_simple_undirected
from pggsim.config import NetworkConfig, NetworkType, RewiringType
from pggsim.network import (
    LinkArena,
    NetworkFileError,
    RewiringError,
    Topology,
    barabasi_albert,
    build_topology,
    erdos_renyi,
    honeycomb_lattice,
    lattice_rewiring,
    load_network,
    regular_rewiring,
    ring_graph,
    ring_rewiring,
    save_network,
    square_lattice,
    triangular_lattice,
)


def degrees(arena):
    return [arena.degree(node) for node in range(arena.nodes_count)]


def link_set(arena):
    return set(arena.links())


#######################################################################
# Link arena
#######################################################################
def test_remove_link_swaps_last_neighbor_into_place():
    arena = LinkArena(4)
    for other in (1, 2, 3):
        arena.add_link(0, other)
    arena.remove_link(0, 1)
    assert arena.neighbors(0) == [3, 2]
    assert not arena.has_link(0, 1) and not arena.has_link(1, 0)
    assert arena.has_link(3, 0)
    arena.remove_link(0, 3)
    assert arena.neighbors(0) == [2]


def test_arena_rejects_self_loops_and_duplicates():
    arena = LinkArena(3)
    arena.add_link(0, 1)
    with pytest.raises(ValueError):
        arena.add_link(1, 0)
    with pytest.raises(ValueError):
        arena.add_link(2, 2)


#######################################################################
# Generators
#######################################################################
@pytest.mark.parametrize("generator, degree", [
    (square_lattice, 4),
    (triangular_lattice, 6),
    (honeycomb_lattice, 3),
])
@pytest.mark.parametrize("side", [4, 6, 10])
def test_lattices_are_regular(generator, degree, side):
    arena = generator(side)
    assert arena.nodes_count == side * side
    assert degrees(arena) == [degree] * (side * side)
    assert_simple_undirected(arena.freeze())


def test_square_lattice_accepts_odd_side():
    arena = square_lattice(5)
    assert degrees(arena) == [4] * 25
    assert arena.links_count == 50


def test_ring_graph_degree():
    arena = ring_graph(12, 4)
    assert degrees(arena) == [4] * 12
    assert arena.has_link(0, 11) and arena.has_link(0, 10) and not arena.has_link(0, 9)
    assert_simple_undirected(arena.freeze())


def test_barabasi_albert_is_a_tree(rng):
    assert barabasi_albert(5, rng).links_count == 4
    arena = barabasi_albert(200, rng)
    assert arena.links_count == 199
    assert min(degrees(arena)) == 1
    assert_simple_undirected(arena.freeze())


def test_barabasi_albert_grows_from_first_edge():
    arena = barabasi_albert(30, np.random.default_rng(4))
    assert arena.has_link(0, 1)
    # every later node attaches to exactly one earlier node
    for node in range(2, 30):
        assert sum(1 for neighbor in arena.neighbors(node) if neighbor < node) == 1


def test_random_graphs_follow_the_generator_seed():
    assert link_set(erdos_renyi(40, 0.1, np.random.default_rng(6))) == \
        link_set(erdos_renyi(40, 0.1, np.random.default_rng(6)))
    assert link_set(barabasi_albert(40, np.random.default_rng(6))) == \
        link_set(barabasi_albert(40, np.random.default_rng(6)))


def test_erdos_renyi_extremes(rng):
    assert erdos_renyi(10, 0.0, rng).links_count == 0
    assert erdos_renyi(10, 1.0, rng).links_count == 45


def test_erdos_renyi_density(rng):
    arena = erdos_renyi(300, 0.05, rng)
    expected = 0.05 * 300 * 299 / 2
    assert abs(arena.links_count - expected) < 0.2 * expected
    assert_simple_undirected(arena.freeze())


def test_topology_summary():
    topology = Topology(NetworkType.ERDOS_RENYI, ((1,), (0,), ()))
    assert topology.nodes_count == 3
    assert topology.links_count == 1
    assert topology.zero_degree_count == 1
    assert topology.active_nodes == (0, 1)
    assert topology.degree_distribution() == pytest.approx({0: 1 / 3, 1: 2 / 3})


#######################################################################
# Rewiring
#######################################################################
def test_lattice_rewiring_keeps_link_count(rng):
    arena = square_lattice(8)
    rewired = lattice_rewiring(arena, 0.3, rng)
    assert rewired.links_count == arena.links_count
    assert link_set(rewired) != link_set(arena)
    assert_simple_undirected(rewired.freeze())


def test_lattice_rewiring_with_zero_probability_changes_nothing(rng):
    arena = square_lattice(6)
    assert link_set(lattice_rewiring(arena, 0.0, rng)) == link_set(arena)


def test_ring_rewiring_keeps_link_count(rng):
    arena = ring_graph(30, 6)
    links_count = arena.links_count
    rewired = ring_rewiring(arena, 0.5, 6, rng)
    assert rewired.links_count == links_count
    assert_simple_undirected(rewired.freeze())


def test_regular_rewiring_keeps_degrees():
    succeeded = 0
    for seed in range(20):
        arena = square_lattice(8)
        try:
            rewired = regular_rewiring(arena.copy(), 0.2, np.random.default_rng(seed))
        except RewiringError:
            continue
        succeeded += 1
        assert degrees(rewired) == [4] * 64
        assert link_set(rewired) != link_set(arena)
        assert_simple_undirected(rewired.freeze())
    assert succeeded > 0


def test_regular_rewiring_of_a_triangle_fails(rng):
    with pytest.raises(RewiringError, match="no node can take a new link"):
        regular_rewiring(ring_graph(3, 2), 1.0, rng)


def chain_closing_failures():
    """
    Failure messages of two-link chains on a triangle 0-2-3 with a pendant node 1 on 0.

    Starting at 0 and breaking 0-1, node 1 links to 2 or 3, which then breaks
    one of its links: freeing 0 closes the chain on its own start, freeing the
    other triangle node makes the closing link a duplicate of its link to 0.
    """
    messages = set()
    for seed in range(500):
        arena = LinkArena.from_neighbor_lists([[1, 2, 3], [0], [0, 3], [0, 2]])
        try:
            regular_rewiring(arena, 0.5, np.random.default_rng(seed))
        except RewiringError as e:
            messages.add(str(e))
    return messages


def test_regular_rewiring_fails_when_chain_returns_to_start():
    assert "Rewiring Failed: The first and the last node are the same!" in chain_closing_failures()


def test_regular_rewiring_fails_when_closing_link_is_a_duplicate():
    assert "Rewiring Failed: Last link would be a duplicate!" in chain_closing_failures()


#######################################################################
# Network file and build
#######################################################################
def lattice_config(**overrides):
    values = dict(network_type=NetworkType.SQUARE_LATTICE, nodes_count=16, lattice_length=4)
    values.update(overrides)
    return NetworkConfig(**values)


def test_saved_network_loads_back(tmp_path, rng):
    config = NetworkConfig(network_type=NetworkType.ERDOS_RENYI, nodes_count=12, erdos_renyi_probability=0.15)
    path = str(tmp_path / "network.csv")
    topology = build_topology(config, rng, save_path=path)

    loaded = load_network(path, NetworkConfig(network_type=NetworkType.ERDOS_RENYI, nodes_count=12,
                                              load_network=True, network_file=path))
    assert {frozenset(link) for link in loaded.links()} == {
        frozenset((a, b)) for a, neighbors in enumerate(topology.links) for b in neighbors}


def test_isolated_nodes_are_written_as_minus_one(tmp_path):
    arena = LinkArena(3)
    arena.add_link(0, 1)
    path = tmp_path / "network.csv"
    save_network(arena, NetworkConfig(network_type=NetworkType.ERDOS_RENYI, nodes_count=3,
                                      erdos_renyi_probability=0.1), str(path))
    assert path.read_text().splitlines()[-3:] == ["1", "0", "-1"]


def test_load_rejects_node_count_mismatch(tmp_path, rng):
    path = str(tmp_path / "network.csv")
    build_topology(lattice_config(), rng, save_path=path)
    with pytest.raises(NetworkFileError, match="nodes"):
        load_network(path, lattice_config(nodes_count=25, lattice_length=5))


def test_load_rejects_network_type_mismatch(tmp_path, rng):
    path = str(tmp_path / "network.csv")
    build_topology(lattice_config(), rng, save_path=path)
    with pytest.raises(NetworkFileError):
        load_network(path, NetworkConfig(network_type=NetworkType.BARABASI_ALBERT, nodes_count=16))


def test_load_rejects_asymmetric_links(tmp_path):
    path = tmp_path / "network.csv"
    path.write_text("#Load Network Info\nNetworkType,erdos_renyi\nNodesCount,3\n\n"
                    "#Links of Each Node\n1\n-1\n-1")
    with pytest.raises(NetworkFileError, match="symmetric"):
        load_network(str(path), NetworkConfig(network_type=NetworkType.ERDOS_RENYI, nodes_count=3))


def test_build_topology_rewires_after_saving(tmp_path, rng):
    path = str(tmp_path / "network.csv")
    config = lattice_config(nodes_count=36, lattice_length=6, rewiring=True,
                            rewiring_type=RewiringType.SQUARE_LATTICE, rewiring_probability=1.0)
    topology = build_topology(config, rng, save_path=path)
    saved = load_network(path, config)
    assert degrees(saved) == [4] * 36
    assert topology.links_count == 72
    assert_simple_undirected(topology.links)
