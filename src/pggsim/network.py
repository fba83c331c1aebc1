"""
Population network construction.

Generators build the adjacency of N nodes for one of six network types,
optional rewiring replaces part of the links with random ones, and the result
is frozen into a Topology that every trial of the run reads concurrently.

While a network is built or rewired its links live in a LinkArena: one record
per node holding the neighbor list plus the position of every neighbor in
that list, so adding, removing and looking up a link are all O(1).
"""
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Tuple

import networkx as nx

from .config import NetworkType, RewiringType

NO_LINKS = -1


class RewiringError(RuntimeError):
    """Rewiring cannot finish without a self-loop or a duplicate link."""


class NetworkFileError(ValueError):
    """A network file is malformed or does not match the configuration."""


#######################################################################
# Link arena
#######################################################################
class LinkArena:
    """
    Mutable undirected adjacency with swap-and-pop link removal.

    Parameters:
    -----------
    nodes_count : int
        Number of nodes; node indices are 0..nodes_count-1
    """

    def __init__(self, nodes_count):
        self.nodes_count = nodes_count
        self._neighbors = [[] for _ in range(nodes_count)]
        self._slots = [{} for _ in range(nodes_count)]

    @classmethod
    def from_neighbor_lists(cls, neighbor_lists):
        arena = cls(len(neighbor_lists))
        for node, neighbors in enumerate(neighbor_lists):
            for neighbor in neighbors:
                if not arena.has_link(node, neighbor):
                    arena.add_link(node, neighbor)
        return arena

    def has_link(self, a, b):
        return b in self._slots[a]

    def add_link(self, a, b):
        if a == b:
            raise ValueError(f"self-loop on node {a}")
        if b in self._slots[a]:
            raise ValueError(f"duplicate link {a}-{b}")
        self._attach(a, b)
        self._attach(b, a)

    def remove_link(self, a, b):
        self._detach(a, b)
        self._detach(b, a)

    def _attach(self, node, neighbor):
        self._slots[node][neighbor] = len(self._neighbors[node])
        self._neighbors[node].append(neighbor)

    def _detach(self, node, neighbor):
        neighbors = self._neighbors[node]
        slots = self._slots[node]
        position = slots.pop(neighbor)
        last = neighbors.pop()
        if position < len(neighbors):
            neighbors[position] = last
            slots[last] = position

    def neighbors(self, node):
        return self._neighbors[node]

    def degree(self, node):
        return len(self._neighbors[node])

    @property
    def links_count(self):
        return sum(len(n) for n in self._neighbors) // 2

    def links(self):
        """Iterate every link once as (low, high)."""
        for a, neighbors in enumerate(self._neighbors):
            for b in neighbors:
                if a < b:
                    yield a, b

    def copy(self):
        return LinkArena.from_neighbor_lists(self._neighbors)

    def freeze(self):
        return tuple(tuple(neighbors) for neighbors in self._neighbors)


#######################################################################
# Frozen topology
#######################################################################
@dataclass(frozen=True)
class Topology:
    """Immutable adjacency shared read-only by all trials of a run."""
    network_type: NetworkType
    links: Tuple[Tuple[int, ...], ...]
    degrees: Tuple[int, ...] = field(init=False, repr=False)
    active_nodes: Tuple[int, ...] = field(init=False, repr=False)

    def __post_init__(self):
        degrees = tuple(len(neighbors) for neighbors in self.links)
        object.__setattr__(self, "degrees", degrees)
        object.__setattr__(self, "active_nodes", tuple(n for n, d in enumerate(degrees) if d > 0))

    @property
    def nodes_count(self):
        return len(self.links)

    @property
    def links_count(self):
        return sum(self.degrees) // 2

    @property
    def zero_degree_count(self):
        return self.nodes_count - len(self.active_nodes)

    def neighbors(self, node):
        return self.links[node]

    def degree_distribution(self):
        """Fraction of nodes per degree, sorted by degree."""
        counts = Counter(self.degrees)
        return {degree: counts[degree] / self.nodes_count for degree in sorted(counts)}


#######################################################################
# Generators
#######################################################################
def square_lattice(side):
    """Periodic square lattice, 4 neighbors per node."""
    nodes_count = side * side
    neighbor_lists = []
    for node in range(nodes_count):
        i, j = node % side, node // side
        neighbor_lists.append([
            j * side + (i - 1) % side,    # left
            ((j - 1) % side) * side + i,  # top
            j * side + (i + 1) % side,    # right
            ((j + 1) % side) * side + i,  # bottom
        ])
    return LinkArena.from_neighbor_lists(neighbor_lists)


def triangular_lattice(side):
    """
    Periodic triangular lattice in brick-wall layout, 6 neighbors per node.

    Besides left/right/top/bottom, a node links to the two diagonal nodes
    above and below on the side given by its row: even rows stagger to the
    left, odd rows to the right. The side must be even.
    """
    neighbor_lists = [None] * (side * side)
    for j in range(side):
        stagger = 1 if j % 2 == 0 else -1
        for i in range(side):
            up, down = (j - 1) % side, (j + 1) % side
            neighbor_lists[j * side + i] = [
                j * side + (i - 1) % side,
                j * side + (i + 1) % side,
                up * side + i,
                down * side + i,
                up * side + (i - stagger) % side,
                down * side + (i - stagger) % side,
            ]
    return LinkArena.from_neighbor_lists(neighbor_lists)


def honeycomb_lattice(side):
    """
    Periodic honeycomb lattice, 3 neighbors per node.

    Every node links left and right; the vertical link goes down when the
    column and row have the same parity and up otherwise. The side must be even.
    """
    neighbor_lists = [None] * (side * side)
    for j in range(side):
        for i in range(side):
            vertical = (j + 1) % side if (i + j) % 2 == 0 else (j - 1) % side
            neighbor_lists[j * side + i] = [
                j * side + (i - 1) % side,
                j * side + (i + 1) % side,
                vertical * side + i,
            ]
    return LinkArena.from_neighbor_lists(neighbor_lists)


def ring_graph(nodes_count, degree):
    """Cycle where every node links to its degree/2 nearest nodes on each side."""
    arena = LinkArena(nodes_count)
    for node in range(nodes_count):
        for offset in range(1, degree // 2 + 1):
            arena.add_link(node, (node + offset) % nodes_count)
    return arena


def _from_graph(graph, nodes_count):
    return LinkArena.from_neighbor_lists([sorted(graph[node]) for node in range(nodes_count)])


def erdos_renyi(nodes_count, probability, rng):
    """Link every unordered node pair independently with the given probability."""
    return _from_graph(nx.erdos_renyi_graph(nodes_count, probability, seed=rng), nodes_count)


def barabasi_albert(nodes_count, rng):
    """
    Preferential attachment with one link per new node.

    Growth starts from the edge 0-1; every new node links to one existing node
    picked with probability proportional to its degree.
    """
    return _from_graph(nx.barabasi_albert_graph(nodes_count, 1, seed=rng), nodes_count)


def generate(network_config, rng):
    """Build the arena for the configured network type."""
    network_type = network_config.network_type
    if network_type is NetworkType.SQUARE_LATTICE:
        return square_lattice(network_config.lattice_length)
    if network_type is NetworkType.TRIANGULAR_LATTICE:
        return triangular_lattice(network_config.lattice_length)
    if network_type is NetworkType.HONEYCOMB:
        return honeycomb_lattice(network_config.lattice_length)
    if network_type is NetworkType.RING_GRAPH:
        return ring_graph(network_config.nodes_count, network_config.ring_graph_degree)
    if network_type is NetworkType.ERDOS_RENYI:
        return erdos_renyi(network_config.nodes_count, network_config.erdos_renyi_probability, rng)
    if network_type is NetworkType.BARABASI_ALBERT:
        return barabasi_albert(network_config.nodes_count, rng)
    raise ValueError(f"Unknown network type: {network_type}")


#######################################################################
# Rewiring
#######################################################################
def _draw_node(rng, nodes_count, accept):
    """
    Draw a random node satisfying accept(node).

    Random draws are tried first; if they keep failing every node is scanned,
    and RewiringError is raised when no node qualifies at all.
    """
    for _ in range(4 * nodes_count):
        candidate = int(rng.integers(nodes_count))
        if accept(candidate):
            return candidate
    candidates = [node for node in range(nodes_count) if accept(node)]
    if not candidates:
        raise RewiringError("Rewiring Failed: no node can take a new link without a self-loop or duplicate")
    return candidates[int(rng.integers(len(candidates)))]


def lattice_rewiring(arena, probability, rng):
    """
    Redirect every link with the given probability.

    Links are consumed from the starting adjacency one at a time; a link that
    is kept moves unchanged into the rewired adjacency, a rewired one is
    replaced by a link from the same node to a random target that is linked to
    it neither before nor after rewiring.
    """
    before = arena.copy()
    after = LinkArena(arena.nodes_count)
    rewired = 0
    for node in range(arena.nodes_count):
        while before.degree(node):
            neighbor = before.neighbors(node)[0]
            if rng.random() < probability:
                target = _draw_node(
                    rng, arena.nodes_count,
                    lambda n: (n != node and not after.has_link(node, n)
                               and (n == neighbor or not before.has_link(node, n))))
                after.add_link(node, target)
                rewired += target != neighbor
            else:
                after.add_link(node, neighbor)
            before.remove_link(node, neighbor)
    logging.info(f"Lattice rewiring moved {rewired} of {after.links_count} links")
    return after


def ring_rewiring(arena, probability, degree, rng):
    """Roll each node's forward links (offsets +1 and +2) for rewiring."""
    nodes_count = arena.nodes_count
    rewired = 0
    for node in range(nodes_count):
        for offset in range(1, min(2, degree // 2) + 1):
            linked = (node + offset) % nodes_count
            if not arena.has_link(node, linked):
                continue
            if rng.random() < probability:
                target = _draw_node(
                    rng, nodes_count,
                    lambda n: n != node and (n == linked or not arena.has_link(node, n)))
                if target != linked:
                    arena.remove_link(node, linked)
                    arena.add_link(node, target)
                    rewired += 1
    logging.info(f"Ring rewiring moved {rewired} of {arena.links_count} links")
    return arena


def regular_rewiring(arena, portion, rng):
    """
    Rewire an exact number of links while keeping every degree unchanged.

    A chain starts by breaking a random link of a random node. The freed
    endpoint is wired to a random node, which then gives up one of its
    remaining links, whose freed endpoint continues the chain. The last freed
    endpoint is wired back to the node the chain started from.

    Raises:
    -------
    RewiringError : If the chain closes on its own start, the closing link
        would duplicate an existing one, or no legal target exists
    """
    nodes_count = arena.nodes_count
    before = arena.copy()
    after = LinkArena(nodes_count)
    to_rewire = int(portion * before.links_count)
    if to_rewire == 0:
        return arena

    def break_link(node):
        neighbors = before.neighbors(node)
        neighbor = neighbors[int(rng.integers(len(neighbors)))]
        before.remove_link(node, neighbor)
        return neighbor

    def wire_and_break(node):
        target = _draw_node(
            rng, nodes_count,
            lambda n: (n != node and before.degree(n) > 0
                       and not before.has_link(node, n) and not after.has_link(node, n)))
        after.add_link(node, target)
        return break_link(target)

    start = _draw_node(rng, nodes_count, lambda n: before.degree(n) > 0)
    next_node = break_link(start)
    while to_rewire > 0:
        if to_rewire != 1:
            next_node = wire_and_break(next_node)
        elif next_node == start:
            raise RewiringError("Rewiring Failed: The first and the last node are the same!")
        elif after.has_link(next_node, start) or before.has_link(next_node, start):
            raise RewiringError("Rewiring Failed: Last link would be a duplicate!")
        else:
            after.add_link(next_node, start)
        to_rewire -= 1

    for a, b in after.links():
        before.add_link(a, b)
    logging.info(f"Regular rewiring moved {after.links_count} of {before.links_count} links")
    return before


def rewire(arena, network_config, rng):
    rewiring_type = network_config.rewiring_type
    if rewiring_type is RewiringType.SQUARE_LATTICE:
        return lattice_rewiring(arena, network_config.rewiring_probability, rng)
    if rewiring_type is RewiringType.RING_GRAPH:
        return ring_rewiring(arena, network_config.rewiring_probability,
                             network_config.ring_graph_degree, rng)
    if rewiring_type is RewiringType.REGULAR:
        return regular_rewiring(arena, network_config.portion_of_links_to_rewire, rng)
    raise ValueError(f"Unknown rewiring type: {rewiring_type}")


#######################################################################
# Network file
#######################################################################
def save_network(arena, network_config, path):
    """Write the adjacency, one comma separated neighbor line per node."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("#Network Info\n")
        f.write(f"Network Type,{network_config.describe()}\n")
        f.write(f"Number of Nodes,{arena.nodes_count}\n\n")
        f.write("#Load Network Info\n")
        f.write(f"NetworkType,{network_config.network_type.value}\n")
        f.write(f"NodesCount,{arena.nodes_count}\n\n")
        f.write("#Links of Each Node\n")
        lines = []
        for node in range(arena.nodes_count):
            neighbors = arena.neighbors(node)
            lines.append(",".join(str(n) for n in neighbors) if neighbors else str(NO_LINKS))
        f.write("\n".join(lines))
    logging.info(f"Network saved to {path}")


def load_network(path, network_config):
    """
    Read a network file written by save_network.

    Raises:
    -------
    NetworkFileError : If the file is malformed or its node count or network
        type differ from the configuration
    """
    header = {}
    neighbor_lists = []
    section = None
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise NetworkFileError(f"cannot read network file {path}: {e}") from None

    for line_number, line in enumerate(lines, start=1):
        if line.startswith("#Load Network Info"):
            section = "header"
            continue
        if line.startswith("#Links of Each Node"):
            section = "links"
            continue
        if section is None or (section == "header" and not line.strip()):
            continue
        parts = line.split(",")
        if section == "header":
            if len(parts) == 2:
                header[parts[0].strip()] = parts[1].strip()
            continue
        try:
            values = [int(p) for p in parts]
        except ValueError:
            raise NetworkFileError(f"{path}:{line_number}: expected integers, got {line!r}") from None
        neighbor_lists.append([] if values == [NO_LINKS] else values)

    if "NodesCount" not in header or "NetworkType" not in header:
        raise NetworkFileError(f"{path}: missing NodesCount/NetworkType header")
    try:
        nodes_count = int(header["NodesCount"])
        network_type = NetworkType(header["NetworkType"])
    except ValueError as e:
        raise NetworkFileError(f"{path}: malformed header: {e}") from None

    if nodes_count != network_config.nodes_count:
        raise NetworkFileError(f"{path}: file has {nodes_count} nodes, configuration expects "
                               f"{network_config.nodes_count}")
    if network_type is not network_config.network_type:
        raise NetworkFileError(f"{path}: file holds a {network_type.value} network, configuration expects "
                               f"{network_config.network_type.value}")
    if len(neighbor_lists) != nodes_count:
        raise NetworkFileError(f"{path}: {len(neighbor_lists)} adjacency lines for {nodes_count} nodes")

    arena = LinkArena(nodes_count)
    for node, neighbors in enumerate(neighbor_lists):
        for neighbor in neighbors:
            if not 0 <= neighbor < nodes_count or neighbor == node:
                raise NetworkFileError(f"{path}: invalid neighbor {neighbor} of node {node}")
            if node not in neighbor_lists[neighbor]:
                raise NetworkFileError(f"{path}: link {node}-{neighbor} is not symmetric")
            if not arena.has_link(node, neighbor):
                arena.add_link(node, neighbor)
    logging.info(f"Network loaded from {path}")
    return arena


#######################################################################
# Entry point
#######################################################################
def build_topology(network_config, rng, save_path=None):
    """
    Generate (or load), optionally rewire, and freeze the population network.

    Parameters:
    -----------
    network_config : NetworkConfig
        Network section of the configuration
    rng : numpy.random.Generator
        Random source for generation and rewiring
    save_path : str, optional
        Where to save a freshly generated network (before rewiring)

    Returns:
    --------
    Topology : Frozen adjacency
    """
    if network_config.load_network:
        arena = load_network(network_config.network_file, network_config)
    else:
        arena = generate(network_config, rng)
        if save_path:
            save_network(arena, network_config, save_path)

    if network_config.rewiring:
        arena = rewire(arena, network_config, rng)

    topology = Topology(network_type=network_config.network_type, links=arena.freeze())
    logging.info(f"Network: {network_config.describe()}, {topology.nodes_count} nodes, "
                 f"{topology.links_count} links, {topology.zero_degree_count} nodes with zero degree")
    return topology
